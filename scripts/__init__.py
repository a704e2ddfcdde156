"""
Engine Scripts Module

Command-line helpers for working with workflow templates.

Available scripts:
    - validate_workflow.py: Validate a template JSON file before publishing

Usage:
    python -m scripts.validate_workflow path/to/template.json
"""
