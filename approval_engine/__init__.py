"""Approval workflow engine - graph-based multi-step approvals with RBAC and ABAC"""
from .engine import GraphValidator, WorkflowEngine
from .domain.models import ActionResult, WorkflowInstance, WorkflowTemplate

__version__ = "1.0.0"

__all__ = [
    "GraphValidator",
    "WorkflowEngine",
    "ActionResult",
    "WorkflowInstance",
    "WorkflowTemplate",
]
