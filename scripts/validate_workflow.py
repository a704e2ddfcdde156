"""Script to validate a workflow template file"""
import argparse
import json
import sys
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from approval_engine.domain.models import ApprovalNode, ConditionNode, WorkflowGraph, WorkflowTemplate
from approval_engine.engine.graph_validator import GraphValidator


def load_template(path: str) -> WorkflowTemplate:
    """
    Load a template file

    Accepts a full template document or a bare {"nodes": [...], "edges": [...]} graph.
    """
    with open(path, encoding="utf-8") as f:
        doc: Dict[str, Any] = json.load(f)

    if "graph" in doc:
        doc.setdefault("template_id", "local")
        doc.setdefault("name", path)
        doc.setdefault("model_name", "unknown")
        return WorkflowTemplate.model_validate(doc)

    return WorkflowTemplate(
        template_id="local",
        name=path,
        model_name="unknown",
        graph=WorkflowGraph.model_validate(doc)
    )


def print_report(template: WorkflowTemplate, show_compiled: bool = False) -> bool:
    """Print the analysis of a template; returns True when it can be published"""
    graph = template.graph
    validator = GraphValidator()
    result = validator.validate(template)

    print(f"✅ Loaded workflow: {template.name}")
    print(f"   Entity: {template.model_name}")
    print(f"   Version: {template.version}")
    print()

    print("=" * 60)
    print("WORKFLOW ANALYSIS")
    print("=" * 60)

    node_types: Dict[str, int] = {}
    for node in graph.nodes:
        node_types[node.type] = node_types.get(node.type, 0) + 1

    print(f"\n📊 NODE SUMMARY ({len(graph.nodes)} total):")
    for node_type, count in node_types.items():
        print(f"   • {node_type}: {count}")
    print(f"\n🔗 EDGES: {len(graph.edges)}")

    for node in graph.nodes:
        if isinstance(node, ApprovalNode):
            print(f"\n[approval] {node.label or node.id}")
            print(f"   👤 Roles: {', '.join(node.roles) or 'none'}")
            print(f"   👥 Type: {node.approval_type.value}")
            if node.abac_enabled:
                for condition in node.abac_conditions:
                    print(f"      • {condition.attribute} {condition.operator.value} {condition.value!r}")
            if node.sla_hours is not None:
                print(f"   ⏱️ SLA: {node.sla_hours} hours")
            if node.auto_escalate:
                print(f"   ⬆️ Escalates to: {node.escalation_role or 'N/A'}")
        elif isinstance(node, ConditionNode):
            print(f"\n[condition] {node.label or node.id}")
            print(f"   🔀 If {node.field} {node.operator.value} {node.value!r}")

    print("\n" + "=" * 60)
    print("VALIDATION")
    print("=" * 60)

    for issue in result.errors:
        print(f"❌ {issue.kind.value}: {issue.message}")
    for issue in result.warnings:
        print(f"⚠️ {issue.kind.value}: {issue.message}")
    if result.ok:
        print("✅ Workflow is valid and can be published")

    if show_compiled and result.ok:
        compiled = validator.compile(template)
        print("\n" + "=" * 60)
        print("APPROVAL ORDER")
        print("=" * 60)
        for i, node_id in enumerate(compiled.approval_order):
            print(f"{i + 1}. {node_id}")

    return result.ok


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Validate a workflow template file")
    parser.add_argument("path", help="Template or graph JSON file")
    parser.add_argument(
        "--compile",
        action="store_true",
        help="Print the approval order of a valid template"
    )
    args = parser.parse_args(argv)

    try:
        template = load_template(args.path)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        print(f"❌ Could not load {args.path}: {e}")
        return 2

    return 0 if print_report(template, show_compiled=args.compile) else 1


if __name__ == "__main__":
    sys.exit(main())
