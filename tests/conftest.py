"""
Pytest Configuration and Fixtures

This file contains shared fixtures and configuration for all tests.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from approval_engine.domain.enums import TemplateStatus
from approval_engine.domain.models import UserAttrs, WorkflowGraph, WorkflowTemplate
from approval_engine.engine.audit_writer import AuditWriter
from approval_engine.engine.engine import WorkflowEngine
from approval_engine.repositories.audit_repo import AuditRepository
from approval_engine.services.directory_service import StaticApproverDirectory


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def make_template(
    nodes: List[Dict[str, Any]],
    edges: List[Dict[str, Any]],
    status: TemplateStatus = TemplateStatus.PUBLISHED,
    template_id: str = "WFT-test",
    model_name: str = "purchase_order"
) -> WorkflowTemplate:
    """Build a template from plain node/edge dicts"""
    return WorkflowTemplate(
        template_id=template_id,
        name="Test Workflow",
        model_name=model_name,
        graph=WorkflowGraph.model_validate({"nodes": nodes, "edges": edges}),
        status=status,
        created_at=NOW,
        updated_at=NOW,
        published_at=NOW if status == TemplateStatus.PUBLISHED else None
    )


def approval_node(node_id: str, role: Optional[str] = "manager", **config: Any) -> Dict[str, Any]:
    node = {"id": node_id, "type": "approval", "label": node_id.replace("_", " ").title()}
    if role:
        node["required_role"] = role
    node.update(config)
    return node


def chain(*node_ids: str) -> List[Dict[str, Any]]:
    """Edges linking node_ids in order"""
    return [
        {"id": f"e-{src}-{dst}", "source": src, "target": dst}
        for src, dst in zip(node_ids, node_ids[1:])
    ]


# ============================================================================
# Actors
# ============================================================================

@pytest.fixture
def manager() -> UserAttrs:
    return UserAttrs(user_id="u-manager", roles=["manager"], department_id=10, job_level=3)


@pytest.fixture
def other_manager() -> UserAttrs:
    return UserAttrs(user_id="u-manager-2", roles=["manager"], department_id=20, job_level=3)


@pytest.fixture
def third_manager() -> UserAttrs:
    return UserAttrs(user_id="u-manager-3", roles=["manager"], department_id=10, job_level=2)


@pytest.fixture
def cfo() -> UserAttrs:
    return UserAttrs(user_id="u-cfo", roles=["cfo"], department_id=1, approval_limit_amount=1_000_000)


@pytest.fixture
def director() -> UserAttrs:
    return UserAttrs(user_id="u-director", roles=["director"], department_id=10)


@pytest.fixture
def outsider() -> UserAttrs:
    return UserAttrs(user_id="u-outsider", roles=["employee"], department_id=10)


@pytest.fixture
def directory(manager, other_manager, third_manager, cfo, director, outsider) -> StaticApproverDirectory:
    return StaticApproverDirectory([manager, other_manager, third_manager, cfo, director, outsider])


# ============================================================================
# Engine
# ============================================================================

@pytest.fixture
def audit_repo() -> AuditRepository:
    return AuditRepository()


@pytest.fixture
def engine(directory, audit_repo) -> WorkflowEngine:
    return WorkflowEngine(directory=directory, audit_writer=AuditWriter(audit_repo))


# ============================================================================
# Templates
# ============================================================================

@pytest.fixture
def linear_template() -> WorkflowTemplate:
    """start -> manager approval -> end"""
    return make_template(
        nodes=[
            {"id": "start", "type": "start", "label": "Start"},
            approval_node("manager_review", sla_hours=24, auto_escalate=True, escalation_role="director"),
            {"id": "end", "type": "end", "label": "Done"},
        ],
        edges=chain("start", "manager_review", "end")
    )


@pytest.fixture
def two_step_template() -> WorkflowTemplate:
    """start -> manager approval -> cfo approval -> end"""
    return make_template(
        nodes=[
            {"id": "start", "type": "start"},
            approval_node("manager_review"),
            approval_node("cfo_review", role="cfo"),
            {"id": "end", "type": "end"},
        ],
        edges=chain("start", "manager_review", "cfo_review", "end")
    )


@pytest.fixture
def branching_template() -> WorkflowTemplate:
    """start -> amount > 10000 ? cfo approval : manager approval -> end"""
    return make_template(
        nodes=[
            {"id": "start", "type": "start"},
            {
                "id": "amount_check",
                "type": "condition",
                "data": {"condition_field": "amount", "condition_operator": ">", "condition_value": 10000},
            },
            approval_node("cfo_review", role="cfo"),
            approval_node("manager_review"),
            {"id": "end", "type": "end"},
        ],
        edges=[
            {"id": "e1", "source": "start", "target": "amount_check"},
            {"id": "e2", "source": "amount_check", "target": "cfo_review", "sourceHandle": "true"},
            {"id": "e3", "source": "amount_check", "target": "manager_review", "sourceHandle": "false"},
            {"id": "e4", "source": "cfo_review", "target": "end"},
            {"id": "e5", "source": "manager_review", "target": "end"},
        ]
    )


def parallel_template(approval_type: str, **config: Any) -> WorkflowTemplate:
    """start -> parallel manager approval -> end"""
    return make_template(
        nodes=[
            {"id": "start", "type": "start"},
            approval_node("managers", approval_type=approval_type, **config),
            {"id": "end", "type": "end"},
        ],
        edges=chain("start", "managers", "end")
    )
