"""Workflow Engine - Evaluation, authorization and instance transitions"""
from .engine import WorkflowEngine
from .permission_guard import PermissionGuard
from .transition_resolver import TransitionResolver
from .condition_evaluator import ConditionEvaluator
from .graph_validator import GraphValidator
from .audit_writer import AuditWriter
from .locks import InstanceLockRegistry

__all__ = [
    "WorkflowEngine",
    "PermissionGuard",
    "TransitionResolver",
    "ConditionEvaluator",
    "GraphValidator",
    "AuditWriter",
    "InstanceLockRegistry",
]
