"""Repository modules - Data access layer"""
from .workflow_repo import WorkflowRepository
from .instance_repo import InstanceRepository
from .audit_repo import AuditRepository

__all__ = [
    "WorkflowRepository",
    "InstanceRepository",
    "AuditRepository",
]
