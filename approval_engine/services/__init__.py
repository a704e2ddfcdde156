"""Service modules - Business logic layer"""
from .directory_service import ApproverDirectory, StaticApproverDirectory
from .workflow_service import WorkflowService
from .instance_service import InstanceService

__all__ = [
    "ApproverDirectory",
    "StaticApproverDirectory",
    "WorkflowService",
    "InstanceService",
]
