"""Audit Writer - Append-only audit events"""
from datetime import datetime
from typing import Any, Dict, Optional

from ..domain.enums import ApprovalAction, AuditEventType, InstanceStatus
from ..domain.errors import DomainError
from ..domain.models import (
    Approval, AuditEvent, Comment, WorkflowInstance, WorkflowTemplate
)
from ..repositories.audit_repo import AuditRepository
from ..utils.idgen import generate_audit_event_id
from ..utils.logger import get_correlation_id, get_logger
from ..utils.time import utc_now

logger = get_logger(__name__)


class AuditWriter:
    """
    Write audit events (append-only)

    All state changes and significant actions produce audit events.
    """

    def __init__(self, repo: Optional[AuditRepository] = None):
        self.repo = repo or AuditRepository()

    def write_event(
        self,
        event_type: AuditEventType,
        instance_id: Optional[str] = None,
        template_id: Optional[str] = None,
        user_id: Optional[str] = None,
        node_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
        correlation_id: Optional[str] = None
    ) -> AuditEvent:
        """Write a single audit event"""
        event = AuditEvent(
            audit_event_id=generate_audit_event_id(),
            instance_id=instance_id,
            template_id=template_id,
            event_type=event_type,
            user_id=user_id,
            node_id=node_id,
            details=details or {},
            timestamp=timestamp or utc_now(),
            correlation_id=correlation_id or get_correlation_id()
        )

        return self.repo.create_event(event)

    def write_instance_started(
        self,
        instance: WorkflowInstance,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        """Write instance creation event"""
        return self.write_event(
            event_type=AuditEventType.INSTANCE_STARTED,
            instance_id=instance.instance_id,
            template_id=instance.template_id,
            user_id=user_id,
            details={
                "module": instance.module,
                "item_id": instance.item_id,
                "template_version": instance.template_version,
            },
            timestamp=instance.created_at
        )

    def write_decision(self, instance: WorkflowInstance, approval: Approval) -> AuditEvent:
        """Write approve/reject event"""
        event_type = (
            AuditEventType.APPROVE
            if approval.action == ApprovalAction.APPROVED
            else AuditEventType.REJECT
        )
        if approval.escalated:
            self.write_event(
                event_type=AuditEventType.ESCALATED_ACTION,
                instance_id=instance.instance_id,
                template_id=instance.template_id,
                user_id=approval.user_id,
                node_id=approval.node_id,
                details={"action": approval.action.value},
                timestamp=approval.timestamp
            )

        return self.write_event(
            event_type=event_type,
            instance_id=instance.instance_id,
            template_id=instance.template_id,
            user_id=approval.user_id,
            node_id=approval.node_id,
            details={
                "comment": approval.comment,
                "step_visit": approval.step_visit,
                "escalated": approval.escalated,
            },
            timestamp=approval.timestamp
        )

    def write_comment(self, instance: WorkflowInstance, comment: Comment) -> AuditEvent:
        """Write comment event"""
        return self.write_event(
            event_type=AuditEventType.COMMENT,
            instance_id=instance.instance_id,
            template_id=instance.template_id,
            user_id=comment.user_id,
            node_id=comment.node_id,
            details={"text": comment.text[:200]},
            timestamp=comment.timestamp
        )

    def write_cancel(
        self,
        instance: WorkflowInstance,
        user_id: str,
        reason: Optional[str] = None,
        timestamp: Optional[datetime] = None
    ) -> AuditEvent:
        """Write cancellation event"""
        return self.write_event(
            event_type=AuditEventType.CANCEL,
            instance_id=instance.instance_id,
            template_id=instance.template_id,
            user_id=user_id,
            node_id=instance.current_node_id,
            details={"reason": reason},
            timestamp=timestamp
        )

    def write_step_entered(
        self,
        instance: WorkflowInstance,
        node_id: str,
        timestamp: Optional[datetime] = None
    ) -> AuditEvent:
        """Write step entry event"""
        return self.write_event(
            event_type=AuditEventType.STEP_ENTERED,
            instance_id=instance.instance_id,
            template_id=instance.template_id,
            node_id=node_id,
            details={
                "step_visit": instance.step_visit,
                "eligible_approvers": sorted(instance.eligible_approvers),
            },
            timestamp=timestamp
        )

    def write_step_completed(
        self,
        instance: WorkflowInstance,
        node_id: str,
        timestamp: Optional[datetime] = None
    ) -> AuditEvent:
        """Write step completion event"""
        return self.write_event(
            event_type=AuditEventType.STEP_COMPLETED,
            instance_id=instance.instance_id,
            template_id=instance.template_id,
            node_id=node_id,
            details={"step_visit": instance.step_visit},
            timestamp=timestamp
        )

    def write_branch_taken(
        self,
        instance: WorkflowInstance,
        node_id: str,
        taken: bool,
        timestamp: Optional[datetime] = None
    ) -> AuditEvent:
        """Write condition branch event"""
        return self.write_event(
            event_type=AuditEventType.BRANCH_TAKEN,
            instance_id=instance.instance_id,
            template_id=instance.template_id,
            node_id=node_id,
            details={"branch": "true" if taken else "false"},
            timestamp=timestamp
        )

    def write_instance_completed(
        self,
        instance: WorkflowInstance,
        timestamp: Optional[datetime] = None
    ) -> AuditEvent:
        """Write terminal approved/rejected event"""
        event_type = (
            AuditEventType.INSTANCE_APPROVED
            if instance.status == InstanceStatus.APPROVED
            else AuditEventType.INSTANCE_REJECTED
        )
        return self.write_event(
            event_type=event_type,
            instance_id=instance.instance_id,
            template_id=instance.template_id,
            node_id=instance.current_node_id,
            timestamp=timestamp
        )

    def write_engine_error(
        self,
        instance: WorkflowInstance,
        error: DomainError,
        timestamp: Optional[datetime] = None
    ) -> AuditEvent:
        """Write engine failure event; also reported at ERROR level"""
        logger.error(
            f"Engine error on instance {instance.instance_id}: {error.message}",
            extra={
                "instance_id": instance.instance_id,
                "template_id": instance.template_id,
                "node_id": instance.current_node_id,
                "error_code": error.error_code,
            }
        )
        return self.write_event(
            event_type=AuditEventType.ENGINE_ERROR,
            instance_id=instance.instance_id,
            template_id=instance.template_id,
            node_id=instance.current_node_id,
            details=error.to_dict()["error"],
            timestamp=timestamp
        )

    def write_template_published(
        self,
        template: WorkflowTemplate,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        """Write template publish event"""
        return self.write_event(
            event_type=AuditEventType.TEMPLATE_PUBLISHED,
            template_id=template.template_id,
            user_id=user_id,
            details={"name": template.name, "version": template.version},
            timestamp=template.published_at
        )
