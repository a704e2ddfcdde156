"""Instance Service - Load, act and save workflow instances"""
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from ..domain.enums import ActionType, InstanceStatus
from ..domain.errors import ConcurrencyError, StaleActionError
from ..domain.models import (
    ActionResult, ApprovalNode, ResourceAttrs, UserAttrs, WorkflowInstance,
    WorkflowStats, WorkflowTemplate
)
from ..engine.engine import WorkflowEngine
from ..engine.graph_validator import GraphValidator
from ..repositories.instance_repo import InstanceRepository
from ..repositories.workflow_repo import WorkflowRepository
from ..utils.logger import correlation_scope, get_logger
from ..utils.time import (
    calculate_due_at, coerce_datetime, format_duration, format_iso, hours_between
)

logger = get_logger(__name__)


class InstanceService:
    """
    Service for workflow instance operations

    Each action loads the instance, runs the engine under the instance lock
    and saves the result with the version it was loaded at.
    """

    def __init__(
        self,
        workflow_repo: Optional[WorkflowRepository] = None,
        instance_repo: Optional[InstanceRepository] = None,
        engine: Optional[WorkflowEngine] = None
    ):
        self.workflow_repo = workflow_repo or WorkflowRepository()
        self.instance_repo = instance_repo or InstanceRepository()
        self.engine = engine or WorkflowEngine()

    # =========================================================================
    # Commands
    # =========================================================================

    def start(
        self,
        template_id: str,
        module: str,
        item_id: str,
        resource: Union[ResourceAttrs, Dict[str, Any], None] = None,
        started_by: Optional[str] = None,
        now: Union[datetime, str, None] = None
    ) -> ActionResult:
        """Start an instance of a published template and store it"""
        template = self.workflow_repo.get_template_or_raise(template_id)
        with correlation_scope():
            result = self.engine.start_instance(
                template, module, item_id, resource=resource, now=now, started_by=started_by
            )
            if result.instance is not None:
                self.instance_repo.create_instance(result.instance)
        return result

    def act(
        self,
        instance_id: str,
        actor: UserAttrs,
        action: Union[ActionType, str],
        comment: Optional[str] = None,
        resource: Optional[ResourceAttrs] = None,
        now: Union[datetime, str, None] = None,
        expected_version: Optional[int] = None
    ) -> ActionResult:
        """Submit approve / reject / comment for an instance"""
        with correlation_scope(), self.engine.locks.hold(instance_id):
            instance = self.instance_repo.get_instance_or_raise(instance_id)
            template = self.workflow_repo.get_template_or_raise(instance.template_id)
            loaded_version = instance.version

            result = self.engine.submit_action(
                instance, template, actor, action, comment,
                resource=resource, now=now, expected_version=expected_version
            )
            return self._save(result, instance, loaded_version)

    def cancel(
        self,
        instance_id: str,
        actor: UserAttrs,
        reason: Optional[str] = None,
        now: Union[datetime, str, None] = None,
        expected_version: Optional[int] = None
    ) -> ActionResult:
        """Cancel a pending instance"""
        with correlation_scope(), self.engine.locks.hold(instance_id):
            instance = self.instance_repo.get_instance_or_raise(instance_id)
            loaded_version = instance.version

            result = self.engine.cancel(
                instance, actor, reason=reason, now=now, expected_version=expected_version
            )
            return self._save(result, instance, loaded_version)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_instance(self, instance_id: str) -> WorkflowInstance:
        return self.instance_repo.get_instance_or_raise(instance_id)

    def instances_for_item(self, module: str, item_id: str) -> List[WorkflowInstance]:
        """Approval history of one business item, oldest first"""
        return self.instance_repo.find_by_item(module, item_id)

    def breached_instances(self, now: Union[datetime, str, None] = None) -> List[WorkflowInstance]:
        """Pending instances whose current step is past its SLA (sweeper hook)"""
        now = coerce_datetime(now)
        templates = self._templates_by_id()
        return [
            instance for instance in self.instance_repo.list_instances(status=InstanceStatus.PENDING)
            if instance.template_id in templates
            and self.engine.is_breached(instance, templates[instance.template_id], now)
        ]

    def pending_by_role(
        self,
        role: str,
        now: Union[datetime, str, None] = None
    ) -> List[WorkflowInstance]:
        """
        Pending instances whose current step a holder of role may act on

        Breached steps with auto-escalation also list their escalation role.
        """
        now = coerce_datetime(now)
        templates = self._templates_by_id()
        matches: List[WorkflowInstance] = []

        for instance in self.instance_repo.list_instances(status=InstanceStatus.PENDING):
            template = templates.get(instance.template_id)
            if template is None or instance.corrupt:
                continue
            step = template.graph.node_by_id(instance.current_node_id)
            if not isinstance(step, ApprovalNode):
                continue
            roles = list(step.roles)
            if step.auto_escalate and step.escalation_role and self.engine.is_breached(instance, template, now):
                roles.append(step.escalation_role)
            if role in roles:
                matches.append(instance)

        return matches

    def pending_for_actor(
        self,
        actor: UserAttrs,
        now: Union[datetime, str, None] = None
    ) -> List[WorkflowInstance]:
        """Instances awaiting a decision from actor"""
        return self.engine.pending_for(
            actor,
            self.instance_repo.list_instances(status=InstanceStatus.PENDING),
            self.workflow_repo.list_templates(),
            now
        )

    def describe_progress(
        self,
        instance_id: str,
        now: Union[datetime, str, None] = None
    ) -> List[Dict[str, Any]]:
        """
        Approval steps of an instance with their state

        Returns:
            One entry per approval node in graph order, each with node_id,
            label, approval_type and state (completed, current, rejected,
            cancelled or upcoming).
            The current step also carries due_at and time_left when it has
            an SLA.
        """
        now = coerce_datetime(now)
        instance = self.instance_repo.get_instance_or_raise(instance_id)
        template = self.workflow_repo.get_template_or_raise(instance.template_id)
        compiled = GraphValidator().compile(template)
        decided = {a.node_id for a in instance.approvals}

        progress = []
        for node_id in compiled.approval_order:
            node = template.graph.node_by_id(node_id)
            if node_id == instance.current_node_id and instance.status != InstanceStatus.APPROVED:
                # Where the instance stopped: rejected, cancelled or still pending
                state = "current" if instance.status == InstanceStatus.PENDING else instance.status.value
            elif node_id in decided:
                state = "completed"
            else:
                state = "upcoming"
            entry = {
                "node_id": node_id,
                "label": node.label,
                "approval_type": node.approval_type.value,
                "state": state,
            }
            if state == "current" and node.sla_hours is not None and instance.node_entered_at:
                due_at = calculate_due_at(instance.node_entered_at, node.sla_hours)
                entry["due_at"] = format_iso(due_at)
                entry["time_left"] = format_duration(int(hours_between(now, due_at) * 60))
            progress.append(entry)
        return progress

    def get_stats(self, now: Union[datetime, str, None] = None) -> WorkflowStats:
        """Dashboard counters over all instances"""
        now = coerce_datetime(now)
        count = self.instance_repo.count_instances

        return WorkflowStats(
            pending_approvals=count(status=InstanceStatus.PENDING),
            sla_breaches=len(self.breached_instances(now)),
            approved=count(status=InstanceStatus.APPROVED),
            rejected=count(status=InstanceStatus.REJECTED),
            cancelled=count(status=InstanceStatus.CANCELLED),
            by_resource_type=dict(Counter(i.module for i in self.instance_repo.list_instances()))
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _save(
        self,
        result: ActionResult,
        instance: WorkflowInstance,
        loaded_version: int
    ) -> ActionResult:
        if instance.version == loaded_version:
            return result

        try:
            self.instance_repo.save_instance(instance, expected_version=loaded_version)
        except ConcurrencyError as e:
            logger.warning(
                f"Discarded stale write for instance {instance.instance_id}",
                extra={"instance_id": instance.instance_id, "status": "stale"}
            )
            return ActionResult.failure(StaleActionError(e.message, details=e.details), instance=instance)
        return result

    def _templates_by_id(self) -> Dict[str, WorkflowTemplate]:
        return {t.template_id: t for t in self.workflow_repo.list_templates()}
