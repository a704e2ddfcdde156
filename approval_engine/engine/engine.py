"""
Workflow Engine - Instance state machine

This module contains the WorkflowEngine class that drives workflow instances
through their approval graph.

=============================================================================
MODULE STRUCTURE
=============================================================================

1. INITIALIZATION
   - Constructor with directory, guard, resolver, audit and lock dependencies

2. INSTANCE CREATION
   - start_instance: Create a pending instance and walk to the first step

3. ACTION HANDLERS
   - submit_action: approve / reject / comment on the current step
   - cancel: Cancel a pending instance

4. QUERIES
   - is_breached: SLA check for the current step
   - can_act: Authorization pre-check for UI filtering
   - pending_for: Instances awaiting a given actor

5. TRANSITION LOGIC
   - _advance: Leave a completed node and land on an approval or end node
   - _enter_step: Reset SLA clock and eligible approvers
   - _halt_corrupt: Stop an instance whose graph is broken

=============================================================================
FAILURE SEMANTICS
=============================================================================

Operations never raise domain errors. They return an ActionResult carrying
one of:
    - UnauthorizedError: actor fails RBAC or ABAC for the step
    - InvalidActionError: action not valid in the instance's state
    - StaleActionError: outdated version or out-of-order timestamp
    - CorruptGraphError: structural invariant violated; instance halted

Mutations of one instance are serialized by a per-instance RLock.

=============================================================================
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Union

from ..domain.enums import (
    ActionType, ApprovalAction, ApprovalType, InstanceStatus, NodeType, StepOutcome
)
from ..domain.errors import (
    CorruptGraphError, DomainError, InvalidActionError, StaleActionError,
    UnauthorizedError
)
from ..domain.models import (
    ActionResult, Approval, ApprovalNode, Comment, EndNode, Node, ResourceAttrs,
    UserAttrs, WorkflowInstance, WorkflowTemplate
)
from ..utils.idgen import generate_approval_id, generate_comment_id, generate_instance_id
from ..utils.logger import get_logger
from ..utils.time import calculate_due_at, coerce_datetime, is_overdue
from .audit_writer import AuditWriter
from .condition_evaluator import ConditionEvaluator
from .locks import InstanceLockRegistry
from .permission_guard import PermissionGuard
from .transition_resolver import TransitionResolver

if TYPE_CHECKING:
    from ..services.directory_service import ApproverDirectory

logger = get_logger(__name__)

_DECISIONS = {
    ActionType.APPROVE: ApprovalAction.APPROVED,
    ActionType.REJECT: ApprovalAction.REJECTED,
}


class WorkflowEngine:
    """
    Core workflow engine - drives instances through the approval graph

    The engine holds no instance state of its own: callers pass the instance
    and its template, and receive the mutated instance back in an ActionResult.
    """

    def __init__(
        self,
        directory: Optional["ApproverDirectory"] = None,
        permission_guard: Optional[PermissionGuard] = None,
        transition_resolver: Optional[TransitionResolver] = None,
        audit_writer: Optional[AuditWriter] = None,
        lock_registry: Optional[InstanceLockRegistry] = None
    ):
        condition_evaluator = ConditionEvaluator()
        self.directory = directory
        self.permission_guard = permission_guard or PermissionGuard(condition_evaluator)
        self.transition_resolver = transition_resolver or TransitionResolver(condition_evaluator)
        self.audit_writer = audit_writer or AuditWriter()
        self.locks = lock_registry or InstanceLockRegistry()

    # =========================================================================
    # Instance Creation
    # =========================================================================

    def start_instance(
        self,
        template: WorkflowTemplate,
        module: str,
        item_id: str,
        resource: Union[ResourceAttrs, Dict[str, Any], None] = None,
        now: Union[datetime, str, None] = None,
        started_by: Optional[str] = None
    ) -> ActionResult:
        """
        Create an instance for a business item and walk to its first step

        Condition nodes right after start are resolved immediately, so an
        instance may land on an end node and be approved at once.
        Templates with parallel_all steps need an approver directory; without
        one the eligible set is unknown and the start is refused.

        Args:
            template: Published template
            module: Business module of the item
            item_id: Business item ID
            resource: Snapshot of the item's attributes
            now: Creation time, defaults to current UTC time
            started_by: User who submitted the item

        Returns:
            ActionResult with the new instance
        """
        now = coerce_datetime(now)

        if not template.is_published:
            return ActionResult.failure(
                InvalidActionError(
                    f"Template {template.template_id} is not published",
                    details={"template_id": template.template_id, "status": template.status.value}
                ),
                template=template
            )

        start = template.graph.start_node()
        if start is None:
            return ActionResult.failure(
                CorruptGraphError(
                    f"Template {template.template_id} has no start node",
                    details={"template_id": template.template_id}
                ),
                template=template
            )

        unresolvable = [
            node.id for node in template.graph.nodes_of_type(NodeType.APPROVAL)
            if node.approval_type == ApprovalType.PARALLEL_ALL
        ]
        if unresolvable and self.directory is None:
            return ActionResult.failure(
                InvalidActionError(
                    "parallel_all steps need an approver directory to resolve who must approve",
                    details={"template_id": template.template_id, "node_ids": unresolvable}
                ),
                template=template
            )

        snapshot = resource if isinstance(resource, ResourceAttrs) else ResourceAttrs.model_validate(resource or {})
        instance = WorkflowInstance(
            instance_id=generate_instance_id(),
            template_id=template.template_id,
            template_version=template.version,
            module=module,
            item_id=item_id,
            resource=snapshot,
            current_node_id=start.id,
            node_entered_at=now,
            created_at=now,
            updated_at=now
        )
        self.audit_writer.write_instance_started(instance, user_id=started_by)

        with self.locks.hold(instance.instance_id):
            try:
                self._advance(instance, template, start, snapshot, now)
            except CorruptGraphError as e:
                self._halt_corrupt(instance, e, now)
                return ActionResult.failure(e, instance=instance)

        logger.info(
            f"Started instance {instance.instance_id} for {module}/{item_id}",
            extra={
                "instance_id": instance.instance_id,
                "template_id": template.template_id,
                "node_id": instance.current_node_id,
                "status": instance.status.value,
            }
        )
        return ActionResult(instance=instance, advanced=True)

    # =========================================================================
    # Action Handlers
    # =========================================================================

    def submit_action(
        self,
        instance: WorkflowInstance,
        template: WorkflowTemplate,
        actor: UserAttrs,
        action: Union[ActionType, str],
        comment: Optional[str] = None,
        *,
        resource: Optional[ResourceAttrs] = None,
        now: Union[datetime, str, None] = None,
        expected_version: Optional[int] = None
    ) -> ActionResult:
        """
        Apply an approve, reject or comment action to the current step

        Args:
            instance: Instance to act on (mutated in place)
            template: Template the instance was started from
            actor: Acting user's attributes
            action: approve, reject or comment
            comment: Decision comment, or the comment text for `comment`
            resource: Fresh business item attributes; defaults to the snapshot
            now: Action time, defaults to current UTC time
            expected_version: Instance version the caller last saw

        Returns:
            ActionResult; `advanced` is set when the instance moved on
        """
        now = coerce_datetime(now)

        try:
            action = ActionType(action)
        except ValueError:
            return ActionResult.failure(
                InvalidActionError(f"Unknown action: {action}", details={"action": str(action)}),
                instance=instance
            )

        with self.locks.hold(instance.instance_id):
            error = self._check_preconditions(instance, template, now, expected_version)
            if error is not None:
                return ActionResult.failure(error, instance=instance)

            if action == ActionType.COMMENT:
                return self._handle_comment(instance, actor, comment, now)

            step = template.graph.node_by_id(instance.current_node_id)
            if not isinstance(step, ApprovalNode):
                error = CorruptGraphError(
                    f"Pending instance sits on non-approval node {instance.current_node_id}",
                    details={"node_id": instance.current_node_id}
                )
                self._halt_corrupt(instance, error, now)
                return ActionResult.failure(error, instance=instance)

            return self._handle_decision(
                instance, template, step, actor, _DECISIONS[action], comment,
                resource or instance.resource, now
            )

    def cancel(
        self,
        instance: WorkflowInstance,
        actor: UserAttrs,
        reason: Optional[str] = None,
        now: Union[datetime, str, None] = None,
        expected_version: Optional[int] = None
    ) -> ActionResult:
        """
        Cancel a pending instance

        The reason, when given, is kept as a comment on the current node.
        """
        now = coerce_datetime(now)

        with self.locks.hold(instance.instance_id):
            error = self._check_freshness(instance, now, expected_version)
            if error is not None:
                return ActionResult.failure(error, instance=instance)

            if instance.is_terminal:
                return ActionResult.failure(
                    InvalidActionError(
                        f"Cannot cancel instance in status {instance.status.value}",
                        details={"instance_id": instance.instance_id, "status": instance.status.value}
                    ),
                    instance=instance
                )

            if reason:
                instance.comments.append(Comment(
                    comment_id=generate_comment_id(),
                    user_id=actor.user_id,
                    node_id=instance.current_node_id,
                    text=reason,
                    timestamp=now
                ))

            instance.status = InstanceStatus.CANCELLED
            instance.cancelled_by = actor.user_id
            instance.completed_at = now
            instance.eligible_approvers = set()
            self._touch(instance, now)

            self.audit_writer.write_cancel(instance, actor.user_id, reason=reason, timestamp=now)

        logger.info(
            f"Cancelled instance {instance.instance_id}",
            extra={"instance_id": instance.instance_id, "user_id": actor.user_id, "action": "cancel"}
        )
        return ActionResult(instance=instance)

    # =========================================================================
    # Queries
    # =========================================================================

    def is_breached(
        self,
        instance: WorkflowInstance,
        template: WorkflowTemplate,
        now: Union[datetime, str, None] = None
    ) -> bool:
        """Check if the current step has outlived its SLA"""
        step = template.graph.node_by_id(instance.current_node_id)
        if not isinstance(step, ApprovalNode):
            return False
        return self._step_breached(instance, step, coerce_datetime(now))

    def can_act(
        self,
        step: ApprovalNode,
        actor: UserAttrs,
        resource_attrs: Optional[ResourceAttrs] = None,
        *,
        instance: Optional[WorkflowInstance] = None,
        now: Union[datetime, str, None] = None
    ) -> bool:
        """
        Authorization pre-check for UI filtering

        With an instance, the check is escalation-aware and only succeeds
        while the instance is pending on step.
        """
        escalated = False
        if instance is not None:
            if instance.is_terminal or instance.corrupt or instance.current_node_id != step.id:
                return False
            escalated = self._step_breached(instance, step, coerce_datetime(now))
            resource_attrs = resource_attrs or instance.resource

        return self.permission_guard.can_act(step, actor, resource_attrs, escalated=escalated)

    def pending_for(
        self,
        actor: UserAttrs,
        instances: Iterable[WorkflowInstance],
        templates: Iterable[WorkflowTemplate],
        now: Union[datetime, str, None] = None
    ) -> List[WorkflowInstance]:
        """
        Instances waiting on a decision from actor

        Skips instances the actor already decided on at the current step.
        """
        now = coerce_datetime(now)
        by_id = {t.template_id: t for t in templates}
        pending: List[WorkflowInstance] = []

        for instance in instances:
            template = by_id.get(instance.template_id)
            if template is None or instance.status != InstanceStatus.PENDING:
                continue
            step = template.graph.node_by_id(instance.current_node_id)
            if not isinstance(step, ApprovalNode):
                continue
            if any(a.user_id == actor.user_id for a in instance.approvals_for_current_step()):
                continue
            if self.can_act(step, actor, instance=instance, now=now):
                pending.append(instance)

        return pending

    # =========================================================================
    # Action Helpers
    # =========================================================================

    def _handle_comment(
        self,
        instance: WorkflowInstance,
        actor: UserAttrs,
        text: Optional[str],
        now: datetime
    ) -> ActionResult:
        if not text or not text.strip():
            return ActionResult.failure(
                InvalidActionError("Comment text is required"),
                instance=instance
            )

        record = Comment(
            comment_id=generate_comment_id(),
            user_id=actor.user_id,
            node_id=instance.current_node_id,
            text=text,
            timestamp=now
        )
        instance.comments.append(record)
        self._touch(instance, now)
        self.audit_writer.write_comment(instance, record)
        return ActionResult(instance=instance)

    def _handle_decision(
        self,
        instance: WorkflowInstance,
        template: WorkflowTemplate,
        step: ApprovalNode,
        actor: UserAttrs,
        decision: ApprovalAction,
        comment: Optional[str],
        resource_attrs: ResourceAttrs,
        now: datetime
    ) -> ActionResult:
        escalated = self._step_breached(instance, step, now)
        authorization = self.permission_guard.explain(step, actor, resource_attrs, escalated=escalated)

        if not authorization.allowed:
            logger.warning(
                f"User {actor.user_id} not authorized for step {step.id}",
                extra={
                    "instance_id": instance.instance_id,
                    "node_id": step.id,
                    "user_id": actor.user_id,
                    "action": decision.value,
                    "conditions": [r.model_dump(mode="json") for r in authorization.trace.failed],
                }
            )
            return ActionResult.failure(
                UnauthorizedError(
                    f"User {actor.user_id} cannot act on step {step.label or step.id}",
                    details={
                        "node_id": step.id,
                        "rbac_passed": authorization.rbac_passed,
                        "abac_passed": authorization.abac_passed,
                        "failed_conditions": [r.attribute for r in authorization.trace.failed],
                    }
                ),
                instance=instance
            )

        previous = next(
            (
                a for a in instance.approvals_for_current_step()
                if a.user_id == actor.user_id and a.action != ApprovalAction.COMMENTED
            ),
            None
        )
        if previous is not None:
            if previous.action == decision:
                return ActionResult(instance=instance, duplicate=True)
            return ActionResult.failure(
                InvalidActionError(
                    f"User {actor.user_id} already {previous.action.value} step {step.id}",
                    details={"node_id": step.id, "previous_action": previous.action.value}
                ),
                instance=instance
            )

        approval = Approval(
            approval_id=generate_approval_id(),
            user_id=actor.user_id,
            node_id=step.id,
            action=decision,
            comment=comment,
            timestamp=now,
            step_visit=instance.step_visit,
            escalated=authorization.escalated
        )
        instance.approvals.append(approval)
        self._touch(instance, now)
        self.audit_writer.write_decision(instance, approval)

        outcome = self.permission_guard.step_outcome(
            step, instance.approvals_for_current_step(), instance.eligible_approvers
        )

        logger.info(
            f"Recorded {decision.value} on step {step.id}: outcome {outcome.value}",
            extra={
                "instance_id": instance.instance_id,
                "node_id": step.id,
                "user_id": actor.user_id,
                "action": decision.value,
                "status": outcome.value,
            }
        )

        if outcome == StepOutcome.REJECTED:
            instance.status = InstanceStatus.REJECTED
            instance.completed_at = now
            instance.eligible_approvers = set()
            self.audit_writer.write_instance_completed(instance, timestamp=now)
            return ActionResult(instance=instance)

        if outcome == StepOutcome.SATISFIED:
            self.audit_writer.write_step_completed(instance, step.id, timestamp=now)
            try:
                self._advance(instance, template, step, resource_attrs, now)
            except CorruptGraphError as e:
                self._halt_corrupt(instance, e, now)
                return ActionResult.failure(e, instance=instance)
            return ActionResult(instance=instance, advanced=True)

        return ActionResult(instance=instance)

    def _check_preconditions(
        self,
        instance: WorkflowInstance,
        template: WorkflowTemplate,
        now: datetime,
        expected_version: Optional[int]
    ) -> Optional[DomainError]:
        error = self._check_freshness(instance, now, expected_version)
        if error is not None:
            return error

        if instance.template_id != template.template_id:
            return InvalidActionError(
                f"Instance {instance.instance_id} was not started from template {template.template_id}",
                details={"instance_template_id": instance.template_id, "template_id": template.template_id}
            )

        if instance.is_terminal:
            return InvalidActionError(
                f"Instance {instance.instance_id} is {instance.status.value}",
                details={"instance_id": instance.instance_id, "status": instance.status.value}
            )

        if instance.corrupt:
            return CorruptGraphError(
                f"Instance {instance.instance_id} is halted: {instance.corruption_reason}",
                details={"instance_id": instance.instance_id, "node_id": instance.current_node_id}
            )

        return None

    @staticmethod
    def _check_freshness(
        instance: WorkflowInstance,
        now: datetime,
        expected_version: Optional[int]
    ) -> Optional[DomainError]:
        if expected_version is not None and expected_version != instance.version:
            return StaleActionError(
                f"Instance {instance.instance_id} was modified (version {instance.version}, "
                f"expected {expected_version})",
                details={"expected_version": expected_version, "actual_version": instance.version}
            )

        last_action_at = instance.last_action_at
        if last_action_at is not None and now < last_action_at:
            return StaleActionError(
                f"Action at {now.isoformat()} predates the last recorded action",
                details={"timestamp": now.isoformat(), "last_action_at": last_action_at.isoformat()}
            )

        return None

    # =========================================================================
    # Transition Logic
    # =========================================================================

    def _advance(
        self,
        instance: WorkflowInstance,
        template: WorkflowTemplate,
        from_node: Node,
        snapshot: ResourceAttrs,
        now: datetime
    ) -> None:
        """Move past from_node to the next approval or end node"""
        landing, branches = self.transition_resolver.advance(template.graph, from_node, snapshot)

        for node_id, taken in branches:
            self.audit_writer.write_branch_taken(instance, node_id, taken, timestamp=now)

        if isinstance(landing, EndNode):
            instance.current_node_id = landing.id
            instance.node_entered_at = now
            instance.status = InstanceStatus.APPROVED
            instance.completed_at = now
            instance.eligible_approvers = set()
            self.audit_writer.write_instance_completed(instance, timestamp=now)
            logger.info(
                f"Instance {instance.instance_id} approved",
                extra={"instance_id": instance.instance_id, "node_id": landing.id, "status": "approved"}
            )
            return

        self._enter_step(instance, landing, snapshot, now)

    def _enter_step(
        self,
        instance: WorkflowInstance,
        step: ApprovalNode,
        snapshot: ResourceAttrs,
        now: datetime
    ) -> None:
        """Enter an approval node: new visit, SLA clock reset, eligible set recomputed"""
        instance.current_node_id = step.id
        instance.step_visit += 1
        instance.node_entered_at = now

        if self.directory is not None:
            candidates = self.directory.find_users_by_roles(step.roles)
            instance.eligible_approvers = self.permission_guard.eligible_approvers(step, candidates, snapshot)
        else:
            instance.eligible_approvers = set()

        self.audit_writer.write_step_entered(instance, step.id, timestamp=now)

    def _halt_corrupt(self, instance: WorkflowInstance, error: CorruptGraphError, now: datetime) -> None:
        """Flag the instance for an operator; it stays pending and is never retried"""
        instance.corrupt = True
        instance.corruption_reason = error.message
        self._touch(instance, now)
        self.audit_writer.write_engine_error(instance, error, timestamp=now)

    @staticmethod
    def _step_breached(instance: WorkflowInstance, step: ApprovalNode, now: datetime) -> bool:
        if instance.is_terminal or instance.current_node_id != step.id:
            return False
        if step.sla_hours is None or instance.node_entered_at is None:
            return False
        return is_overdue(calculate_due_at(instance.node_entered_at, step.sla_hours), now)

    @staticmethod
    def _touch(instance: WorkflowInstance, now: datetime) -> None:
        instance.version += 1
        instance.updated_at = now
