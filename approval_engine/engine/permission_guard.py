"""Permission Guard - Authorization and completion rules for approval steps"""
from typing import Dict, Iterable, List, Optional, Set

from ..config.settings import settings
from ..domain.enums import ApprovalAction, ApprovalType, StepOutcome
from ..domain.models import (
    Approval, ApprovalNode, AuthorizationDecision, ConditionTrace,
    EvaluationContext, ResourceAttrs, UserAttrs
)
from ..utils.logger import get_logger
from .condition_evaluator import ConditionEvaluator

logger = get_logger(__name__)


class PermissionGuard:
    """
    Authorization enforcement for approval steps

    Rules:
    - RBAC: actor holds required_role, or any role in required_roles
    - ABAC: when enabled, every condition must hold (in addition to RBAC)
    - Escalation: once a step's SLA is breached and auto_escalate is set,
      escalation_role stands in for the required roles
    - A step with no role requirement admits nobody
    """

    def __init__(self, condition_evaluator: Optional[ConditionEvaluator] = None):
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()

    # =========================================================================
    # Authorization
    # =========================================================================

    def can_act(
        self,
        step: ApprovalNode,
        actor: UserAttrs,
        resource_attrs: Optional[ResourceAttrs] = None,
        escalated: bool = False
    ) -> bool:
        """Check if actor may approve or reject on step"""
        return self.explain(step, actor, resource_attrs, escalated=escalated).allowed

    def explain(
        self,
        step: ApprovalNode,
        actor: UserAttrs,
        resource_attrs: Optional[ResourceAttrs] = None,
        escalated: bool = False
    ) -> AuthorizationDecision:
        """
        Authorization decision with the reasons behind it

        Args:
            step: Approval node being acted on
            actor: Acting user's attributes
            resource_attrs: Business item attributes for ABAC
            escalated: Whether the step's escalation is currently active

        Returns:
            AuthorizationDecision with RBAC/ABAC flags and the ABAC trace
        """
        if not isinstance(step, ApprovalNode):
            return AuthorizationDecision(allowed=False, rbac_passed=False, abac_passed=False)

        if not step.has_role_requirement:
            logger.warning(
                f"Approval node {step.id} has no role requirement; denying",
                extra={"node_id": step.id, "user_id": actor.user_id}
            )
            return AuthorizationDecision(allowed=False, rbac_passed=False, abac_passed=False)

        rbac_passed = any(actor.has_role(role) for role in step.roles)
        via_escalation = False
        if (
            not rbac_passed
            and escalated
            and step.auto_escalate
            and actor.has_role(step.escalation_role)
        ):
            rbac_passed = True
            via_escalation = True

        trace = ConditionTrace()
        if step.abac_enabled:
            context = EvaluationContext(user=actor, resource=resource_attrs or ResourceAttrs())
            trace = self.condition_evaluator.evaluate_all(step.abac_conditions, context)

        return AuthorizationDecision(
            allowed=rbac_passed and trace.passed,
            rbac_passed=rbac_passed,
            abac_passed=trace.passed,
            escalated=via_escalation,
            trace=trace
        )

    def eligible_approvers(
        self,
        step: ApprovalNode,
        candidates: Iterable[UserAttrs],
        resource_attrs: Optional[ResourceAttrs] = None
    ) -> Set[str]:
        """User IDs among candidates that may act on step"""
        return {
            user.user_id for user in candidates
            if self.can_act(step, user, resource_attrs)
        }

    # =========================================================================
    # Completion criteria
    # =========================================================================

    def is_step_satisfied(
        self,
        step: ApprovalNode,
        approvals_for_step: List[Approval],
        eligible_approvers: Optional[Iterable[str]] = None
    ) -> bool:
        """Check if the approvals collected so far complete the step"""
        return self.step_outcome(step, approvals_for_step, eligible_approvers) == StepOutcome.SATISFIED

    def is_step_rejected(
        self,
        step: ApprovalNode,
        approvals_for_step: List[Approval],
        eligible_approvers: Optional[Iterable[str]] = None
    ) -> bool:
        """Check if the rejections collected so far terminate the instance"""
        return self.step_outcome(step, approvals_for_step, eligible_approvers) == StepOutcome.REJECTED

    def step_outcome(
        self,
        step: ApprovalNode,
        approvals_for_step: List[Approval],
        eligible_approvers: Optional[Iterable[str]] = None
    ) -> StepOutcome:
        """
        Evaluate the step's completion policy

        Only the first decision of each user counts; comments never count.
        Escalated deciders join the eligible set and are counted like any
        other approver. An empty eligible set means nobody is known to be
        eligible: parallel_all then stays pending and parallel_any rejects on
        the first reject.

        Args:
            step: Approval node
            approvals_for_step: Records for the current visit of step
            eligible_approvers: User IDs that could act when the step was entered

        Returns:
            PENDING, SATISFIED or REJECTED
        """
        decisions = self._first_decisions(step, approvals_for_step)
        approved = {u for u, a in decisions.items() if a.action == ApprovalAction.APPROVED}
        rejected = {u for u, a in decisions.items() if a.action == ApprovalAction.REJECTED}
        eligible = set(eligible_approvers or ()) | {u for u, a in decisions.items() if a.escalated}
        approval_type = step.approval_type

        if approval_type == ApprovalType.SEQUENTIAL:
            if rejected:
                return StepOutcome.REJECTED
            if approved:
                return StepOutcome.SATISFIED

        elif approval_type == ApprovalType.PARALLEL_ANY:
            if approved:
                return StepOutcome.SATISFIED
            if rejected and (not eligible or eligible <= rejected):
                return StepOutcome.REJECTED

        elif approval_type == ApprovalType.PARALLEL_ALL:
            if rejected:
                return StepOutcome.REJECTED
            if eligible and eligible <= approved:
                return StepOutcome.SATISFIED

        elif approval_type == ApprovalType.PARALLEL_MAJORITY:
            required = self.required_count(step)
            if len(approved) >= required:
                return StepOutcome.SATISFIED
            if rejected:
                if settings.majority_reject_policy == "immediate":
                    return StepOutcome.REJECTED
                if eligible:
                    undecided = eligible - approved - rejected
                    if len(approved) + len(undecided) < required:
                        return StepOutcome.REJECTED

        return StepOutcome.PENDING

    @staticmethod
    def required_count(step: ApprovalNode) -> int:
        """Approvals needed for a parallel_majority step"""
        return step.required_approvals_count or settings.default_majority_count

    @staticmethod
    def _first_decisions(step: ApprovalNode, approvals: List[Approval]) -> Dict[str, Approval]:
        """First approve/reject per user on this step; repeats are ignored"""
        decisions: Dict[str, Approval] = {}
        for record in approvals:
            if record.node_id != step.id or record.action == ApprovalAction.COMMENTED:
                continue
            decisions.setdefault(record.user_id, record)
        return decisions
