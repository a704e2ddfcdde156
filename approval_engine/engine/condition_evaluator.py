"""Condition Evaluator - Safe evaluation of ABAC and branch conditions"""
from decimal import Decimal
from typing import Any, Callable, Iterable, List, Optional

from ..config.settings import settings
from ..domain.enums import AbacOperator, BranchOperator
from ..domain.models import (
    ABACCondition, ConditionNode, ConditionResult, ConditionTrace,
    EvaluationContext, ResourceAttrs
)
from ..utils.logger import get_logger
from .attributes import reference_path, resolve_attribute

logger = get_logger(__name__)

# Branch operators share the ABAC comparison rules
_BRANCH_TO_ABAC = {
    BranchOperator.GT: AbacOperator.GT,
    BranchOperator.LT: AbacOperator.LT,
    BranchOperator.EQ: AbacOperator.EQ,
    BranchOperator.NEQ: AbacOperator.NE,
    BranchOperator.IN: AbacOperator.IN,
}


class ConditionEvaluator:
    """
    Evaluate conditions safely

    Uses a fixed operator set - no eval() or exec(). Every failure path
    (missing attribute, unparseable value) evaluates to False.
    """

    def evaluate(self, condition: ABACCondition, context: EvaluationContext) -> bool:
        """
        Evaluate a single ABAC condition

        Args:
            condition: Attribute/operator/value predicate
            context: User and resource attributes

        Returns:
            True if the condition holds
        """
        return self._evaluate_single(condition, context).passed

    def evaluate_all(
        self,
        conditions: Iterable[ABACCondition],
        context: EvaluationContext
    ) -> ConditionTrace:
        """
        Evaluate a list of conditions and keep every result

        The trace is logged so policy decisions can be explained later.
        An empty list yields an empty trace, which counts as passed.
        """
        trace = ConditionTrace(results=[
            self._evaluate_single(condition, context) for condition in conditions
        ])

        if settings.trace_conditions and trace.results:
            logger.debug(
                f"ABAC evaluation for user {context.user.user_id}: "
                f"{len(trace.results) - len(trace.failed)}/{len(trace.results)} passed",
                extra={
                    "user_id": context.user.user_id,
                    "status": "passed" if trace.passed else "failed",
                    "conditions": [r.model_dump(mode="json") for r in trace.results],
                }
            )
        return trace

    def evaluate_branch(self, node: ConditionNode, snapshot: ResourceAttrs) -> bool:
        """
        Evaluate a condition node against the business item snapshot

        Args:
            node: Condition node with field/operator/value
            snapshot: Business item attributes

        Returns:
            True to follow the `true` edge, False for the `false` edge
        """
        field = node.field
        if field.startswith("resource."):
            field = field[len("resource."):]

        actual = snapshot.get_attribute(field)
        result = self._compare(actual, _BRANCH_TO_ABAC[node.operator], node.value)

        logger.debug(
            f"Branch {node.id}: {node.field} {node.operator.value} {node.value!r} "
            f"(actual={actual!r}) -> {result}",
            extra={"node_id": node.id}
        )
        return result

    def _evaluate_single(
        self,
        condition: ABACCondition,
        context: EvaluationContext
    ) -> ConditionResult:
        """Evaluate one condition, never raising"""
        actual = resolve_attribute(condition.attribute, context)
        expected = condition.value

        ref = reference_path(expected)
        if ref is not None:
            expected = resolve_attribute(ref, context)

        try:
            passed = self._compare(actual, condition.operator, expected)
        except Exception as e:
            logger.warning(f"Condition evaluation failed: {e}")
            passed = False  # Fail closed

        return ConditionResult(
            attribute=condition.attribute,
            operator=condition.operator.value,
            expected=expected,
            actual=actual,
            passed=passed
        )

    def _compare(self, actual: Any, operator: AbacOperator, expected: Any) -> bool:
        """Compare values using operator"""
        if actual is None or expected is None:
            return False

        if operator == AbacOperator.EQ:
            return self._values_equal(actual, expected)

        elif operator == AbacOperator.NE:
            return not self._values_equal(actual, expected)

        elif operator == AbacOperator.GT:
            return self._compare_ordered(actual, expected, lambda a, b: a > b)

        elif operator == AbacOperator.GTE:
            return self._compare_ordered(actual, expected, lambda a, b: a >= b)

        elif operator == AbacOperator.LT:
            return self._compare_ordered(actual, expected, lambda a, b: a < b)

        elif operator == AbacOperator.LTE:
            return self._compare_ordered(actual, expected, lambda a, b: a <= b)

        elif operator == AbacOperator.IN:
            return any(self._values_equal(actual, member) for member in self._as_list(expected))

        return False

    def _values_equal(self, a: Any, b: Any) -> bool:
        """Numeric equality when both sides are numbers, string equality otherwise"""
        num_a, num_b = _to_number(a), _to_number(b)
        if num_a is not None and num_b is not None:
            return num_a == num_b
        return _to_text(a) == _to_text(b)

    def _compare_ordered(
        self,
        a: Any,
        b: Any,
        comparator: Callable[[Any, Any], bool]
    ) -> bool:
        """Numeric comparison when both sides parse as numbers, else lexicographic"""
        num_a, num_b = _to_number(a), _to_number(b)
        if num_a is not None and num_b is not None:
            return comparator(num_a, num_b)
        return comparator(_to_text(a), _to_text(b))

    @staticmethod
    def _as_list(value: Any) -> List[Any]:
        """`in` accepts a list or a comma-separated string"""
        if isinstance(value, (list, tuple, set, frozenset)):
            return list(value)
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return [value]


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()
