"""Tests for ConditionEvaluator"""
import pytest

from approval_engine.domain.enums import AbacOperator
from approval_engine.domain.models import (
    ABACCondition, ConditionNode, EvaluationContext, ResourceAttrs, UserAttrs
)
from approval_engine.engine.condition_evaluator import ConditionEvaluator


@pytest.fixture
def evaluator() -> ConditionEvaluator:
    return ConditionEvaluator()


@pytest.fixture
def context() -> EvaluationContext:
    return EvaluationContext(
        user=UserAttrs(
            user_id="u-1",
            roles=["manager"],
            department_id=10,
            division_id="EMEA",
            job_level="3",
            approval_limit_amount=20000
        ),
        resource=ResourceAttrs(department_id="10", amount="15000", status="submitted", created_by="u-2")
    )


def condition(attribute: str, operator: str, value) -> ABACCondition:
    return ABACCondition(attribute=attribute, operator=AbacOperator(operator), value=value)


class TestComparison:
    """Typed comparison rules"""

    @pytest.mark.parametrize("operator,value,expected", [
        ("eq", 10, True),
        ("eq", "10", True),
        ("eq", "10.0", True),
        ("ne", 11, True),
        ("gt", 9, True),
        ("gte", 10, True),
        ("lt", 10, False),
        ("lte", "10", True),
    ])
    def test_numeric_comparison(self, evaluator, context, operator, value, expected):
        assert evaluator.evaluate(condition("user.department_id", operator, value), context) is expected

    def test_numeric_strings_compare_as_numbers(self, evaluator, context):
        # "15000" > "9000" is False lexicographically, True numerically
        assert evaluator.evaluate(condition("resource.amount", "gt", "9000"), context) is True

    def test_non_numeric_compares_lexicographically(self, evaluator, context):
        assert evaluator.evaluate(condition("user.division_id", "gt", "APAC"), context) is True
        assert evaluator.evaluate(condition("user.division_id", "lt", "APAC"), context) is False

    def test_in_with_list(self, evaluator, context):
        assert evaluator.evaluate(condition("resource.status", "in", ["draft", "submitted"]), context)
        assert not evaluator.evaluate(condition("resource.status", "in", ["approved"]), context)

    def test_in_with_comma_separated_string(self, evaluator, context):
        assert evaluator.evaluate(condition("user.department_id", "in", "5, 10, 15"), context)
        assert not evaluator.evaluate(condition("user.department_id", "in", "5,15"), context)

    def test_reference_value_resolves_other_side(self, evaluator, context):
        cond = condition("user.department_id", "eq", "{{resource.department_id}}")
        assert evaluator.evaluate(cond, context) is True

    def test_reference_to_amount_limit(self, evaluator, context):
        cond = condition("resource.amount", "lte", "{{ user.approval_limit_amount }}")
        assert evaluator.evaluate(cond, context) is True


class TestFailClosed:
    """Missing or unknown attributes never pass"""

    def test_missing_attribute_is_false(self, evaluator):
        ctx = EvaluationContext(user=UserAttrs(user_id="u-1"), resource=ResourceAttrs())
        for operator in ("eq", "ne", "gt", "gte", "lt", "lte", "in"):
            assert evaluator.evaluate(condition("user.department_id", operator, 1), ctx) is False

    def test_unknown_path_is_false(self, evaluator, context):
        assert evaluator.evaluate(condition("user.salary", "gt", 0), context) is False
        assert evaluator.evaluate(condition("department_id", "eq", 10), context) is False

    def test_reference_to_missing_attribute_is_false(self, evaluator):
        ctx = EvaluationContext(user=UserAttrs(user_id="u-1", department_id=10))
        cond = condition("user.department_id", "eq", "{{resource.department_id}}")
        assert evaluator.evaluate(cond, ctx) is False


class TestEvaluateAll:

    def test_trace_keeps_every_result(self, evaluator, context):
        trace = evaluator.evaluate_all(
            [
                condition("user.department_id", "eq", 10),
                condition("resource.amount", "lt", 1000),
            ],
            context
        )

        assert len(trace.results) == 2
        assert trace.passed is False
        assert [r.attribute for r in trace.failed] == ["resource.amount"]
        assert trace.results[1].actual == "15000"

    def test_empty_condition_list_passes(self, evaluator, context):
        assert evaluator.evaluate_all([], context).passed is True


class TestEvaluateBranch:

    def make_node(self, field: str, operator: str, value) -> ConditionNode:
        return ConditionNode(id="c1", field=field, operator=operator, value=value)

    def test_amount_threshold(self, evaluator):
        node = self.make_node("amount", "gt", 10000)
        assert evaluator.evaluate_branch(node, ResourceAttrs(amount=15000)) is True
        assert evaluator.evaluate_branch(node, ResourceAttrs(amount=5000)) is False

    def test_resource_prefix_is_accepted(self, evaluator):
        node = self.make_node("resource.status", "eq", "urgent")
        assert evaluator.evaluate_branch(node, ResourceAttrs(status="urgent")) is True

    def test_extra_snapshot_fields(self, evaluator):
        node = self.make_node("category", "in", "it,hr")
        assert evaluator.evaluate_branch(node, ResourceAttrs(category="hr")) is True

    def test_missing_field_takes_false_branch(self, evaluator):
        node = self.make_node("amount", "neq", 0)
        assert evaluator.evaluate_branch(node, ResourceAttrs()) is False

    def test_editor_operator_symbols(self):
        node = ConditionNode.model_validate(
            {"id": "c1", "condition_field": "amount", "condition_operator": "!=", "condition_value": 1}
        )
        assert node.operator.value == "neq"
