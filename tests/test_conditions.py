"""
Tests for step condition evaluation
"""

import pytest

from app.engine.conditions import (
    ConditionOperator,
    StepCondition,
    conditions_met,
    evaluate_condition,
)

VALUES = {
    "amount": 12500.0,
    "cost_center": "CC-100",
    "destination": "Berlin, Germany",
    "leave_type": "annual",
    "days": 3,
}


@pytest.mark.parametrize(
    "condition,expected",
    [
        (StepCondition("cost_center", ConditionOperator.EQUALS, "CC-100"), True),
        (StepCondition("days", ConditionOperator.EQUALS, 3), True),
        (StepCondition("cost_center", ConditionOperator.NOT_EQUALS, "CC-200"), True),
        (StepCondition("amount", ConditionOperator.GREATER_THAN, 10000), True),
        (StepCondition("amount", ConditionOperator.GREATER_THAN, "12500"), False),
        (StepCondition("amount", ConditionOperator.LESS_THAN, 20000), True),
        (StepCondition("amount", ConditionOperator.BETWEEN, 10000, 15000), True),
        (StepCondition("amount", ConditionOperator.BETWEEN, 13000, 15000), False),
        (StepCondition("destination", ConditionOperator.CONTAINS, "germany"), True),
        (StepCondition("leave_type", ConditionOperator.IN, ["sick", "annual"]), True),
        (StepCondition("leave_type", ConditionOperator.IN, "sick, parental"), False),
        (StepCondition("missing", ConditionOperator.EQUALS, ""), True),
    ],
)
def test_evaluate_condition(condition, expected):
    assert evaluate_condition(condition, VALUES) is expected


def test_numeric_operator_on_text_is_false():
    condition = StepCondition("cost_center", ConditionOperator.GREATER_THAN, 5)
    assert evaluate_condition(condition, VALUES) is False


def test_between_without_upper_bound_matches_exact_value():
    condition = StepCondition("days", ConditionOperator.BETWEEN, 3)
    assert evaluate_condition(condition, VALUES) is True


def test_all_conditions_must_hold():
    over_limit = StepCondition("amount", ConditionOperator.GREATER_THAN, 10000)
    wrong_center = StepCondition("cost_center", ConditionOperator.EQUALS, "CC-999")
    assert conditions_met([over_limit], VALUES) is True
    assert conditions_met([over_limit, wrong_center], VALUES) is False
    assert conditions_met([], VALUES) is True


def test_condition_dict_round_trip():
    condition = StepCondition("amount", ConditionOperator.BETWEEN, 1, 5)
    assert StepCondition.from_dict(condition.to_dict()) == condition
