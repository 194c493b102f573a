"""
Step conditions

A template step may carry conditions over the request's form values. When any
condition fails the step is materialized as skipped at publish time.
"""

import enum
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence


class ConditionOperator(str, enum.Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    BETWEEN = "between"
    IN = "in"


@dataclass(frozen=True)
class StepCondition:
    field: str
    operator: ConditionOperator
    value: Any
    value2: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "operator": self.operator.value,
            "value": self.value,
            "value2": self.value2,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepCondition":
        return cls(
            field=data["field"],
            operator=ConditionOperator(data["operator"]),
            value=data.get("value"),
            value2=data.get("value2"),
        )


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


def evaluate_condition(condition: StepCondition, values: Mapping[str, Any]) -> bool:
    """Evaluate one condition against flattened form values"""
    actual = values.get(condition.field)
    operator = condition.operator

    if operator == ConditionOperator.EQUALS:
        return _as_text(actual) == _as_text(condition.value)
    if operator == ConditionOperator.NOT_EQUALS:
        return _as_text(actual) != _as_text(condition.value)
    if operator == ConditionOperator.CONTAINS:
        return _as_text(condition.value).lower() in _as_text(actual).lower()
    if operator == ConditionOperator.IN:
        if isinstance(condition.value, (list, tuple, set)):
            options = [_as_text(v).strip() for v in condition.value]
        else:
            options = [v.strip() for v in _as_text(condition.value).split(",")]
        return _as_text(actual) in options

    number = _to_number(actual)
    low = _to_number(condition.value)
    if number is None or low is None:
        return False
    if operator == ConditionOperator.GREATER_THAN:
        return number > low
    if operator == ConditionOperator.LESS_THAN:
        return number < low
    if operator == ConditionOperator.BETWEEN:
        high = _to_number(condition.value2)
        if high is None:
            high = low
        return low <= number <= high
    return False


def conditions_met(conditions: Sequence[StepCondition], values: Mapping[str, Any]) -> bool:
    """All conditions must hold; an empty list always matches"""
    return all(evaluate_condition(c, values) for c in conditions)
