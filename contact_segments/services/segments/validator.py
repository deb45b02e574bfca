"""
Condition Validator

Turns raw, loosely-typed condition dicts into a ConditionGroup, or raises a
ValidationError naming the first offending condition. Checks run in a fixed
order and stop at the first failure:

1. the list is non-empty
2. the field is declared in the registry
3. the operator is legal for the field's value type
4. the value is non-empty and parses for the field's value type

Nothing is ever dropped: a condition either validates or fails the request.
"""

from typing import Any, List, Mapping, Optional, Sequence

from contact_segments.exceptions import ValidationError
from contact_segments.services.segments.conditions import Condition, ConditionGroup, LogicalOperator
from contact_segments.services.segments.registry import (
    CONTACT_FIELDS,
    FieldNotFound,
    FieldRegistry,
    Operator,
    ValueParseError,
)


class ConditionValidator:
    """Validates raw criteria against a field registry."""

    def __init__(self, registry: FieldRegistry = CONTACT_FIELDS):
        self.registry = registry

    def validate(self, raw_conditions: Sequence[Mapping[str, Any]]) -> ConditionGroup:
        if isinstance(raw_conditions, (str, bytes)) or not isinstance(raw_conditions, Sequence):
            raise ValidationError("Conditions must be a list")
        if not raw_conditions:
            raise ValidationError("At least one condition is required")

        conditions: List[Condition] = []
        for position, raw in enumerate(raw_conditions):
            conditions.append(self._validate_one(raw, position))

        return ConditionGroup(conditions)

    def _validate_one(self, raw: Any, position: int) -> Condition:
        if not isinstance(raw, Mapping):
            raise ValidationError(f"Condition at position {position} must be an object")

        condition_id = raw.get("id")
        if not isinstance(condition_id, str) or not condition_id:
            raise ValidationError(f"Condition at position {position} has no id")

        for key in ("field", "operator", "value"):
            if not isinstance(raw.get(key), str):
                raise ValidationError(
                    f"Condition '{condition_id}' is missing a string '{key}'",
                    condition_id=condition_id,
                )

        field_name = raw["field"]
        try:
            descriptor = self.registry.lookup(field_name)
        except FieldNotFound:
            raise ValidationError(
                f"Condition '{condition_id}' uses unknown field '{field_name}'",
                condition_id=condition_id,
                field=field_name,
            )

        operator = self._operator(raw["operator"])
        if operator is None or operator not in descriptor.allowed_operators:
            allowed = ", ".join(sorted(op.value for op in descriptor.allowed_operators))
            raise ValidationError(
                f"Condition '{condition_id}': operator '{raw['operator']}' is not allowed "
                f"for {descriptor.value_type.value} field '{field_name}' (allowed: {allowed})",
                condition_id=condition_id,
                field=field_name,
            )

        try:
            parsed = descriptor.parse(raw["value"])
        except ValueParseError as e:
            raise ValidationError(
                f"Condition '{condition_id}': {e}",
                condition_id=condition_id,
                field=field_name,
            )

        logical = raw.get("logicalOperator")
        if logical is not None:
            try:
                logical = LogicalOperator(logical)
            except ValueError:
                raise ValidationError(
                    f"Condition '{condition_id}': logicalOperator must be AND or OR",
                    condition_id=condition_id,
                    field=field_name,
                )

        return Condition(
            id=condition_id,
            field=descriptor,
            operator=operator,
            value=raw["value"],
            parsed_value=parsed,
            logical_operator=logical,
        )

    @staticmethod
    def _operator(raw_operator: str) -> Optional[Operator]:
        try:
            return Operator(raw_operator)
        except ValueError:
            return None
