"""Validated segment criteria."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from contact_segments.services.segments.registry import FieldDescriptor, Operator


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


@dataclass(frozen=True)
class Condition:
    """One field/operator/value rule.

    ``id`` is only used to attribute errors. ``logical_operator`` is kept so
    that criteria round-trip unchanged, but conditions are always combined
    with AND.
    """

    id: str
    field: FieldDescriptor
    operator: Operator
    value: str
    parsed_value: Any
    logical_operator: Optional[LogicalOperator] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "field": self.field.name,
            "operator": self.operator.value,
            "value": self.value,
            "logicalOperator": self.logical_operator.value if self.logical_operator else None,
        }


class ConditionGroup:
    """Ordered, non-empty sequence of conditions, combined with AND."""

    def __init__(self, conditions: List[Condition]):
        if not conditions:
            raise ValueError("A condition group needs at least one condition")
        self._conditions: Tuple[Condition, ...] = tuple(conditions)

    def __iter__(self) -> Iterator[Condition]:
        return iter(self._conditions)

    def __len__(self) -> int:
        return len(self._conditions)

    def __getitem__(self, index: int) -> Condition:
        return self._conditions[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConditionGroup):
            return NotImplemented
        return self._conditions == other._conditions

    def __repr__(self) -> str:
        return f"<ConditionGroup {len(self)} conditions>"

    def to_criteria(self) -> Dict[str, Any]:
        """Persistable criteria document."""
        return {"conditions": [condition.to_dict() for condition in self._conditions]}
