"""
Field Type Registry

Single source of truth for which contact attributes a segment may filter on,
the value type of each attribute and the operators legal for that type.

Value types are a closed set. Each one registers exactly once:
- the operators it accepts
- the parser that turns the raw condition string into a typed value

Nothing outside this module names a contact field.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Tuple


class ValueType(str, Enum):
    """Value types a filterable field can have."""

    STRING = "string"
    DATE = "date"


class Operator(str, Enum):
    """Every operator a condition may use, across all value types."""

    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    ON = "on"
    BEFORE = "before"
    AFTER = "after"


class ValueParseError(ValueError):
    """Raised by a value type parser for a value it cannot interpret."""


class FieldNotFound(LookupError):
    """Raised by FieldRegistry.lookup for an undeclared field."""

    def __init__(self, field_name: str):
        super().__init__(f"Unknown field '{field_name}'")
        self.field_name = field_name


def parse_string(raw: str) -> str:
    if not raw.strip():
        raise ValueParseError("value must not be empty")
    return raw


def parse_date(raw: str) -> datetime:
    """
    Parse an ISO-8601 calendar date or date-time.

    Returns a naive UTC datetime. A bare date becomes midnight of that day.
    """
    text = raw.strip()
    if not text:
        raise ValueParseError("value must not be empty")
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValueParseError(f"'{raw}' is not a valid calendar date")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@dataclass(frozen=True)
class ValueTypeSpec:
    """Operators and parser registered for one value type."""

    value_type: ValueType
    operators: FrozenSet[Operator]
    parse: Callable[[str], object]


VALUE_TYPES: Dict[ValueType, ValueTypeSpec] = {
    ValueType.STRING: ValueTypeSpec(
        ValueType.STRING,
        frozenset({
            Operator.EQUALS,
            Operator.CONTAINS,
            Operator.STARTS_WITH,
            Operator.ENDS_WITH,
            Operator.NOT_EQUALS,
        }),
        parse_string,
    ),
    ValueType.DATE: ValueTypeSpec(
        ValueType.DATE,
        frozenset({Operator.ON, Operator.BEFORE, Operator.AFTER}),
        parse_date,
    ),
}


@dataclass(frozen=True)
class FieldDescriptor:
    """A filterable field: its public name, value type and backing column."""

    name: str
    value_type: ValueType
    column: str
    label: str = ""

    @property
    def allowed_operators(self) -> FrozenSet[Operator]:
        return VALUE_TYPES[self.value_type].operators

    def parse(self, raw: str) -> object:
        return VALUE_TYPES[self.value_type].parse(raw)


class FieldRegistry:
    """Immutable name -> FieldDescriptor mapping."""

    def __init__(self, descriptors: Iterable[FieldDescriptor]):
        fields: Dict[str, FieldDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in fields:
                raise ValueError(f"Field '{descriptor.name}' declared twice")
            fields[descriptor.name] = descriptor
        self._fields: Tuple[Tuple[str, FieldDescriptor], ...] = tuple(fields.items())
        self._index = dict(self._fields)

    def lookup(self, field_name: str) -> FieldDescriptor:
        try:
            return self._index[field_name]
        except (KeyError, TypeError):
            raise FieldNotFound(str(field_name))

    def __contains__(self, field_name: object) -> bool:
        return field_name in self._index

    def fields(self) -> List[FieldDescriptor]:
        return [descriptor for _, descriptor in self._fields]

    def without(self, *field_names: str) -> "FieldRegistry":
        """Return a copy of this registry with the given fields removed."""
        return FieldRegistry(d for name, d in self._fields if name not in field_names)


CONTACT_FIELDS = FieldRegistry([
    FieldDescriptor("email", ValueType.STRING, "email", "Email"),
    FieldDescriptor("firstName", ValueType.STRING, "first_name", "First Name"),
    FieldDescriptor("lastName", ValueType.STRING, "last_name", "Last Name"),
    FieldDescriptor("companyName", ValueType.STRING, "company_name", "Company"),
    FieldDescriptor("jobTitle", ValueType.STRING, "job_title", "Job Title"),
    FieldDescriptor("source", ValueType.STRING, "source", "Source"),
    FieldDescriptor("createdAt", ValueType.DATE, "created_at", "Created Date"),
])
