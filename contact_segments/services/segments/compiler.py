"""
Predicate Compiler

Compiles a validated ConditionGroup into a Predicate: a tuple of SQLAlchemy
clauses over the contacts table, bound to the organization the caller
resolved. The organization scope is part of the Predicate itself, so every
query built from one is tenant-isolated.

STRING OPERATORS (case-insensitive):
- equals        lower(field) = lower(value)
- notEquals     field IS NOT NULL AND lower(field) <> lower(value)
- contains      field ILIKE %value%
- startsWith    field ILIKE value%
- endsWith      field ILIKE %value

LIKE wildcards in the user's value are escaped, so "50%" matches literally.

DATE OPERATORS (naive UTC):
- on            start_of_day <= field < start_of_next_day
- before        field < value
- after         field > value

Conditions are combined with AND. The per-condition logicalOperator tag is
not applied; a grouped All/Any/Not expression model would replace
``Predicate.where_clause`` and has not been specified yet.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import and_, func, select
from sqlalchemy.sql.elements import ColumnElement

from contact_segments.exceptions import EvaluationError
from contact_segments.models.contact import Contact
from contact_segments.models.segment import ContactListMembership
from contact_segments.services.segments.conditions import Condition, ConditionGroup
from contact_segments.services.segments.registry import (
    CONTACT_FIELDS,
    FieldNotFound,
    FieldRegistry,
    Operator,
    ValueType,
)

logger = logging.getLogger(__name__)

LIKE_ESCAPE = "\\"


class Predicate:
    """
    Compiled, tenant-scoped filter over contacts.

    Only the compiler builds these. ``organization_id`` is mandatory and the
    scope clause is emitted by ``where_clause`` itself, never by callers.
    """

    __slots__ = ("organization_id", "clauses", "group")

    def __init__(
        self,
        organization_id: int,
        clauses: Tuple[ColumnElement, ...],
        group: Optional[ConditionGroup] = None,
    ):
        if isinstance(organization_id, bool) or not isinstance(organization_id, int):
            raise EvaluationError("A predicate cannot be built without an organization id")
        self.organization_id = organization_id
        self.clauses = tuple(clauses)
        self.group = group

    def where_clause(self) -> ColumnElement:
        return and_(Contact.organization_id == self.organization_id, *self.clauses)

    def __repr__(self) -> str:
        return f"<Predicate org={self.organization_id} clauses={len(self.clauses)}>"


def escape_like(value: str) -> str:
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def build_string_clause(column: Any, operator: Operator, value: str) -> ColumnElement:
    if operator == Operator.EQUALS:
        return func.lower(column) == func.lower(value)
    if operator == Operator.NOT_EQUALS:
        return and_(column.isnot(None), func.lower(column) != func.lower(value))

    escaped = escape_like(value)
    if operator == Operator.CONTAINS:
        return column.ilike(f"%{escaped}%", escape=LIKE_ESCAPE)
    if operator == Operator.STARTS_WITH:
        return column.ilike(f"{escaped}%", escape=LIKE_ESCAPE)
    if operator == Operator.ENDS_WITH:
        return column.ilike(f"%{escaped}", escape=LIKE_ESCAPE)

    raise EvaluationError(f"Operator '{operator.value}' has no string form")


def build_date_clause(column: Any, operator: Operator, value: datetime) -> ColumnElement:
    if operator == Operator.ON:
        start_of_day = datetime.combine(value.date(), time.min)
        return and_(column >= start_of_day, column < start_of_day + timedelta(days=1))
    if operator == Operator.BEFORE:
        return column < value
    if operator == Operator.AFTER:
        return column > value

    raise EvaluationError(f"Operator '{operator.value}' has no date form")


CLAUSE_BUILDERS: Dict[ValueType, Callable[[Any, Operator, Any], ColumnElement]] = {
    ValueType.STRING: build_string_clause,
    ValueType.DATE: build_date_clause,
}


class PredicateCompiler:
    """Compiles condition groups against a field registry."""

    def __init__(self, registry: FieldRegistry = CONTACT_FIELDS):
        self.registry = registry

    def compile(self, group: ConditionGroup, organization_id: int) -> Predicate:
        clauses = tuple(self._compile_condition(condition) for condition in group)
        logger.debug("Compiled %d conditions for organization %s", len(clauses), organization_id)
        return Predicate(organization_id, clauses, group)

    def compile_membership(self, list_id: int, organization_id: int) -> Predicate:
        """Predicate matching the explicit members of a static list."""
        members = select(ContactListMembership.contact_id).where(
            ContactListMembership.list_id == list_id
        )
        return Predicate(organization_id, (Contact.id.in_(members),))

    def _compile_condition(self, condition: Condition) -> ColumnElement:
        # Re-resolve through the registry; a field may have been withdrawn
        # between validation and compilation.
        try:
            descriptor = self.registry.lookup(condition.field.name)
        except FieldNotFound:
            raise EvaluationError(
                f"Condition '{condition.id}' references field '{condition.field.name}' "
                "which is no longer filterable"
            )

        if descriptor.value_type != condition.field.value_type:
            raise EvaluationError(
                f"Condition '{condition.id}': field '{descriptor.name}' changed type "
                f"to {descriptor.value_type.value}"
            )
        if condition.operator not in descriptor.allowed_operators:
            raise EvaluationError(
                f"Condition '{condition.id}': operator '{condition.operator.value}' "
                f"is not allowed for field '{descriptor.name}'"
            )

        column = getattr(Contact, descriptor.column, None)
        if column is None:
            raise EvaluationError(f"Field '{descriptor.name}' maps to no contact column")

        builder = CLAUSE_BUILDERS[descriptor.value_type]
        return builder(column, condition.operator, condition.parsed_value)
