"""
Preview Service

Evaluates unsaved criteria while a segment is being authored. Nothing is
persisted; the same criteria against an unchanged contact set always give
the same answer.
"""

from typing import Any, Mapping, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from contact_segments.services.segments.compiler import Predicate, PredicateCompiler
from contact_segments.services.segments.evaluator import MembershipEvaluator, MembershipPage
from contact_segments.services.segments.registry import CONTACT_FIELDS, FieldRegistry
from contact_segments.services.segments.validator import ConditionValidator


class PreviewService:
    """Validator -> Compiler -> Evaluator over ad-hoc criteria."""

    def __init__(self, db: AsyncSession, registry: FieldRegistry = CONTACT_FIELDS):
        self.validator = ConditionValidator(registry)
        self.compiler = PredicateCompiler(registry)
        self.evaluator = MembershipEvaluator(db)

    def validate_and_compile(
        self, conditions: Sequence[Mapping[str, Any]], organization_id: int
    ) -> Predicate:
        group = self.validator.validate(conditions)
        return self.compiler.compile(group, organization_id)

    async def preview(self, conditions: Sequence[Mapping[str, Any]], organization_id: int) -> int:
        """Number of the organization's contacts matching the criteria."""
        return await self.evaluator.count(self.validate_and_compile(conditions, organization_id))

    async def preview_members(
        self,
        conditions: Sequence[Mapping[str, Any]],
        organization_id: int,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> MembershipPage:
        predicate = self.validate_and_compile(conditions, organization_id)
        return await self.evaluator.materialize(predicate, page=page, page_size=page_size)
