"""
Membership Evaluator

Executes a compiled Predicate against the contacts table, either as a
count or as a page of contact ids. Both operations are built from the same
select so a preview count and the materialized membership cannot disagree
on the same snapshot. A materialized page also carries the total, taken
from a window count in the same statement as the ids.

Materialization is always paginated; there is no unbounded fetch.
Storage failures surface as EvaluationError and are never retried here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from contact_segments.config import settings
from contact_segments.database import ORGANIZATION_OPTION
from contact_segments.exceptions import EvaluationError, ValidationError
from contact_segments.models.contact import Contact
from contact_segments.services.segments.compiler import Predicate

logger = logging.getLogger(__name__)


@dataclass
class MembershipPage:
    """One page of materialized segment membership."""

    contact_ids: List[int]
    page: int
    page_size: int
    total: int
    has_more: bool = field(init=False)

    def __post_init__(self):
        self.has_more = self.page * self.page_size < self.total


class MembershipEvaluator:
    """Runs predicates as counts or paginated id lists. Read-only."""

    def __init__(
        self,
        db: AsyncSession,
        default_page_size: Optional[int] = None,
        max_page_size: Optional[int] = None,
        max_offset: Optional[int] = None,
    ):
        self.db = db
        self.default_page_size = default_page_size or settings.SEGMENT_DEFAULT_PAGE_SIZE
        self.max_page_size = max_page_size or settings.SEGMENT_MAX_PAGE_SIZE
        self.max_offset = max_offset or settings.SEGMENT_MAX_OFFSET

    def _member_query(self, predicate: Predicate) -> Select:
        return (
            select(Contact.id)
            .where(predicate.where_clause())
            .execution_options(**{ORGANIZATION_OPTION: predicate.organization_id})
        )

    async def count(self, predicate: Predicate) -> int:
        count_query = (
            select(func.count())
            .select_from(self._member_query(predicate).subquery())
            .execution_options(**{ORGANIZATION_OPTION: predicate.organization_id})
        )
        try:
            result = await self.db.execute(count_query)
        except SQLAlchemyError as e:
            logger.exception(f"Count failed for organization {predicate.organization_id}")
            raise EvaluationError(f"Segment count failed: {type(e).__name__}")
        return result.scalar() or 0

    async def materialize(
        self,
        predicate: Predicate,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> MembershipPage:
        page_size = self._check_page(page, page_size)

        query = (
            self._member_query(predicate)
            .add_columns(func.count().over().label("total"))
            .order_by(Contact.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        try:
            result = await self.db.execute(query)
            rows = result.all()
            if rows:
                total = rows[0].total
            else:
                # Past the last page: no row to carry the window count
                total = await self.count(predicate) if page > 1 else 0
        except SQLAlchemyError as e:
            logger.exception(f"Materialize failed for organization {predicate.organization_id}")
            raise EvaluationError(f"Segment materialization failed: {type(e).__name__}")

        return MembershipPage(
            contact_ids=[row.id for row in rows],
            page=page,
            page_size=page_size,
            total=total,
        )

    async def iter_member_ids(
        self, predicate: Predicate, batch_size: Optional[int] = None
    ) -> AsyncIterator[int]:
        """
        Yield every matching contact id in ascending order.

        Uses keyset pagination (id > last seen) in batches of at most
        ``max_page_size``, so large segments never load in one query.
        """
        batch_size = self._check_page(1, batch_size)
        last_id = 0
        while True:
            query = (
                self._member_query(predicate)
                .where(Contact.id > last_id)
                .order_by(Contact.id)
                .limit(batch_size)
            )
            try:
                result = await self.db.execute(query)
            except SQLAlchemyError as e:
                logger.exception(f"Member iteration failed for organization {predicate.organization_id}")
                raise EvaluationError(f"Segment member iteration failed: {type(e).__name__}")

            ids = list(result.scalars().all())
            for contact_id in ids:
                yield contact_id
            if len(ids) < batch_size:
                return
            last_id = ids[-1]

    def _check_page(self, page: int, page_size: Optional[int]) -> int:
        if page_size is None:
            page_size = self.default_page_size
        if page < 1:
            raise ValidationError("page must be 1 or greater")
        if page_size < 1 or page_size > self.max_page_size:
            raise ValidationError(f"page_size must be between 1 and {self.max_page_size}")
        if (page - 1) * page_size > self.max_offset:
            raise ValidationError(
                f"page {page} is past the deepest page reachable with page_size {page_size}"
            )
        return page_size
