"""
Segment Store

CRUD over an organization's segments (rows of ``lists``) and the entry
point for evaluating a persisted segment.

Every lookup is keyed by both segment id and organization id; a segment of
another organization is reported exactly like a missing one.

Stored criteria are re-validated against the current field registry on
every evaluation. Criteria that no longer validate (for example a field was
withdrawn from the registry after the segment was saved) raise
EvaluationError instead of silently matching everything.
"""

import logging
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from contact_segments.exceptions import EvaluationError, NotFoundError, ValidationError
from contact_segments.models.contact import Contact
from contact_segments.models.segment import ContactList, ContactListMembership
from contact_segments.services.segments.compiler import Predicate, PredicateCompiler
from contact_segments.services.segments.conditions import ConditionGroup
from contact_segments.services.segments.evaluator import MembershipEvaluator, MembershipPage
from contact_segments.services.segments.registry import CONTACT_FIELDS, FieldRegistry
from contact_segments.services.segments.validator import ConditionValidator

logger = logging.getLogger(__name__)

SEGMENT_TYPES = ("static", "dynamic")
MAX_NAME_LENGTH = 255
DUPLICATE_NAME = "Segment with this name already exists"


def stored_conditions(criteria: Any) -> Any:
    """Conditions list out of a stored criteria document.

    Older rows hold the bare list rather than ``{"conditions": [...]}``.
    """
    if isinstance(criteria, Mapping):
        return criteria.get("conditions")
    return criteria


class SegmentStore:
    """Persistence and evaluation of named segments."""

    def __init__(self, db: AsyncSession, registry: FieldRegistry = CONTACT_FIELDS):
        self.db = db
        self.validator = ConditionValidator(registry)
        self.compiler = PredicateCompiler(registry)
        self.evaluator = MembershipEvaluator(db)

    # =========================================================================
    # CRUD
    # =========================================================================

    async def list(self, organization_id: int, segment_type: Optional[str] = None) -> List[ContactList]:
        query = select(ContactList).where(ContactList.organization_id == organization_id)
        if segment_type:
            query = query.where(ContactList.type == segment_type)
        query = query.order_by(ContactList.created_at, ContactList.id)

        result = await self._execute(query, "list segments")
        return list(result.scalars().all())

    async def get(self, segment_id: int, organization_id: int) -> ContactList:
        result = await self._execute(
            select(ContactList).where(
                ContactList.id == segment_id,
                ContactList.organization_id == organization_id,
            ),
            "load segment",
        )
        segment = result.scalar_one_or_none()
        if segment is None:
            raise NotFoundError("Segment", segment_id)
        return segment

    async def create(
        self,
        organization_id: int,
        name: str,
        conditions: Optional[Sequence[Mapping[str, Any]]] = None,
        segment_type: str = "dynamic",
    ) -> ContactList:
        if segment_type not in SEGMENT_TYPES:
            raise ValidationError(f"Segment type must be one of: {', '.join(SEGMENT_TYPES)}")
        name = self._check_name(name)
        await self._check_name_free(organization_id, name)

        criteria = None
        if segment_type == "dynamic":
            criteria = self.validator.validate(conditions).to_criteria()
        elif conditions:
            raise ValidationError("Static segments do not take conditions")

        segment = ContactList(
            organization_id=organization_id,
            name=name,
            type=segment_type,
            criteria=criteria,
        )
        self.db.add(segment)
        await self._commit("create segment", conflict_detail=DUPLICATE_NAME, refresh=segment)

        logger.info(f"Created {segment_type} segment {segment.id} for organization {organization_id}")
        return segment

    async def update(
        self,
        segment_id: int,
        organization_id: int,
        name: Optional[str] = None,
        conditions: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> ContactList:
        """Replace the name and/or the whole criteria of a segment."""
        segment = await self.get(segment_id, organization_id)

        if name is not None:
            name = self._check_name(name)
            if name != segment.name:
                await self._check_name_free(organization_id, name)

        criteria = None
        if conditions is not None:
            if segment.type != "dynamic":
                raise ValidationError("Static segments do not take conditions")
            criteria = self.validator.validate(conditions).to_criteria()

        if name is not None:
            segment.name = name
        if criteria is not None:
            segment.criteria = criteria

        await self._commit("update segment", conflict_detail=DUPLICATE_NAME, refresh=segment)

        logger.info(f"Updated segment {segment_id} for organization {organization_id}")
        return segment

    async def delete(self, segment_id: int, organization_id: int) -> None:
        """Remove the segment and its static memberships. Contacts are untouched."""
        segment = await self.get(segment_id, organization_id)

        await self._execute(
            delete(ContactListMembership).where(ContactListMembership.list_id == segment.id),
            "delete segment members",
        )
        await self.db.delete(segment)
        await self._commit("delete segment")

        logger.info(f"Deleted segment {segment_id} for organization {organization_id}")

    # =========================================================================
    # STATIC MEMBERSHIP
    # =========================================================================

    async def add_members(self, segment_id: int, organization_id: int, contact_ids: Iterable[int]) -> int:
        """Add contacts to a static segment. Returns how many were new."""
        segment = await self._get_static(segment_id, organization_id)
        wanted = set(contact_ids)
        if not wanted:
            return 0

        owned = await self._execute(
            select(Contact.id).where(
                Contact.id.in_(wanted),
                Contact.organization_id == organization_id,
            ),
            "check contacts",
        )
        missing = wanted - set(owned.scalars().all())
        if missing:
            raise ValidationError(f"Unknown contact ids: {sorted(missing)}")

        existing = await self._execute(
            select(ContactListMembership.contact_id).where(
                ContactListMembership.list_id == segment.id,
                ContactListMembership.contact_id.in_(wanted),
            ),
            "load segment members",
        )
        to_add = wanted - set(existing.scalars().all())
        for contact_id in sorted(to_add):
            self.db.add(ContactListMembership(contact_id=contact_id, list_id=segment.id))

        await self._commit("add segment members")
        return len(to_add)

    async def remove_members(self, segment_id: int, organization_id: int, contact_ids: Iterable[int]) -> int:
        segment = await self._get_static(segment_id, organization_id)
        wanted = set(contact_ids)
        if not wanted:
            return 0

        result = await self._execute(
            delete(ContactListMembership).where(
                ContactListMembership.list_id == segment.id,
                ContactListMembership.contact_id.in_(wanted),
            ),
            "remove segment members",
        )
        await self._commit("remove segment members")
        return result.rowcount or 0

    # =========================================================================
    # EVALUATION
    # =========================================================================

    def load_criteria(self, segment: ContactList) -> ConditionGroup:
        """Re-validate a dynamic segment's stored criteria against the current registry."""
        try:
            return self.validator.validate(stored_conditions(segment.criteria))
        except ValidationError as e:
            logger.error(f"Segment {segment.id} has criteria that no longer validate: {e.detail}")
            raise EvaluationError(f"Segment {segment.id} criteria can no longer be evaluated: {e.detail}")

    def compile_segment(self, segment: ContactList) -> Predicate:
        if segment.type == "static":
            return self.compiler.compile_membership(segment.id, segment.organization_id)
        return self.compiler.compile(self.load_criteria(segment), segment.organization_id)

    async def evaluate_segment(self, segment_id: int, organization_id: int) -> int:
        """Number of contacts currently in the segment."""
        segment = await self.get(segment_id, organization_id)
        count = await self.evaluator.count(self.compile_segment(segment))
        logger.info(f"Segment {segment_id} for organization {organization_id} matches {count} contacts")
        return count

    async def segment_members(
        self,
        segment_id: int,
        organization_id: int,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> MembershipPage:
        segment = await self.get(segment_id, organization_id)
        return await self.evaluator.materialize(self.compile_segment(segment), page=page, page_size=page_size)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _get_static(self, segment_id: int, organization_id: int) -> ContactList:
        segment = await self.get(segment_id, organization_id)
        if segment.type != "static":
            raise ValidationError("Members can only be edited on static segments")
        return segment

    @staticmethod
    def _check_name(name: Any) -> str:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Segment name is required")
        name = name.strip()
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(f"Segment name must be at most {MAX_NAME_LENGTH} characters")
        return name

    async def _check_name_free(self, organization_id: int, name: str) -> None:
        existing = await self._execute(
            select(ContactList.id).where(
                ContactList.organization_id == organization_id,
                ContactList.name == name,
            ),
            "check segment name",
        )
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(DUPLICATE_NAME)

    async def _execute(self, statement, action: str):
        try:
            return await self.db.execute(statement)
        except SQLAlchemyError as e:
            logger.exception(f"Failed to {action}")
            raise EvaluationError(f"Failed to {action}: {type(e).__name__}")

    async def _commit(
        self,
        action: str,
        conflict_detail: Optional[str] = None,
        refresh: Optional[ContactList] = None,
    ) -> None:
        """Commit, then optionally reload ``refresh``.

        When ``conflict_detail`` is given, an IntegrityError (a concurrent
        create with the same name) is a ValidationError carrying it.
        """
        try:
            await self.db.commit()
            if refresh is not None:
                await self.db.refresh(refresh)
        except IntegrityError as e:
            await self.db.rollback()
            if conflict_detail is None:
                logger.exception(f"Failed to {action}")
                raise EvaluationError(f"Failed to {action}: {type(e).__name__}")
            logger.warning(f"Failed to {action}: {conflict_detail}")
            raise ValidationError(conflict_detail)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Failed to {action}")
            raise EvaluationError(f"Failed to {action}: {type(e).__name__}")
