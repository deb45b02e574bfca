"""
Segment API Endpoints

Includes:
- Field registry listing for the segment builder UI
- Segment CRUD (criteria replaced wholesale on update)
- Preview of unsaved criteria
- Segment count and paginated membership
- Static segment membership edits

Every endpoint is scoped to the organization resolved from the bearer token.
Errors are raised as SegmentationError subclasses and rendered as problem
details by the application's exception handlers.
"""

from fastapi import APIRouter, Query, status
from pydantic import ValidationError as SchemaError
from typing import Any, Optional
import logging

from contact_segments.api.deps import DbSession, CurrentOrganization
from contact_segments.exceptions import EvaluationError
from contact_segments.models.segment import ContactList
from contact_segments.schemas.segment import (
    ConditionIn,
    ConditionOut,
    FieldDefinitionResponse,
    SegmentCountResponse,
    SegmentCreate,
    SegmentFieldsResponse,
    SegmentListResponse,
    SegmentMembersResponse,
    SegmentMembershipRequest,
    SegmentMembershipResponse,
    SegmentPreviewRequest,
    SegmentPreviewResponse,
    SegmentResponse,
    SegmentUpdate,
)
from contact_segments.services.segments import CONTACT_FIELDS, PreviewService, SegmentStore
from contact_segments.services.segments.store import stored_conditions


logger = logging.getLogger(__name__)

router = APIRouter()


def _raw_conditions(conditions: Optional[list[ConditionIn]]) -> Optional[list[dict]]:
    if conditions is None:
        return None
    return [condition.model_dump(by_alias=True) for condition in conditions]


def _stored_condition_outs(segment: ContactList) -> list[ConditionOut]:
    """Stored conditions that still have the condition shape.

    Rows written by older versions may hold anything; malformed entries are
    left out of the response, the rest are echoed as stored.
    """
    conditions: Any = stored_conditions(segment.criteria)
    if not isinstance(conditions, list):
        return []

    outs = []
    for raw in conditions:
        try:
            outs.append(ConditionOut.model_validate(raw))
        except SchemaError:
            logger.warning(f"Segment {segment.id} has a malformed stored condition")
    return outs


def _to_response(
    segment: ContactList,
    matching_contacts: Optional[int] = None,
    criteria_error: Optional[str] = None,
) -> SegmentResponse:
    return SegmentResponse(
        id=segment.id,
        name=segment.name,
        type=segment.type,
        conditions=_stored_condition_outs(segment),
        created_at=segment.created_at,
        matching_contacts=matching_contacts,
        criteria_error=criteria_error,
    )


@router.get("/fields", response_model=SegmentFieldsResponse)
async def list_segment_fields(organization_id: CurrentOrganization):
    """List every filterable field with its type and legal operators."""
    return SegmentFieldsResponse(
        fields=[
            FieldDefinitionResponse(
                name=descriptor.name,
                label=descriptor.label or descriptor.name,
                value_type=descriptor.value_type.value,
                operators=sorted(op.value for op in descriptor.allowed_operators),
            )
            for descriptor in CONTACT_FIELDS.fields()
        ]
    )


@router.post("/preview", response_model=SegmentPreviewResponse)
async def preview_segment(
    data: SegmentPreviewRequest,
    db: DbSession,
    organization_id: CurrentOrganization,
):
    """Count contacts matching unsaved criteria. Nothing is persisted."""
    service = PreviewService(db)
    matching = await service.preview(_raw_conditions(data.conditions), organization_id)
    return SegmentPreviewResponse(matching_contacts=matching)


@router.get("/", response_model=SegmentListResponse)
async def list_segments(
    db: DbSession,
    organization_id: CurrentOrganization,
    type: Optional[str] = Query(None, pattern="^(static|dynamic)$"),
):
    """List segments with their current match counts.

    A segment whose stored criteria no longer validate is listed with
    ``matching_contacts`` null and the reason in ``criteria_error``.
    """
    store = SegmentStore(db)
    segments = await store.list(organization_id, segment_type=type)

    items = []
    for segment in segments:
        try:
            count = await store.evaluator.count(store.compile_segment(segment))
            items.append(_to_response(segment, matching_contacts=count))
        except EvaluationError as e:
            items.append(_to_response(segment, criteria_error=e.detail))

    return SegmentListResponse(items=items, total=len(items))


@router.post("/", response_model=SegmentResponse, status_code=status.HTTP_201_CREATED)
async def create_segment(
    data: SegmentCreate,
    db: DbSession,
    organization_id: CurrentOrganization,
):
    """Create a segment and report its initial match count."""
    store = SegmentStore(db)
    segment = await store.create(
        organization_id,
        data.name,
        conditions=_raw_conditions(data.conditions),
        segment_type=data.type,
    )
    count = await store.evaluator.count(store.compile_segment(segment))
    return _to_response(segment, matching_contacts=count)


@router.get("/{segment_id}", response_model=SegmentResponse)
async def get_segment(
    segment_id: int,
    db: DbSession,
    organization_id: CurrentOrganization,
):
    """Get a specific segment."""
    segment = await SegmentStore(db).get(segment_id, organization_id)
    return _to_response(segment)


@router.put("/{segment_id}", response_model=SegmentResponse)
async def update_segment(
    segment_id: int,
    data: SegmentUpdate,
    db: DbSession,
    organization_id: CurrentOrganization,
):
    """Replace a segment's name and/or its whole criteria."""
    segment = await SegmentStore(db).update(
        segment_id,
        organization_id,
        name=data.name,
        conditions=_raw_conditions(data.conditions),
    )
    return _to_response(segment)


@router.delete("/{segment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_segment(
    segment_id: int,
    db: DbSession,
    organization_id: CurrentOrganization,
):
    """Delete a segment. Contacts are not touched."""
    await SegmentStore(db).delete(segment_id, organization_id)


@router.get("/{segment_id}/count", response_model=SegmentCountResponse)
async def count_segment(
    segment_id: int,
    db: DbSession,
    organization_id: CurrentOrganization,
):
    """Evaluate a segment against the current contact set."""
    count = await SegmentStore(db).evaluate_segment(segment_id, organization_id)
    return SegmentCountResponse(segment_id=segment_id, matching_contacts=count)


@router.get("/{segment_id}/members", response_model=SegmentMembersResponse)
async def list_segment_members(
    segment_id: int,
    db: DbSession,
    organization_id: CurrentOrganization,
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
):
    """Materialize one page of segment membership, ordered by contact id."""
    members = await SegmentStore(db).segment_members(
        segment_id, organization_id, page=page, page_size=page_size
    )
    return SegmentMembersResponse(
        segment_id=segment_id,
        contact_ids=members.contact_ids,
        page=members.page,
        page_size=members.page_size,
        total=members.total,
        has_more=members.has_more,
    )


@router.post("/{segment_id}/members", response_model=SegmentMembershipResponse)
async def add_segment_members(
    segment_id: int,
    data: SegmentMembershipRequest,
    db: DbSession,
    organization_id: CurrentOrganization,
):
    """Add contacts to a static segment."""
    added = await SegmentStore(db).add_members(segment_id, organization_id, data.contact_ids)
    return SegmentMembershipResponse(segment_id=segment_id, changed=added)


@router.post("/{segment_id}/members/remove", response_model=SegmentMembershipResponse)
async def remove_segment_members(
    segment_id: int,
    data: SegmentMembershipRequest,
    db: DbSession,
    organization_id: CurrentOrganization,
):
    """Remove contacts from a static segment."""
    removed = await SegmentStore(db).remove_members(segment_id, organization_id, data.contact_ids)
    return SegmentMembershipResponse(segment_id=segment_id, changed=removed)
