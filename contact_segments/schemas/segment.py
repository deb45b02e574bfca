"""
Segment Schemas

Condition payloads keep the camelCase ``logicalOperator`` key of the stored
criteria format. Field, operator and value are accepted as plain strings and
checked by the condition validator, which can name the offending condition.
"""

from __future__ import annotations

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Literal


class ConditionIn(BaseModel):
    """Single segment condition as authored by the user."""
    id: str = Field(..., description="Caller-supplied id, echoed back in errors")
    field: str = Field(..., description="Registry field name (e.g. 'companyName')")
    operator: str = Field(..., description="Operator legal for the field's type")
    value: str
    logical_operator: Optional[str] = Field(None, alias="logicalOperator")

    class Config:
        populate_by_name = True


class ConditionOut(BaseModel):
    id: str
    field: str
    operator: str
    value: str
    logical_operator: Optional[str] = Field(None, alias="logicalOperator")

    class Config:
        populate_by_name = True


class SegmentCreate(BaseModel):
    """Schema for creating a segment."""
    name: str = Field(..., max_length=255)
    type: Literal["static", "dynamic"] = "dynamic"
    conditions: Optional[list[ConditionIn]] = None


class SegmentUpdate(BaseModel):
    """Wholesale replacement of name and/or conditions."""
    name: Optional[str] = Field(None, max_length=255)
    conditions: Optional[list[ConditionIn]] = None


class SegmentResponse(BaseModel):
    """Segment response schema."""
    id: int
    name: str
    type: str
    conditions: list[ConditionOut] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    # Present on list/create responses
    matching_contacts: Optional[int] = None
    criteria_error: Optional[str] = None


class SegmentListResponse(BaseModel):
    items: list[SegmentResponse]
    total: int


class SegmentPreviewRequest(BaseModel):
    """Request to count matches of unsaved criteria."""
    conditions: list[ConditionIn]


class SegmentPreviewResponse(BaseModel):
    matching_contacts: int


class SegmentCountResponse(BaseModel):
    segment_id: int
    matching_contacts: int


class SegmentMembersResponse(BaseModel):
    segment_id: int
    contact_ids: list[int]
    page: int
    page_size: int
    total: int
    has_more: bool


class SegmentMembershipRequest(BaseModel):
    contact_ids: list[int] = Field(..., min_length=1)


class SegmentMembershipResponse(BaseModel):
    segment_id: int
    changed: int


class FieldDefinitionResponse(BaseModel):
    name: str
    label: str
    value_type: str
    operators: list[str]


class SegmentFieldsResponse(BaseModel):
    fields: list[FieldDefinitionResponse]
