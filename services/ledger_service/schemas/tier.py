"""Tier gate and tier request schemas."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.ledger_service.models.enums import TierRequestStatus


class TierEligibilityResponse(BaseModel):
    allowed: bool
    current_tier: int
    requested_tier: int
    reason: str
    completed_levels: list[int]
    blocked_levels: dict[int, list[str]]


class TierRequestCreate(BaseModel):
    requested_tier: int = Field(..., ge=1, le=5)


class TierRequestResponse(BaseModel):
    id: uuid.UUID
    account_id: uuid.UUID
    requested_tier: int
    current_tier: int
    status: TierRequestStatus
    reviewed_by: Optional[str] = None
    admin_note: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TierRequestListResponse(BaseModel):
    requests: list[TierRequestResponse]
    skip: int
    limit: int


class TierReviewRequest(BaseModel):
    admin_note: Optional[str] = None
