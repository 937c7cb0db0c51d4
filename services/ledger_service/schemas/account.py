"""Account request/response schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.ledger_service.models.enums import EntryDirection, EntryType


class AccountLevelResponse(BaseModel):
    level: int
    completed: bool
    commission_percent: Decimal
    reward_total_usd: Decimal

    model_config = ConfigDict(from_attributes=True)


class AccountResponse(BaseModel):
    id: uuid.UUID
    auth_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    balance: Decimal
    tier: int
    created_at: datetime
    levels: list[AccountLevelResponse] = []

    model_config = ConfigDict(from_attributes=True)


class AccountListResponse(BaseModel):
    accounts: list[AccountResponse]
    skip: int
    limit: int


class CommissionUpdateRequest(BaseModel):
    commission_percent: Decimal = Field(..., ge=0, le=100)


class LevelCompleteRequest(BaseModel):
    level: int = Field(..., ge=1, le=5)


class BalanceEntryResponse(BaseModel):
    id: uuid.UUID
    entry_type: EntryType
    direction: EntryDirection
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    description: str
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    initiated_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
