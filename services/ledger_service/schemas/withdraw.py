"""Withdraw request/response schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.ledger_service.models.enums import WithdrawStatus


class DirectWithdrawRequest(BaseModel):
    amount: Decimal
    wallet: Optional[str] = None
    withdraw_all: bool = False


class RewardWithdrawRequest(BaseModel):
    level: int = Field(..., ge=1, le=5)
    network_rewards: dict[str, Decimal]
    amount: Optional[Decimal] = Field(
        None, description="Principal to send; ignored when adding to balance"
    )
    wallet: Optional[str] = None
    add_to_balance: bool = False


class WithdrawResponse(BaseModel):
    id: uuid.UUID
    account_id: uuid.UUID
    amount: Decimal
    wallet_address: Optional[str] = None
    networks: list[str]
    network_rewards: dict[str, str]
    level: Optional[int] = None
    commission_paid: Decimal
    is_direct_balance_withdraw: bool
    add_to_balance: bool
    rewards_added_to_balance: Optional[Decimal] = None
    withdraw_all: bool
    status: WithdrawStatus
    confirmed_wallet: Optional[str] = None
    confirmed_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WithdrawListResponse(BaseModel):
    requests: list[WithdrawResponse]
    skip: int
    limit: int


class WithdrawApproveRequest(BaseModel):
    """Admin names the wallet the user must pay and the amount expected."""

    confirmed_wallet: str
    confirmed_amount: Decimal


class WithdrawRejectRequest(BaseModel):
    notes: Optional[str] = None
