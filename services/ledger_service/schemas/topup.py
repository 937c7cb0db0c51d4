"""Topup request/response schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.ledger_service.models.enums import Network, PaymentStatus, TopupStatus


class TopupCreateRequest(BaseModel):
    amount: Decimal = Field(..., description="USD amount to deposit")
    cryptocurrency: Network = Network.BTC
    automated: bool = Field(
        True, description="Open a payment session with the gateway"
    )
    crypto_amount: Optional[Decimal] = None


class TopupResponse(BaseModel):
    id: uuid.UUID
    account_id: uuid.UUID
    amount: Decimal
    crypto_amount: Optional[Decimal] = None
    cryptocurrency: Network
    status: TopupStatus
    payment_status: PaymentStatus
    confirmations: int
    required_confirmations: int
    session_id: Optional[str] = None
    payment_address: Optional[str] = None
    expires_at: Optional[datetime] = None
    tx_hash: Optional[str] = None
    approved_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TopupListResponse(BaseModel):
    topups: list[TopupResponse]
    skip: int
    limit: int


class TopupApproveRequest(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0)
    notes: Optional[str] = None


class TopupRejectRequest(BaseModel):
    notes: Optional[str] = None
