"""Inbound payment gateway webhook payload."""

import uuid
from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class PaymentWebhookPayload(BaseModel):
    """Gateway push. Field names follow the gateway's camelCase."""

    secret: Optional[str] = None
    session_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("sessionId", "session_id")
    )
    user_id: Optional[uuid.UUID] = Field(
        None, validation_alias=AliasChoices("userId", "user_id")
    )
    amount: Optional[Decimal] = None
    network: str = Field(
        ..., validation_alias=AliasChoices("network", "cryptocurrency")
    )
    confirmations: Optional[int] = Field(None, ge=0)
    payment_status: Optional[str] = Field(
        None, validation_alias=AliasChoices("paymentStatus", "payment_status", "status")
    )
    tx_hash: Optional[str] = Field(
        None, validation_alias=AliasChoices("txHash", "transactionHash", "tx_hash")
    )
    received_amount_usd: Optional[Decimal] = Field(
        None, validation_alias=AliasChoices("receivedAmountUsd", "received_amount_usd")
    )

    model_config = ConfigDict(populate_by_name=True)


class WebhookResponse(BaseModel):
    success: bool = True
    matched: bool
    credited: bool
    request_id: Optional[uuid.UUID] = None
    status: Optional[str] = None
    payment_status: Optional[str] = None
