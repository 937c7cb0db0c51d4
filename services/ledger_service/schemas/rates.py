"""Conversion rate schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.ledger_service.models.enums import Network, RateMode


class ConversionRateResponse(BaseModel):
    network: Network
    rate_to_usd: Decimal
    mode: RateMode
    updated_by: Optional[str] = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RateTableResponse(BaseModel):
    rates: list[ConversionRateResponse]
    count: int


class SingleRateUpdateRequest(BaseModel):
    rate_to_usd: Decimal = Field(..., ge=0)


class BulkRateUpdateRequest(BaseModel):
    # Keys are validated by the oracle so unknown networks get a clear message
    rates: dict[str, Decimal]


class RateModeRequest(BaseModel):
    mode: RateMode
