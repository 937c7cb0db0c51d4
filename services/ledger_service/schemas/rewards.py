"""Network reward schemas."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.ledger_service.models.enums import Network


class RewardLineResponse(BaseModel):
    network: Network
    amount: Decimal
    source: str  # user, global, none
    usd_value: Decimal


class LevelRewardsResponse(BaseModel):
    level: int
    rewards: list[RewardLineResponse]
    total_usd: Decimal
    cached_total_usd: Optional[Decimal] = None
    completed: bool = False


class AccountRewardsUpdateRequest(BaseModel):
    rewards: dict[str, Decimal]


class GlobalRewardRequest(BaseModel):
    level: int = Field(..., ge=1, le=5)
    network: Network
    reward_amount: Decimal = Field(..., ge=0)
    commission_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    is_active: bool = True


class GlobalRewardResponse(BaseModel):
    level: int
    network: Network
    reward_amount: Decimal
    commission_percent: Decimal
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class CommissionQuoteRequest(BaseModel):
    networks: list[str] = Field(..., min_length=1)
    network_rewards: dict[str, Decimal]


class CommissionLine(BaseModel):
    network: Network
    amount: Decimal
    usd_value: Decimal


class CommissionQuoteResponse(BaseModel):
    tier: int
    commission_percent: Decimal
    usd_value: Decimal
    commission: Decimal
    breakdown: list[CommissionLine]


class WithdrawalSummaryResponse(BaseModel):
    level: int
    withdrawal_count: int
    total_available_networks: int
    available_networks: list[Network]
    withdrawn_networks: list[Network]
    remaining_networks: list[Network]
