"""Member-facing ledger endpoints."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.ledger_service.dependencies import (
    PaymentGatewayClient,
    RateOracle,
    get_current_account,
    get_payment_gateway,
    get_rate_oracle,
)
from services.ledger_service.models import (
    Account,
    TierRequestStatus,
    TopupStatus,
    WithdrawStatus,
)
from services.ledger_service.routers.common import (
    account_response,
    commission_quote_response,
    level_rewards_response,
    withdrawal_summary_response,
)
from services.ledger_service.schemas import (
    AccountLevelResponse,
    AccountResponse,
    BalanceEntryResponse,
    CommissionQuoteRequest,
    CommissionQuoteResponse,
    ConversionRateResponse,
    DirectWithdrawRequest,
    LevelRewardsResponse,
    RateTableResponse,
    RewardWithdrawRequest,
    TierEligibilityResponse,
    TierRequestCreate,
    TierRequestListResponse,
    TierRequestResponse,
    TopupCreateRequest,
    TopupListResponse,
    TopupResponse,
    WithdrawalSummaryResponse,
    WithdrawListResponse,
    WithdrawResponse,
)
from services.ledger_service.services import (
    balance_ops,
    tier_service,
    topup_service,
    withdraw_service,
)
from services.ledger_service.services.accounts import validate_level
from services.ledger_service.services.commission import quote_commission
from services.ledger_service.services.rate_oracle import parse_network
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/ledger", tags=["ledger"])


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------


@router.get("/me", response_model=AccountResponse)
async def get_my_account(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_async_db),
):
    """Balance, tier and per-level state of the caller."""
    return await account_response(db, account)


@router.get("/me/entries", response_model=list[BalanceEntryResponse])
async def list_my_entries(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_async_db),
):
    return await balance_ops.list_entries(db, account.id, skip=skip, limit=limit)


@router.post("/levels/{level}/complete", response_model=AccountLevelResponse)
async def complete_level(
    level: int,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_async_db),
):
    """Mark a level as completed, unlocking its rewards for withdrawal."""
    return await tier_service.complete_level(db, account, level)


# ---------------------------------------------------------------------------
# Rates and rewards
# ---------------------------------------------------------------------------


@router.get("/rates", response_model=RateTableResponse)
async def get_rates(
    _account: Account = Depends(get_current_account),
    oracle: RateOracle = Depends(get_rate_oracle),
    db: AsyncSession = Depends(get_async_db),
):
    await oracle.get_rates(db)
    rows = await oracle.list_rates(db)
    return RateTableResponse(
        rates=[ConversionRateResponse.model_validate(r) for r in rows], count=len(rows)
    )


@router.get("/rates/{network}", response_model=ConversionRateResponse)
async def get_rate(
    network: str,
    _account: Account = Depends(get_current_account),
    oracle: RateOracle = Depends(get_rate_oracle),
    db: AsyncSession = Depends(get_async_db),
):
    network = parse_network(network)
    await oracle.get_rates(db)
    rows = await oracle.list_rates(db)
    return next(r for r in rows if r.network == network)


@router.get("/rewards/{level}", response_model=LevelRewardsResponse)
async def get_level_rewards(
    level: int,
    account: Account = Depends(get_current_account),
    oracle: RateOracle = Depends(get_rate_oracle),
    db: AsyncSession = Depends(get_async_db),
):
    """Effective rewards for one level with their USD value."""
    validate_level(level)
    rates = await oracle.get_rates(db)
    return await level_rewards_response(db, account, level, rates)


@router.get("/rewards/{level}/withdrawals", response_model=WithdrawalSummaryResponse)
async def get_level_withdrawal_summary(
    level: int,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_async_db),
):
    summary = await withdraw_service.withdrawal_summary(db, account.id, level)
    return withdrawal_summary_response(summary)


@router.post("/commission/quote", response_model=CommissionQuoteResponse)
async def quote_my_commission(
    body: CommissionQuoteRequest,
    account: Account = Depends(get_current_account),
    oracle: RateOracle = Depends(get_rate_oracle),
    db: AsyncSession = Depends(get_async_db),
):
    """Commission that withdrawing these networks would cost right now."""
    rates = await oracle.get_rates(db)
    quote = await quote_commission(
        db, account, body.networks, body.network_rewards, rates
    )
    return commission_quote_response(quote)


# ---------------------------------------------------------------------------
# Topups
# ---------------------------------------------------------------------------


@router.post(
    "/topups", response_model=TopupResponse, status_code=status.HTTP_201_CREATED
)
async def create_topup(
    body: TopupCreateRequest,
    account: Account = Depends(get_current_account),
    oracle: RateOracle = Depends(get_rate_oracle),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_async_db),
):
    return await topup_service.create_topup(
        db,
        account=account,
        amount=body.amount,
        network=body.cryptocurrency,
        oracle=oracle,
        gateway=gateway,
        automated=body.automated,
        crypto_amount=body.crypto_amount,
    )


@router.get("/topups", response_model=TopupListResponse)
async def list_my_topups(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    status_filter: Optional[TopupStatus] = Query(None, alias="status"),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_async_db),
):
    topups = await topup_service.list_topups(
        db, account_id=account.id, status=status_filter, skip=skip, limit=limit
    )
    return TopupListResponse(topups=topups, skip=skip, limit=limit)


@router.get("/topups/{topup_id}", response_model=TopupResponse)
async def get_my_topup(
    topup_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_async_db),
):
    return await topup_service.get_topup(db, topup_id, account)


@router.get("/topups/{topup_id}/status", response_model=TopupResponse)
async def poll_topup_status(
    topup_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_async_db),
):
    """Client polling: pulls confirmations from the gateway and may auto-approve."""
    return await topup_service.refresh_topup_status(
        db, topup_id, gateway=gateway, owner=account
    )


@router.post("/topups/{topup_id}/cancel", response_model=TopupResponse)
async def cancel_topup(
    topup_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_async_db),
):
    return await topup_service.cancel_topup(
        db, topup_id, owner=account, gateway=gateway
    )


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------


@router.post(
    "/withdraws/direct",
    response_model=WithdrawResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_direct_withdraw(
    body: DirectWithdrawRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_async_db),
):
    return await withdraw_service.create_direct_withdraw(
        db,
        account=account,
        amount=body.amount,
        wallet_address=body.wallet,
        withdraw_all=body.withdraw_all,
    )


@router.post(
    "/withdraws/rewards",
    response_model=WithdrawResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_reward_withdraw(
    body: RewardWithdrawRequest,
    account: Account = Depends(get_current_account),
    oracle: RateOracle = Depends(get_rate_oracle),
    db: AsyncSession = Depends(get_async_db),
):
    """Cash out a completed level's network rewards (commission charged now)."""
    return await withdraw_service.create_reward_withdraw(
        db,
        account=account,
        level=body.level,
        network_rewards=body.network_rewards,
        oracle=oracle,
        amount=body.amount,
        wallet_address=body.wallet,
        add_to_balance=body.add_to_balance,
    )


@router.get("/withdraws", response_model=WithdrawListResponse)
async def list_my_withdraws(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    status_filter: Optional[WithdrawStatus] = Query(None, alias="status"),
    level: Optional[int] = Query(None, ge=1, le=5),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_async_db),
):
    requests = await withdraw_service.list_withdraws(
        db,
        account_id=account.id,
        status=status_filter,
        level=level,
        skip=skip,
        limit=limit,
    )
    return WithdrawListResponse(requests=requests, skip=skip, limit=limit)


@router.get("/withdraws/{request_id}", response_model=WithdrawResponse)
async def get_my_withdraw(
    request_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_async_db),
):
    return await withdraw_service.get_withdraw(db, request_id, account)


@router.post("/withdraws/{request_id}/complete", response_model=WithdrawResponse)
async def complete_withdraw(
    request_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_async_db),
):
    """Confirm the transfer to the admin's wallet has been sent."""
    return await withdraw_service.complete_withdraw(db, request_id, owner=account)


# ---------------------------------------------------------------------------
# Tier
# ---------------------------------------------------------------------------


@router.get("/tier/eligibility", response_model=TierEligibilityResponse)
async def check_tier_eligibility(
    target_tier: int = Query(...),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_async_db),
):
    eligibility = await tier_service.can_request_tier(db, account, target_tier)
    return TierEligibilityResponse(
        allowed=eligibility.allowed,
        current_tier=eligibility.current_tier,
        requested_tier=eligibility.requested_tier,
        reason=eligibility.reason,
        completed_levels=eligibility.completed_levels,
        blocked_levels=eligibility.blocked_levels,
    )


@router.post(
    "/tier-requests",
    response_model=TierRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_tier_request(
    body: TierRequestCreate,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_async_db),
):
    return await tier_service.create_tier_request(
        db, account=account, requested_tier=body.requested_tier
    )


@router.get("/tier-requests", response_model=TierRequestListResponse)
async def list_my_tier_requests(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    status_filter: Optional[TierRequestStatus] = Query(None, alias="status"),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_async_db),
):
    requests = await tier_service.list_tier_requests(
        db, account_id=account.id, status=status_filter, skip=skip, limit=limit
    )
    return TierRequestListResponse(requests=requests, skip=skip, limit=limit)
