"""Admin endpoints for reviewing requests and managing rates and rewards."""

import uuid
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.ledger_service.dependencies import (
    PaymentGatewayClient,
    RateOracle,
    get_payment_gateway,
    get_rate_oracle,
)
from services.ledger_service.models import (
    TierRequestStatus,
    TopupStatus,
    WithdrawStatus,
)
from services.ledger_service.routers.common import account_response
from services.ledger_service.schemas import (
    AccountLevelResponse,
    AccountListResponse,
    AccountResponse,
    AccountRewardsUpdateRequest,
    BalanceEntryResponse,
    BulkRateUpdateRequest,
    CommissionUpdateRequest,
    ConversionRateResponse,
    GlobalRewardRequest,
    GlobalRewardResponse,
    RateModeRequest,
    RateTableResponse,
    SingleRateUpdateRequest,
    TierRequestListResponse,
    TierRequestResponse,
    TierReviewRequest,
    TopupApproveRequest,
    TopupListResponse,
    TopupRejectRequest,
    TopupResponse,
    WithdrawApproveRequest,
    WithdrawListResponse,
    WithdrawRejectRequest,
    WithdrawResponse,
)
from services.ledger_service.services import (
    balance_ops,
    reward_ledger,
    tier_service,
    topup_service,
    withdraw_service,
)
from services.ledger_service.services.accounts import get_account, list_accounts
from services.ledger_service.services.rate_oracle import parse_network
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/admin/ledger", tags=["admin-ledger"])


def _rate_table(rows) -> RateTableResponse:
    return RateTableResponse(
        rates=[ConversionRateResponse.model_validate(r) for r in rows], count=len(rows)
    )


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@router.get("/accounts", response_model=AccountListResponse)
async def admin_list_accounts(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    accounts = await list_accounts(db, skip=skip, limit=limit)
    return AccountListResponse(
        accounts=[AccountResponse.model_validate(a) for a in accounts],
        skip=skip,
        limit=limit,
    )


@router.get("/accounts/{account_id}", response_model=AccountResponse)
async def admin_get_account(
    account_id: uuid.UUID,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    account = await get_account(db, account_id)
    return await account_response(db, account)


@router.get("/accounts/{account_id}/entries", response_model=list[BalanceEntryResponse])
async def admin_list_entries(
    account_id: uuid.UUID,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    await get_account(db, account_id)
    return await balance_ops.list_entries(db, account_id, skip=skip, limit=limit)


@router.get("/accounts/{account_id}/level-totals", response_model=dict[int, Decimal])
async def admin_level_totals(
    account_id: uuid.UUID,
    _admin: AuthUser = Depends(require_admin),
    oracle: RateOracle = Depends(get_rate_oracle),
    db: AsyncSession = Depends(get_async_db),
):
    """Live USD value of each level at today's rates."""
    await get_account(db, account_id)
    rates = await oracle.get_rates(db)
    return await reward_ledger.level_totals(db, account_id, rates)


@router.put("/accounts/{account_id}/rewards/{level}", response_model=AccountLevelResponse)
async def admin_set_account_rewards(
    account_id: uuid.UUID,
    level: int,
    body: AccountRewardsUpdateRequest,
    admin: AuthUser = Depends(require_admin),
    oracle: RateOracle = Depends(get_rate_oracle),
    db: AsyncSession = Depends(get_async_db),
):
    """Set per-account reward overrides for a level."""
    await get_account(db, account_id)
    row = await reward_ledger.set_account_level_rewards(
        db, account_id, level, body.rewards, oracle
    )
    logger.info("Admin %s updated level %d rewards for %s", admin.user_id, level, account_id)
    return row


@router.put(
    "/accounts/{account_id}/commission/{level}", response_model=AccountLevelResponse
)
async def admin_set_account_commission(
    account_id: uuid.UUID,
    level: int,
    body: CommissionUpdateRequest,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    await get_account(db, account_id)
    return await reward_ledger.set_account_commission(
        db, account_id, level, body.commission_percent
    )


# ---------------------------------------------------------------------------
# Topups
# ---------------------------------------------------------------------------


@router.get("/topups", response_model=TopupListResponse)
async def admin_list_topups(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    status_filter: Optional[TopupStatus] = Query(None, alias="status"),
    account_id: Optional[uuid.UUID] = Query(None),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    topups = await topup_service.list_topups(
        db, account_id=account_id, status=status_filter, skip=skip, limit=limit
    )
    return TopupListResponse(topups=topups, skip=skip, limit=limit)


@router.post("/topups/{topup_id}/approve", response_model=TopupResponse)
async def admin_approve_topup(
    topup_id: uuid.UUID,
    body: TopupApproveRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await topup_service.approve_topup(
        db, topup_id, admin_id=admin.user_id, amount=body.amount, notes=body.notes
    )


@router.post("/topups/{topup_id}/reject", response_model=TopupResponse)
async def admin_reject_topup(
    topup_id: uuid.UUID,
    body: TopupRejectRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await topup_service.reject_topup(
        db, topup_id, admin_id=admin.user_id, notes=body.notes
    )


@router.post("/topups/{topup_id}/refresh", response_model=TopupResponse)
async def admin_refresh_topup(
    topup_id: uuid.UUID,
    admin: AuthUser = Depends(require_admin),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_async_db),
):
    """Force a gateway status check for one topup."""
    return await topup_service.refresh_topup_status(
        db, topup_id, gateway=gateway, actor=admin.user_id
    )


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------


@router.get("/withdraws", response_model=WithdrawListResponse)
async def admin_list_withdraws(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    status_filter: Optional[WithdrawStatus] = Query(None, alias="status"),
    account_id: Optional[uuid.UUID] = Query(None),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    requests = await withdraw_service.list_withdraws(
        db, account_id=account_id, status=status_filter, skip=skip, limit=limit
    )
    return WithdrawListResponse(requests=requests, skip=skip, limit=limit)


@router.post("/withdraws/{request_id}/approve", response_model=WithdrawResponse)
async def admin_approve_withdraw(
    request_id: uuid.UUID,
    body: WithdrawApproveRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Approve and deduct the principal. The user then sends ``confirmed_amount``."""
    return await withdraw_service.approve_withdraw(
        db,
        request_id,
        admin_id=admin.user_id,
        confirmed_wallet=body.confirmed_wallet,
        confirmed_amount=body.confirmed_amount,
    )


@router.post("/withdraws/{request_id}/reject", response_model=WithdrawResponse)
async def admin_reject_withdraw(
    request_id: uuid.UUID,
    body: WithdrawRejectRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await withdraw_service.reject_withdraw(
        db, request_id, admin_id=admin.user_id, notes=body.notes
    )


# ---------------------------------------------------------------------------
# Tier requests
# ---------------------------------------------------------------------------


@router.get("/tier-requests", response_model=TierRequestListResponse)
async def admin_list_tier_requests(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    status_filter: Optional[TierRequestStatus] = Query(None, alias="status"),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    requests = await tier_service.list_tier_requests(
        db, status=status_filter, skip=skip, limit=limit
    )
    return TierRequestListResponse(requests=requests, skip=skip, limit=limit)


@router.post("/tier-requests/{request_id}/approve", response_model=TierRequestResponse)
async def admin_approve_tier_request(
    request_id: uuid.UUID,
    body: TierReviewRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await tier_service.approve_tier_request(
        db, request_id, admin_id=admin.user_id, admin_note=body.admin_note
    )


@router.post("/tier-requests/{request_id}/reject", response_model=TierRequestResponse)
async def admin_reject_tier_request(
    request_id: uuid.UUID,
    body: TierReviewRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await tier_service.reject_tier_request(
        db, request_id, admin_id=admin.user_id, admin_note=body.admin_note
    )


# ---------------------------------------------------------------------------
# Conversion rates
# ---------------------------------------------------------------------------


@router.get("/rates", response_model=RateTableResponse)
async def admin_get_rates(
    _admin: AuthUser = Depends(require_admin),
    oracle: RateOracle = Depends(get_rate_oracle),
    db: AsyncSession = Depends(get_async_db),
):
    return _rate_table(await oracle.list_rates(db))


@router.put("/rates", response_model=RateTableResponse)
async def admin_set_rates(
    body: BulkRateUpdateRequest,
    admin: AuthUser = Depends(require_admin),
    oracle: RateOracle = Depends(get_rate_oracle),
    db: AsyncSession = Depends(get_async_db),
):
    """Bulk manual update. Every named network switches to manual mode."""
    await oracle.set_rates(db, body.rates, updated_by=admin.user_id)
    return _rate_table(await oracle.list_rates(db))


@router.put("/rates/{network}", response_model=ConversionRateResponse)
async def admin_set_rate(
    network: str,
    body: SingleRateUpdateRequest,
    admin: AuthUser = Depends(require_admin),
    oracle: RateOracle = Depends(get_rate_oracle),
    db: AsyncSession = Depends(get_async_db),
):
    return await oracle.set_rate(
        db, parse_network(network), body.rate_to_usd, updated_by=admin.user_id
    )


@router.post("/rates/mode", response_model=RateTableResponse)
async def admin_set_rate_mode(
    body: RateModeRequest,
    admin: AuthUser = Depends(require_admin),
    oracle: RateOracle = Depends(get_rate_oracle),
    db: AsyncSession = Depends(get_async_db),
):
    await oracle.set_mode(db, body.mode, updated_by=admin.user_id)
    return _rate_table(await oracle.list_rates(db))


@router.post("/rates/refresh", response_model=RateTableResponse)
async def admin_refresh_rates(
    admin: AuthUser = Depends(require_admin),
    oracle: RateOracle = Depends(get_rate_oracle),
    db: AsyncSession = Depends(get_async_db),
):
    """Pull spot prices now for every auto-mode network."""
    await oracle.list_rates(db)
    written = await oracle.refresh_from_source(db)
    if written is None:
        logger.warning("Manual rate refresh by %s fell back to stored rates", admin.user_id)
    return _rate_table(await oracle.list_rates(db))


# ---------------------------------------------------------------------------
# Global rewards
# ---------------------------------------------------------------------------


@router.get("/rewards", response_model=list[GlobalRewardResponse])
async def admin_list_global_rewards(
    level: Optional[int] = Query(None, ge=1, le=5),
    include_inactive: bool = Query(False),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await reward_ledger.get_global_rewards(
        db, level, active_only=not include_inactive
    )


@router.put("/rewards", response_model=GlobalRewardResponse)
async def admin_set_global_reward(
    body: GlobalRewardRequest,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await reward_ledger.set_global_reward(
        db,
        level=body.level,
        network=body.network,
        reward_amount=body.reward_amount,
        commission_percent=body.commission_percent,
        is_active=body.is_active,
    )


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


@router.get("/gateway/health")
async def admin_gateway_health(
    _admin: AuthUser = Depends(require_admin),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
):
    return {"available": await gateway.is_available()}
