"""TierGate and tier upgrade requests.

An account may ask for a higher tier only after every reward network of
every completed level up to its current tier has been withdrawn.
"""

import uuid
from dataclasses import dataclass, field
from typing import Optional

from libs.common.currency import ZERO
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.ledger_service.errors import (
    ConflictError,
    LedgerValidationError,
    NotFoundError,
    TierUpgradeBlockedError,
)
from services.ledger_service.models import (
    MAX_LEVEL,
    MIN_LEVEL,
    Account,
    AccountLevel,
    Network,
    TierRequest,
    TierRequestStatus,
)
from services.ledger_service.services.accounts import (
    get_account,
    get_levels,
    get_or_create_level,
    validate_level,
)
from services.ledger_service.services.notifications import notify
from services.ledger_service.services.reward_ledger import get_effective_rewards
from services.ledger_service.services.transitions import reload, try_transition
from services.ledger_service.services.withdraw_service import withdrawn_networks
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass
class TierEligibility:
    allowed: bool
    current_tier: int
    requested_tier: int
    reason: str
    completed_levels: list[int] = field(default_factory=list)
    blocked_levels: dict[int, list[str]] = field(default_factory=dict)


def validate_tier(tier: int) -> int:
    if (
        not isinstance(tier, int)
        or isinstance(tier, bool)
        or tier < MIN_LEVEL
        or tier > MAX_LEVEL
    ):
        raise LedgerValidationError(
            f"Invalid tier. Must be between {MIN_LEVEL} and {MAX_LEVEL}."
        )
    return tier


async def can_request_tier(
    db: AsyncSession, account: Account, requested_tier: int
) -> TierEligibility:
    """Check the upgrade gate and report any levels still holding rewards."""
    validate_tier(requested_tier)
    if requested_tier <= account.tier:
        return TierEligibility(
            allowed=False,
            current_tier=account.tier,
            requested_tier=requested_tier,
            reason="Requested tier must be higher than current tier",
        )

    levels = await get_levels(db, account.id)
    completed = sorted(
        level
        for level, row in levels.items()
        if row.completed and level <= account.tier
    )

    blocked: dict[int, list[str]] = {}
    for level in completed:
        effective = await get_effective_rewards(db, account.id, level)
        covered = await withdrawn_networks(db, account.id, level)
        missing = [
            network.value
            for network in Network
            if effective[network] > ZERO and network not in covered
        ]
        if missing:
            blocked[level] = missing

    if blocked:
        reason = "Must withdraw rewards from " + "; ".join(
            f"level {level}: {', '.join(networks)}"
            for level, networks in sorted(blocked.items())
        )
    else:
        reason = "All completed levels have been withdrawn"
    return TierEligibility(
        allowed=not blocked,
        current_tier=account.tier,
        requested_tier=requested_tier,
        reason=reason,
        completed_levels=completed,
        blocked_levels=blocked,
    )


async def get_tier_request(db: AsyncSession, request_id: uuid.UUID) -> TierRequest:
    request = await reload(db, TierRequest, request_id)
    if request is None:
        raise NotFoundError("Tier request not found")
    return request


async def list_tier_requests(
    db: AsyncSession,
    *,
    account_id: Optional[uuid.UUID] = None,
    status: Optional[TierRequestStatus] = None,
    skip: int = 0,
    limit: int = 50,
) -> list[TierRequest]:
    query = select(TierRequest).order_by(TierRequest.created_at.desc())
    if account_id is not None:
        query = query.where(TierRequest.account_id == account_id)
    if status is not None:
        query = query.where(TierRequest.status == status)
    result = await db.execute(query.offset(skip).limit(limit))
    return list(result.scalars().all())


async def create_tier_request(
    db: AsyncSession, *, account: Account, requested_tier: int
) -> TierRequest:
    account = await get_account(db, account.id)
    eligibility = await can_request_tier(db, account, requested_tier)
    if eligibility.blocked_levels:
        raise TierUpgradeBlockedError(eligibility.blocked_levels)
    if not eligibility.allowed:
        raise LedgerValidationError(eligibility.reason)

    pending = await db.execute(
        select(TierRequest.id).where(
            TierRequest.account_id == account.id,
            TierRequest.status == TierRequestStatus.PENDING,
        )
    )
    if pending.first() is not None:
        raise ConflictError("You already have a pending tier request")

    request = TierRequest(
        account_id=account.id,
        requested_tier=requested_tier,
        current_tier=account.tier,
        status=TierRequestStatus.PENDING,
    )
    db.add(request)
    await db.commit()
    logger.info(
        "Tier request %s: account %s %d -> %d",
        request.id,
        account.id,
        account.tier,
        requested_tier,
    )
    await notify(
        "tier.requested",
        {
            "request_id": str(request.id),
            "account_id": str(account.id),
            "requested_tier": requested_tier,
        },
    )
    return request


async def approve_tier_request(
    db: AsyncSession,
    request_id: uuid.UUID,
    *,
    admin_id: str,
    admin_note: Optional[str] = None,
) -> TierRequest:
    """Raise the account's tier and reset completion from the new tier up."""
    request = await get_tier_request(db, request_id)
    if request.status != TierRequestStatus.PENDING:
        raise ConflictError(f"Request already {request.status.value}")

    async def promote():
        await db.execute(
            update(Account)
            .where(Account.id == request.account_id)
            .values(tier=request.requested_tier, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            update(AccountLevel)
            .where(
                AccountLevel.account_id == request.account_id,
                AccountLevel.level >= request.requested_tier,
            )
            .values(completed=False, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )

    won = await try_transition(
        db,
        TierRequest,
        request.id,
        TierRequestStatus.PENDING,
        {
            "status": TierRequestStatus.APPROVED,
            "reviewed_by": admin_id,
            "reviewed_at": utc_now(),
            "admin_note": admin_note,
        },
        side_effect=promote,
    )
    request = await reload(db, TierRequest, request.id)
    if not won:
        raise ConflictError(f"Request already {request.status.value}")

    logger.info(
        "Tier request %s approved by %s: account %s now tier %d",
        request.id,
        admin_id,
        request.account_id,
        request.requested_tier,
    )
    await notify(
        "tier.approved",
        {"request_id": str(request.id), "account_id": str(request.account_id)},
    )
    return request


async def reject_tier_request(
    db: AsyncSession,
    request_id: uuid.UUID,
    *,
    admin_id: str,
    admin_note: Optional[str] = None,
) -> TierRequest:
    request = await get_tier_request(db, request_id)
    if request.status != TierRequestStatus.PENDING:
        raise ConflictError(f"Request already {request.status.value}")

    won = await try_transition(
        db,
        TierRequest,
        request.id,
        TierRequestStatus.PENDING,
        {
            "status": TierRequestStatus.REJECTED,
            "reviewed_by": admin_id,
            "reviewed_at": utc_now(),
            "admin_note": admin_note,
        },
    )
    request = await reload(db, TierRequest, request.id)
    if not won:
        raise ConflictError(f"Request already {request.status.value}")

    logger.info("Tier request %s rejected by %s", request.id, admin_id)
    await notify(
        "tier.rejected",
        {"request_id": str(request.id), "account_id": str(request.account_id)},
    )
    return request


async def complete_level(
    db: AsyncSession, account: Account, level: int
) -> AccountLevel:
    """Mark ``level`` completed for the account. The level must be reachable."""
    validate_level(level)
    account = await get_account(db, account.id)
    if level > account.tier:
        raise LedgerValidationError(
            f"Level {level} is above current tier {account.tier}"
        )
    row = await get_or_create_level(db, account.id, level)
    row.completed = True
    await db.commit()
    logger.info("Account %s completed level %d", account.id, level)
    return row
