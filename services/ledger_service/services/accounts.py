"""Account store: lookup, provisioning and per-level rows."""

import uuid
from decimal import Decimal
from typing import Optional

from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from services.ledger_service.errors import LedgerValidationError, NotFoundError
from services.ledger_service.models import (
    MAX_LEVEL,
    MIN_LEVEL,
    Account,
    AccountLevel,
    Network,
    NetworkReward,
)
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

NETWORK_ORDER = {network: index for index, network in enumerate(Network)}


def validate_level(level: int) -> int:
    # bool is an int subclass; True must not pass as level 1
    if (
        not isinstance(level, int)
        or isinstance(level, bool)
        or level < MIN_LEVEL
        or level > MAX_LEVEL
    ):
        raise LedgerValidationError(
            f"Invalid level. Must be between {MIN_LEVEL} and {MAX_LEVEL}."
        )
    return level


async def get_account(
    db: AsyncSession, account_id: uuid.UUID, *, for_update: bool = False
) -> Account:
    """Load an account by id, re-reading the row from the database."""
    query = (
        select(Account)
        .where(Account.id == account_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    account = result.scalar_one_or_none()
    if account is None:
        raise NotFoundError("Account not found")
    return account


async def get_account_for_update(db: AsyncSession, account_id: uuid.UUID) -> Account:
    return await get_account(db, account_id, for_update=True)


async def get_account_by_auth_id(db: AsyncSession, auth_id: str) -> Optional[Account]:
    result = await db.execute(select(Account).where(Account.auth_id == auth_id))
    return result.scalar_one_or_none()


async def get_or_create_account(db: AsyncSession, user: AuthUser) -> Account:
    """Return the caller's account, provisioning it on first use.

    Idempotent: a concurrent first request loses the insert race and reads
    the winner's row.
    """
    account = await get_account_by_auth_id(db, user.user_id)
    if account:
        return account

    account = Account(auth_id=user.user_id, email=user.email)
    db.add(account)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        account = await get_account_by_auth_id(db, user.user_id)
        if account is None:
            raise
        return account

    logger.info("Provisioned ledger account %s for %s", account.id, user.user_id)
    return account


async def list_accounts(
    db: AsyncSession, *, skip: int = 0, limit: int = 50
) -> list[Account]:
    result = await db.execute(
        select(Account).order_by(Account.created_at.desc()).offset(skip).limit(limit)
    )
    return list(result.scalars().all())


async def get_levels(db: AsyncSession, account_id: uuid.UUID) -> dict[int, AccountLevel]:
    result = await db.execute(
        select(AccountLevel).where(AccountLevel.account_id == account_id)
    )
    return {row.level: row for row in result.scalars().all()}


async def default_commission(db: AsyncSession, level: int) -> Decimal:
    """Commission of the level's first active global reward, in network order."""
    result = await db.execute(
        select(NetworkReward).where(
            NetworkReward.level == level, NetworkReward.is_active.is_(True)
        )
    )
    rewards = sorted(result.scalars().all(), key=lambda r: NETWORK_ORDER[r.network])
    return rewards[0].commission_percent if rewards else Decimal("0.00")


async def get_or_create_level(
    db: AsyncSession, account_id: uuid.UUID, level: int
) -> AccountLevel:
    """Per-level row for ``level``, created and flushed if missing.

    A new row takes its commission percentage from the global defaults.
    """
    validate_level(level)
    result = await db.execute(
        select(AccountLevel).where(
            AccountLevel.account_id == account_id, AccountLevel.level == level
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = AccountLevel(
            account_id=account_id,
            level=level,
            commission_percent=await default_commission(db, level),
        )
        db.add(row)
        await db.flush()
    return row
