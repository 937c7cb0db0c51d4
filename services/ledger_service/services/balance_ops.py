"""Atomic balance credit/debit with audit entries.

Each mutation is a single conditional UPDATE on the account row
(``balance = balance ± amount``, guarded by ``balance >= amount`` for debits),
so concurrent settlements on the same account serialize in the database
instead of overwriting each other. After writing, the balance is re-read and
re-asserted if it drifted from the expected value.

Helpers flush but never commit: the caller commits the mutation together
with the request row that caused it.
"""

import uuid
from decimal import Decimal
from typing import Optional

from libs.common.currency import ZERO, to_usd
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.ledger_service.errors import (
    InsufficientFundsError,
    LedgerValidationError,
    NotFoundError,
)
from services.ledger_service.models import (
    Account,
    BalanceEntry,
    EntryDirection,
    EntryType,
)
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

logger = get_logger(__name__)


async def find_entry(db: AsyncSession, idempotency_key: str) -> Optional[BalanceEntry]:
    result = await db.execute(
        select(BalanceEntry).where(BalanceEntry.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


async def _current_balance(db: AsyncSession, account_id: uuid.UUID) -> Optional[Decimal]:
    result = await db.execute(select(Account.balance).where(Account.id == account_id))
    return result.scalar_one_or_none()


def _sync_loaded_account(
    db: AsyncSession, account_id: uuid.UUID, balance: Decimal
) -> None:
    """Update an already-loaded Account instance without marking it dirty."""
    for obj in db.identity_map.values():
        if isinstance(obj, Account) and obj.id == account_id:
            set_committed_value(obj, "balance", balance)


async def _apply(
    db: AsyncSession,
    *,
    account_id: uuid.UUID,
    amount,
    direction: EntryDirection,
    idempotency_key: str,
    entry_type: EntryType,
    description: str,
    reference_type: Optional[str],
    reference_id: Optional[str],
    initiated_by: Optional[str],
) -> BalanceEntry:
    amount = to_usd(amount)
    if amount <= ZERO:
        raise LedgerValidationError("Amount must be greater than 0")

    # 1. Idempotency check
    existing = await find_entry(db, idempotency_key)
    if existing:
        logger.info(
            "Idempotent replay for key=%s -> entry=%s", idempotency_key, existing.id
        )
        return existing

    # 2. Atomic conditional update
    await db.flush()
    stmt = update(Account).where(Account.id == account_id)
    if direction == EntryDirection.DEBIT:
        stmt = stmt.where(Account.balance >= amount).values(
            balance=Account.balance - amount
        )
    else:
        stmt = stmt.values(balance=Account.balance + amount)
    stmt = (
        stmt.values(updated_at=utc_now())
        .returning(Account.balance)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    balance_after = result.scalar_one_or_none()

    if balance_after is None:
        available = await _current_balance(db, account_id)
        if available is None:
            raise NotFoundError("Account not found")
        raise InsufficientFundsError(required=amount, available=to_usd(available))

    balance_after = to_usd(balance_after)
    if direction == EntryDirection.DEBIT:
        balance_before = balance_after + amount
    else:
        balance_before = balance_after - amount

    # 3. Re-read and re-assert
    observed = await _current_balance(db, account_id)
    if observed is None or to_usd(observed) != balance_after:
        logger.error(
            "Balance drift on account %s: expected %s, observed %s; re-asserting",
            account_id,
            balance_after,
            observed,
        )
        await db.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(balance=balance_after)
            .execution_options(synchronize_session=False)
        )

    # 4. Audit entry
    entry = BalanceEntry(
        account_id=account_id,
        idempotency_key=idempotency_key,
        entry_type=entry_type,
        direction=direction,
        amount=amount,
        balance_before=balance_before,
        balance_after=balance_after,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        initiated_by=initiated_by,
    )
    db.add(entry)
    await db.flush()
    _sync_loaded_account(db, account_id, balance_after)

    logger.info(
        "Balance %s %s on account %s (%s -> %s) key=%s",
        direction.value,
        amount,
        account_id,
        balance_before,
        balance_after,
        idempotency_key,
    )
    return entry


async def credit_balance(
    db: AsyncSession,
    *,
    account_id: uuid.UUID,
    amount,
    idempotency_key: str,
    entry_type: EntryType,
    description: str,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    initiated_by: Optional[str] = None,
) -> BalanceEntry:
    """Add ``amount`` USD to the account balance."""
    return await _apply(
        db,
        account_id=account_id,
        amount=amount,
        direction=EntryDirection.CREDIT,
        idempotency_key=idempotency_key,
        entry_type=entry_type,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        initiated_by=initiated_by,
    )


async def debit_balance(
    db: AsyncSession,
    *,
    account_id: uuid.UUID,
    amount,
    idempotency_key: str,
    entry_type: EntryType,
    description: str,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    initiated_by: Optional[str] = None,
) -> BalanceEntry:
    """Subtract ``amount`` USD. Raises InsufficientFundsError if balance is short."""
    return await _apply(
        db,
        account_id=account_id,
        amount=amount,
        direction=EntryDirection.DEBIT,
        idempotency_key=idempotency_key,
        entry_type=entry_type,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        initiated_by=initiated_by,
    )


async def list_entries(
    db: AsyncSession, account_id: uuid.UUID, *, skip: int = 0, limit: int = 50
) -> list[BalanceEntry]:
    result = await db.execute(
        select(BalanceEntry)
        .where(BalanceEntry.account_id == account_id)
        .order_by(BalanceEntry.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all())
