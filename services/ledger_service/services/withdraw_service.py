"""Withdrawal settlement.

Request shapes:
  1. direct balance withdrawal: no commission, principal deducted on approval
  2. network rewards to an external wallet: commission at creation, principal
     deducted on approval and again on completion (see
     ``WITHDRAW_DEBIT_ON_COMPLETION``)
  3. network rewards credited back to balance: commission debited and the
     rewards' USD value credited at creation; created already approved

Commission is never refunded, including on rejection.
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Optional

from libs.common.config import get_settings
from libs.common.currency import ZERO, to_decimal, to_usd
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.ledger_service.errors import (
    ConflictError,
    ForbiddenError,
    InsufficientFundsError,
    LedgerValidationError,
    NotFoundError,
)
from services.ledger_service.models import (
    Account,
    EntryType,
    Network,
    WithdrawRequest,
    WithdrawStatus,
)
from services.ledger_service.services.accounts import (
    get_account,
    get_account_for_update,
    get_levels,
    validate_level,
)
from services.ledger_service.services.balance_ops import credit_balance, debit_balance
from services.ledger_service.services.commission import CommissionQuote, compute_commission
from services.ledger_service.services.notifications import notify
from services.ledger_service.services.rate_oracle import RateOracle, parse_network
from services.ledger_service.services.reward_ledger import (
    get_effective_rewards,
    parse_amount,
    to_usd_value,
)
from services.ledger_service.services.transitions import reload, try_transition
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

# Statuses whose networks count as withdrawn for a level
SETTLED_WITHDRAW_STATUSES = (WithdrawStatus.APPROVED, WithdrawStatus.COMPLETED)


@dataclass
class WithdrawalSummary:
    """Which of a level's reward networks have already been cashed out."""

    level: int
    available_networks: list[Network] = field(default_factory=list)
    withdrawn_networks: list[Network] = field(default_factory=list)

    @property
    def remaining_networks(self) -> list[Network]:
        return [n for n in self.available_networks if n not in self.withdrawn_networks]

    @property
    def withdrawal_count(self) -> int:
        return len(self.withdrawn_networks)

    @property
    def total_available_networks(self) -> int:
        return len(self.available_networks)


def _request_networks(request: WithdrawRequest) -> set[Network]:
    """Networks named by a request, from its list and its amount map."""
    names = list(request.networks or []) + list((request.network_rewards or {}).keys())
    networks = set()
    for name in names:
        try:
            networks.add(Network(str(name).upper()))
        except ValueError:
            logger.warning("Withdraw request %s names unknown network %r", request.id, name)
    return networks


def _validate_wallet(wallet: Optional[str]) -> str:
    if not wallet or not wallet.strip():
        raise LedgerValidationError("Wallet address is required")
    return wallet.strip()


def _positive_usd(value, message: str = "Invalid amount") -> Decimal:
    try:
        amount = to_decimal(value)
    except ValueError:
        raise LedgerValidationError(message)
    if not amount.is_finite() or amount <= ZERO:
        raise LedgerValidationError(message)
    return to_usd(amount)


async def _lock_funds(db: AsyncSession, account_id: uuid.UUID, amount: Decimal) -> Account:
    """Lock the account row (SELECT ... FOR UPDATE) and check it covers ``amount``.

    The lock is held until the settling transition commits. On a shortfall
    the transaction is rolled back first so the lock is released.
    """
    account = await get_account_for_update(db, account_id)
    if account.balance < amount:
        available = account.balance
        await db.rollback()
        raise InsufficientFundsError(required=amount, available=available)
    return account


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


async def get_withdraw(
    db: AsyncSession, request_id: uuid.UUID, owner: Optional[Account] = None
) -> WithdrawRequest:
    request = await reload(db, WithdrawRequest, request_id)
    if request is None:
        raise NotFoundError("Withdraw request not found")
    if owner is not None and request.account_id != owner.id:
        raise ForbiddenError("Access denied")
    return request


async def list_withdraws(
    db: AsyncSession,
    *,
    account_id: Optional[uuid.UUID] = None,
    status: Optional[WithdrawStatus] = None,
    level: Optional[int] = None,
    skip: int = 0,
    limit: int = 50,
) -> list[WithdrawRequest]:
    query = select(WithdrawRequest).order_by(WithdrawRequest.created_at.desc())
    if account_id is not None:
        query = query.where(WithdrawRequest.account_id == account_id)
    if status is not None:
        query = query.where(WithdrawRequest.status == status)
    if level is not None:
        query = query.where(WithdrawRequest.level == level)
    result = await db.execute(query.offset(skip).limit(limit))
    return list(result.scalars().all())


async def withdrawn_networks(
    db: AsyncSession, account_id: uuid.UUID, level: int
) -> set[Network]:
    """Networks covered by approved or completed reward withdrawals of ``level``."""
    result = await db.execute(
        select(WithdrawRequest).where(
            WithdrawRequest.account_id == account_id,
            WithdrawRequest.level == level,
            WithdrawRequest.is_direct_balance_withdraw.is_(False),
            WithdrawRequest.status.in_(SETTLED_WITHDRAW_STATUSES),
        )
    )
    covered: set[Network] = set()
    for request in result.scalars().all():
        covered |= _request_networks(request)
    return covered


async def withdrawal_summary(
    db: AsyncSession, account_id: uuid.UUID, level: int
) -> WithdrawalSummary:
    validate_level(level)
    effective = await get_effective_rewards(db, account_id, level)
    covered = await withdrawn_networks(db, account_id, level)
    return WithdrawalSummary(
        level=level,
        available_networks=[n for n, amount in effective.items() if amount > ZERO],
        withdrawn_networks=[n for n in Network if n in covered],
    )


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


async def create_direct_withdraw(
    db: AsyncSession,
    *,
    account: Account,
    amount,
    wallet_address: Optional[str],
    withdraw_all: bool = False,
) -> WithdrawRequest:
    """Shape 1: cash out spendable balance. Deduction waits for approval."""
    amount = _positive_usd(amount)
    wallet = _validate_wallet(wallet_address)

    account = await get_account(db, account.id)
    if account.balance < amount:
        raise InsufficientFundsError(required=amount, available=account.balance)

    request = WithdrawRequest(
        account_id=account.id,
        amount=amount,
        wallet_address=wallet,
        networks=[],
        network_rewards={},
        is_direct_balance_withdraw=True,
        withdraw_all=withdraw_all,
        status=WithdrawStatus.PENDING,
    )
    db.add(request)
    await db.commit()
    logger.info(
        "Created direct withdraw %s: account=%s amount=%s", request.id, account.id, amount
    )
    await notify(
        "withdraw.created",
        {"request_id": str(request.id), "account_id": str(account.id), "amount": str(amount)},
    )
    return request


async def _validate_reward_request(
    db: AsyncSession, account: Account, level: int, network_rewards: Mapping
) -> dict[Network, Decimal]:
    validate_level(level)
    if not network_rewards:
        raise LedgerValidationError("Network rewards are required.")

    levels = await get_levels(db, account.id)
    level_row = levels.get(level)
    if level_row is None or not level_row.completed:
        raise LedgerValidationError(f"Level {level} is not completed yet.")

    effective = await get_effective_rewards(db, account.id, level)
    requested: dict[Network, Decimal] = {}
    for key, value in network_rewards.items():
        network = parse_network(key)
        amount = parse_amount(network, value)
        if amount > effective[network]:
            raise LedgerValidationError(
                f"Requested amount for {network.value} ({amount}) exceeds available "
                f"({effective[network]})"
            )
        if amount > ZERO:
            requested[network] = amount
    if not requested:
        raise LedgerValidationError("At least one network reward must be requested.")

    pending = await db.execute(
        select(WithdrawRequest.id).where(
            WithdrawRequest.account_id == account.id,
            WithdrawRequest.level == level,
            WithdrawRequest.is_direct_balance_withdraw.is_(False),
            WithdrawRequest.status == WithdrawStatus.PENDING,
        )
    )
    if pending.first() is not None:
        raise ConflictError(f"You already have a pending withdrawal request for Level {level}.")

    already = set(requested) & await withdrawn_networks(db, account.id, level)
    if already:
        names = ", ".join(n.value for n in Network if n in already)
        raise ConflictError(f"Level {level} rewards already withdrawn for: {names}")
    return requested


async def create_reward_withdraw(
    db: AsyncSession,
    *,
    account: Account,
    level: int,
    network_rewards: Mapping,
    oracle: RateOracle,
    amount=None,
    wallet_address: Optional[str] = None,
    add_to_balance: bool = False,
) -> WithdrawRequest:
    """Shapes 2 and 3: cash out a completed level's network rewards.

    Commission is debited in the same transaction as the request insert.
    """
    if not add_to_balance:
        wallet = _validate_wallet(wallet_address)
        principal = _positive_usd(amount)
    else:
        wallet = wallet_address.strip() if wallet_address else None

    # Rates first: a refresh may commit, and nothing is pending yet
    rates = await oracle.get_rates(db)
    account = await get_account(db, account.id)
    requested = await _validate_reward_request(db, account, level, network_rewards)
    quote: CommissionQuote = await compute_commission(
        db, account, list(requested), requested, rates
    )
    reward_usd = to_usd(to_usd_value(requested, rates).total)
    if add_to_balance:
        principal = reward_usd

    request = WithdrawRequest(
        account_id=account.id,
        amount=principal,
        wallet_address=wallet,
        networks=[n.value for n in requested],
        network_rewards={n.value: str(a) for n, a in requested.items()},
        level=level,
        commission_paid=quote.commission,
        is_direct_balance_withdraw=False,
        add_to_balance=add_to_balance,
        status=WithdrawStatus.PENDING,
    )
    if add_to_balance:
        request.status = WithdrawStatus.APPROVED
        request.rewards_added_to_balance = reward_usd
        request.processed_at = utc_now()
        request.processed_by = account.auth_id
    db.add(request)
    await db.flush()

    try:
        if quote.commission > ZERO:
            await debit_balance(
                db,
                account_id=account.id,
                amount=quote.commission,
                idempotency_key=f"withdraw-{request.id}-commission",
                entry_type=EntryType.COMMISSION,
                description=(
                    f"Commission {quote.commission_percent}% on level {level} rewards "
                    f"({quote.usd_value} USD)"
                ),
                reference_type="withdraw",
                reference_id=str(request.id),
                initiated_by=account.auth_id,
            )
        if add_to_balance and reward_usd > ZERO:
            await credit_balance(
                db,
                account_id=account.id,
                amount=reward_usd,
                idempotency_key=f"withdraw-{request.id}-reward-credit",
                entry_type=EntryType.REWARD_CREDIT,
                description=f"Level {level} network rewards added to balance",
                reference_type="withdraw",
                reference_id=str(request.id),
                initiated_by=account.auth_id,
            )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Created reward withdraw %s: account=%s level=%d networks=%s commission=%s add_to_balance=%s",
        request.id,
        account.id,
        level,
        request.networks,
        quote.commission,
        add_to_balance,
    )
    await notify(
        "withdraw.created",
        {
            "request_id": str(request.id),
            "account_id": str(account.id),
            "level": level,
            "commission": str(quote.commission),
        },
    )
    return await reload(db, WithdrawRequest, request.id)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def approve_withdraw(
    db: AsyncSession,
    request_id: uuid.UUID,
    *,
    admin_id: str,
    confirmed_wallet: Optional[str],
    confirmed_amount,
) -> WithdrawRequest:
    """pending -> approved. Deducts the principal from the balance."""
    if not confirmed_wallet or not confirmed_wallet.strip():
        raise LedgerValidationError("Admin receiving wallet address is required")
    confirmed_amount = _positive_usd(
        confirmed_amount, "Amount for user to send must be greater than 0"
    )

    request = await get_withdraw(db, request_id)
    if request.status != WithdrawStatus.PENDING:
        raise ConflictError(f"Request already {request.status.value}")

    await _lock_funds(db, request.account_id, request.amount)

    async def deduct():
        await debit_balance(
            db,
            account_id=request.account_id,
            amount=request.amount,
            idempotency_key=f"withdraw-{request.id}-approval",
            entry_type=EntryType.WITHDRAWAL,
            description=f"Withdraw {request.id} approved",
            reference_type="withdraw",
            reference_id=str(request.id),
            initiated_by=admin_id,
        )

    won = await try_transition(
        db,
        WithdrawRequest,
        request.id,
        WithdrawStatus.PENDING,
        {
            "status": WithdrawStatus.APPROVED,
            "confirmed_wallet": confirmed_wallet.strip(),
            "confirmed_amount": confirmed_amount,
            "processed_at": utc_now(),
            "processed_by": admin_id,
        },
        side_effect=deduct if request.amount > ZERO else None,
    )
    request = await reload(db, WithdrawRequest, request.id)
    if not won:
        raise ConflictError(f"Request already {request.status.value}")

    logger.info("Withdraw %s approved by %s", request.id, admin_id)
    await notify(
        "withdraw.approved",
        {
            "request_id": str(request.id),
            "account_id": str(request.account_id),
            "confirmed_wallet": request.confirmed_wallet,
            "confirmed_amount": str(request.confirmed_amount),
        },
    )
    return request


async def complete_withdraw(
    db: AsyncSession, request_id: uuid.UUID, *, owner: Account
) -> WithdrawRequest:
    """approved -> completed, confirmed by the owner after sending funds.

    Only external-wallet reward withdrawals complete. With
    ``WITHDRAW_DEBIT_ON_COMPLETION`` on, the principal is deducted again.
    """
    request = await get_withdraw(db, request_id, owner)
    if request.is_direct_balance_withdraw or request.add_to_balance:
        raise ConflictError("Only network reward withdrawals can be completed")
    if request.status != WithdrawStatus.APPROVED:
        raise ConflictError(f"Request is {request.status.value}, not approved")

    debit = get_settings().WITHDRAW_DEBIT_ON_COMPLETION and request.amount > ZERO
    if debit:
        await _lock_funds(db, request.account_id, request.amount)

    async def deduct():
        await debit_balance(
            db,
            account_id=request.account_id,
            amount=request.amount,
            idempotency_key=f"withdraw-{request.id}-completion",
            entry_type=EntryType.WITHDRAWAL_SETTLEMENT,
            description=f"Withdraw {request.id} completed",
            reference_type="withdraw",
            reference_id=str(request.id),
            initiated_by=owner.auth_id,
        )

    won = await try_transition(
        db,
        WithdrawRequest,
        request.id,
        WithdrawStatus.APPROVED,
        {"status": WithdrawStatus.COMPLETED, "completed_at": utc_now()},
        side_effect=deduct if debit else None,
    )
    request = await reload(db, WithdrawRequest, request.id)
    if not won:
        raise ConflictError(f"Request is {request.status.value}, not approved")

    logger.info("Withdraw %s completed by owner", request.id)
    await notify(
        "withdraw.completed",
        {"request_id": str(request.id), "account_id": str(request.account_id)},
    )
    return request


async def reject_withdraw(
    db: AsyncSession,
    request_id: uuid.UUID,
    *,
    admin_id: str,
    notes: Optional[str] = None,
) -> WithdrawRequest:
    """pending -> rejected. Commission already charged is kept."""
    request = await get_withdraw(db, request_id)
    if request.status != WithdrawStatus.PENDING:
        raise ConflictError(f"Request already {request.status.value}")

    values = {
        "status": WithdrawStatus.REJECTED,
        "processed_at": utc_now(),
        "processed_by": admin_id,
    }
    if notes:
        values["notes"] = notes
    won = await try_transition(
        db, WithdrawRequest, request.id, WithdrawStatus.PENDING, values
    )
    request = await reload(db, WithdrawRequest, request.id)
    if not won:
        raise ConflictError(f"Request already {request.status.value}")

    logger.info("Withdraw %s rejected by %s", request.id, admin_id)
    await notify(
        "withdraw.rejected",
        {"request_id": str(request.id), "account_id": str(request.account_id)},
    )
    return request
