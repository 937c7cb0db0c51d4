"""RewardLedger: per-account, per-level, per-network reward amounts.

The effective reward for (account, level, network) is the account's override
when present and positive, else the active global default, else zero.
``AccountLevel.reward_total_usd`` is a cache of the effective map's USD value
and is recomputed on every write to the map.
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Optional

from libs.common.currency import ZERO, to_decimal, to_usd
from libs.common.logging import get_logger
from services.ledger_service.errors import LedgerValidationError
from services.ledger_service.models import (
    LEVELS,
    AccountLevel,
    AccountNetworkReward,
    Network,
    NetworkReward,
)
from services.ledger_service.services.accounts import get_or_create_level, validate_level
from services.ledger_service.services.rate_oracle import RateOracle, parse_network
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

SOURCE_USER = "user"
SOURCE_GLOBAL = "global"
SOURCE_NONE = "none"


@dataclass
class NetworkValue:
    original: Decimal
    usd: Decimal


@dataclass
class UsdValuation:
    """Result of converting a reward set to USD."""

    total: Decimal = ZERO
    breakdown: dict[Network, NetworkValue] = field(default_factory=dict)


@dataclass
class RewardLine:
    amount: Decimal
    source: str


def parse_amount(network: Network, value) -> Decimal:
    try:
        amount = to_decimal(value)
    except ValueError:
        amount = None
    if amount is None or not amount.is_finite() or amount < 0:
        raise LedgerValidationError(f"Invalid amount for {network.value}: {value}")
    return amount


def to_usd_value(
    reward_set: Mapping[Network, Decimal], rates: Mapping[Network, Decimal]
) -> UsdValuation:
    """Multiply each amount by its network's rate and sum.

    A network without a rate contributes zero.
    """
    valuation = UsdValuation()
    for network, amount in reward_set.items():
        network = parse_network(network)
        original = to_decimal(amount)
        usd = original * to_decimal(rates.get(network, ZERO))
        valuation.breakdown[network] = NetworkValue(original=original, usd=usd)
        valuation.total += usd
    return valuation


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_global_rewards(
    db: AsyncSession, level: Optional[int] = None, *, active_only: bool = True
) -> list[NetworkReward]:
    query = select(NetworkReward).order_by(NetworkReward.level, NetworkReward.network)
    if level is not None:
        query = query.where(NetworkReward.level == validate_level(level))
    if active_only:
        query = query.where(NetworkReward.is_active.is_(True))
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_account_overrides(
    db: AsyncSession, account_id: uuid.UUID, level: int
) -> dict[Network, Decimal]:
    result = await db.execute(
        select(AccountNetworkReward).where(
            AccountNetworkReward.account_id == account_id,
            AccountNetworkReward.level == level,
        )
    )
    return {row.network: row.amount for row in result.scalars().all()}


async def describe_rewards(
    db: AsyncSession, account_id: uuid.UUID, level: int
) -> dict[Network, RewardLine]:
    """Effective reward per network plus where it came from."""
    validate_level(level)
    overrides = await get_account_overrides(db, account_id, level)
    defaults = {r.network: r.reward_amount for r in await get_global_rewards(db, level)}

    lines = {}
    for network in Network:
        override = overrides.get(network)
        if override is not None and override > ZERO:
            lines[network] = RewardLine(amount=override, source=SOURCE_USER)
        elif network in defaults:
            lines[network] = RewardLine(amount=defaults[network], source=SOURCE_GLOBAL)
        else:
            lines[network] = RewardLine(amount=ZERO, source=SOURCE_NONE)
    return lines


async def get_effective_rewards(
    db: AsyncSession, account_id: uuid.UUID, level: int
) -> dict[Network, Decimal]:
    lines = await describe_rewards(db, account_id, level)
    return {network: line.amount for network, line in lines.items()}


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def recompute_level_total(
    db: AsyncSession,
    account_id: uuid.UUID,
    level: int,
    rates: Mapping[Network, Decimal],
) -> AccountLevel:
    """Rewrite the cached USD total for one level. Flushes, does not commit."""
    effective = await get_effective_rewards(db, account_id, level)
    row = await get_or_create_level(db, account_id, level)
    row.reward_total_usd = to_usd(to_usd_value(effective, rates).total)
    await db.flush()
    return row


async def set_account_level_rewards(
    db: AsyncSession,
    account_id: uuid.UUID,
    level: int,
    rewards: Mapping,
    oracle: RateOracle,
) -> AccountLevel:
    """Upsert per-network overrides for one level and refresh its USD total."""
    validate_level(level)
    if not rewards:
        raise LedgerValidationError("Network rewards are required.")
    parsed = {}
    for key, value in rewards.items():
        network = parse_network(key)
        parsed[network] = parse_amount(network, value)

    rates = await oracle.get_rates(db)

    existing = {
        row.network: row
        for row in (
            await db.execute(
                select(AccountNetworkReward).where(
                    AccountNetworkReward.account_id == account_id,
                    AccountNetworkReward.level == level,
                )
            )
        ).scalars()
    }
    for network, amount in parsed.items():
        row = existing.get(network)
        if row is None:
            db.add(
                AccountNetworkReward(
                    account_id=account_id, level=level, network=network, amount=amount
                )
            )
        else:
            row.amount = amount
    await db.flush()

    level_row = await recompute_level_total(db, account_id, level, rates)
    await db.commit()
    logger.info(
        "Set level %d rewards for account %s: %s (total %s USD)",
        level,
        account_id,
        {n.value: str(a) for n, a in parsed.items()},
        level_row.reward_total_usd,
    )
    return level_row


async def set_account_commission(
    db: AsyncSession, account_id: uuid.UUID, level: int, percent
) -> AccountLevel:
    percent = to_decimal(percent)
    if percent < 0 or percent > 100:
        raise LedgerValidationError("Commission percent must be between 0 and 100")
    row = await get_or_create_level(db, account_id, level)
    row.commission_percent = percent
    await db.commit()
    logger.info(
        "Set level %d commission for account %s to %s%%", level, account_id, percent
    )
    return row


async def set_global_reward(
    db: AsyncSession,
    *,
    level: int,
    network,
    reward_amount,
    commission_percent=None,
    is_active: bool = True,
) -> NetworkReward:
    """Create or update the global default for (level, network)."""
    validate_level(level)
    network = parse_network(network)
    amount = parse_amount(network, reward_amount)
    if commission_percent is not None:
        commission_percent = to_decimal(commission_percent)
        if commission_percent < 0 or commission_percent > 100:
            raise LedgerValidationError("Commission percent must be between 0 and 100")

    result = await db.execute(
        select(NetworkReward).where(
            NetworkReward.level == level, NetworkReward.network == network
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = NetworkReward(level=level, network=network)
        db.add(row)
    row.reward_amount = amount
    row.is_active = is_active
    if commission_percent is not None:
        row.commission_percent = commission_percent
    await db.commit()
    logger.info(
        "Global reward L%d %s set to %s (active=%s)", level, network.value, amount, is_active
    )
    return row


async def level_totals(
    db: AsyncSession, account_id: uuid.UUID, rates: Mapping[Network, Decimal]
) -> dict[int, Decimal]:
    """Live USD total of every level's effective rewards."""
    totals = {}
    for level in LEVELS:
        effective = await get_effective_rewards(db, account_id, level)
        totals[level] = to_usd(to_usd_value(effective, rates).total)
    return totals
