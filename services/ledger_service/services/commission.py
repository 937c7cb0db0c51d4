"""CommissionCalculator: USD fee for cashing out network rewards.

commission = Σ(amount × rate) over the selected networks
             × the account's commission percent for the level matching its tier,
rounded half-up to cents.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping

from libs.common.currency import ZERO, to_usd
from services.ledger_service.errors import InsufficientFundsError, LedgerValidationError
from services.ledger_service.models import Account, Network
from services.ledger_service.services.accounts import default_commission, get_levels
from services.ledger_service.services.rate_oracle import parse_network
from services.ledger_service.services.reward_ledger import NetworkValue, to_usd_value
from sqlalchemy.ext.asyncio import AsyncSession


@dataclass
class CommissionQuote:
    tier: int
    commission_percent: Decimal
    usd_value: Decimal
    commission: Decimal
    breakdown: dict[Network, NetworkValue] = field(default_factory=dict)


async def tier_commission_percent(db: AsyncSession, account: Account) -> Decimal:
    levels = await get_levels(db, account.id)
    row = levels.get(account.tier)
    if row is not None:
        return row.commission_percent
    return await default_commission(db, account.tier)


async def quote_commission(
    db: AsyncSession,
    account: Account,
    networks: Iterable,
    amounts: Mapping,
    rates: Mapping[Network, Decimal],
) -> CommissionQuote:
    """Compute the commission without checking the balance."""
    selected = {}
    for key in networks:
        network = parse_network(key)
        amount = amounts.get(network, amounts.get(network.value))
        if amount is None:
            raise LedgerValidationError(f"No reward amount given for {network.value}")
        selected[network] = amount

    valuation = to_usd_value(selected, rates)
    percent = await tier_commission_percent(db, account)
    return CommissionQuote(
        tier=account.tier,
        commission_percent=percent,
        usd_value=to_usd(valuation.total),
        commission=to_usd(valuation.total * percent / Decimal("100")),
        breakdown=valuation.breakdown,
    )


async def compute_commission(
    db: AsyncSession,
    account: Account,
    networks: Iterable,
    amounts: Mapping,
    rates: Mapping[Network, Decimal],
) -> CommissionQuote:
    """Quote the commission and fail if the balance cannot cover it."""
    quote = await quote_commission(db, account, networks, amounts, rates)
    if quote.commission > ZERO and quote.commission > account.balance:
        raise InsufficientFundsError(required=quote.commission, available=account.balance)
    return quote
