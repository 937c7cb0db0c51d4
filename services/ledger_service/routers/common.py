"""Response builders shared by member and admin routes."""

from decimal import Decimal
from typing import Mapping

from libs.common.currency import to_usd
from services.ledger_service.models import Account, Network
from services.ledger_service.schemas import (
    AccountLevelResponse,
    AccountResponse,
    CommissionLine,
    CommissionQuoteResponse,
    LevelRewardsResponse,
    RewardLineResponse,
    WithdrawalSummaryResponse,
)
from services.ledger_service.services.accounts import get_levels
from services.ledger_service.services.commission import CommissionQuote
from services.ledger_service.services.reward_ledger import describe_rewards
from services.ledger_service.services.withdraw_service import WithdrawalSummary
from sqlalchemy.ext.asyncio import AsyncSession


async def account_response(db: AsyncSession, account: Account) -> AccountResponse:
    levels = await get_levels(db, account.id)
    base = AccountResponse.model_validate(account)
    return base.model_copy(
        update={
            "levels": [
                AccountLevelResponse.model_validate(levels[level])
                for level in sorted(levels)
            ]
        }
    )


async def level_rewards_response(
    db: AsyncSession,
    account: Account,
    level: int,
    rates: Mapping[Network, Decimal],
) -> LevelRewardsResponse:
    lines = await describe_rewards(db, account.id, level)
    levels = await get_levels(db, account.id)
    level_row = levels.get(level)

    rewards = []
    total = Decimal("0")
    for network, line in lines.items():
        usd = line.amount * rates.get(network, Decimal("0"))
        total += usd
        rewards.append(
            RewardLineResponse(
                network=network,
                amount=line.amount,
                source=line.source,
                usd_value=to_usd(usd),
            )
        )
    return LevelRewardsResponse(
        level=level,
        rewards=rewards,
        total_usd=to_usd(total),
        cached_total_usd=level_row.reward_total_usd if level_row else None,
        completed=bool(level_row and level_row.completed),
    )


def commission_quote_response(quote: CommissionQuote) -> CommissionQuoteResponse:
    return CommissionQuoteResponse(
        tier=quote.tier,
        commission_percent=quote.commission_percent,
        usd_value=quote.usd_value,
        commission=quote.commission,
        breakdown=[
            CommissionLine(network=network, amount=value.original, usd_value=to_usd(value.usd))
            for network, value in quote.breakdown.items()
        ],
    )


def withdrawal_summary_response(summary: WithdrawalSummary) -> WithdrawalSummaryResponse:
    return WithdrawalSummaryResponse(
        level=summary.level,
        withdrawal_count=summary.withdrawal_count,
        total_available_networks=summary.total_available_networks,
        available_networks=summary.available_networks,
        withdrawn_networks=summary.withdrawn_networks,
        remaining_networks=summary.remaining_networks,
    )
