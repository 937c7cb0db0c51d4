"""Unit tests for the commission calculator and its balance boundary."""

from decimal import Decimal

import pytest
from services.ledger_service.errors import InsufficientFundsError, LedgerValidationError
from services.ledger_service.models import Account, Network, WithdrawRequest
from services.ledger_service.services.commission import (
    compute_commission,
    quote_commission,
    tier_commission_percent,
)
from services.ledger_service.services.withdraw_service import create_reward_withdraw
from sqlalchemy import func, select
from tests.factories import (
    AccountFactory,
    AccountLevelFactory,
    AccountNetworkRewardFactory,
    NetworkRewardFactory,
)

RATES = {network: Decimal("1") for network in Network}


async def _account_with_rewards(db, balance: str, percent: str = "5.00"):
    """Tier-1 account with level 1 completed and 1000 USDT of rewards."""
    account = AccountFactory.create(balance=Decimal(balance), tier=1)
    db.add(account)
    await db.flush()
    db.add_all(
        [
            AccountLevelFactory.create(
                account_id=account.id,
                level=1,
                completed=True,
                commission_percent=Decimal(percent),
            ),
            AccountNetworkRewardFactory.create(
                account_id=account.id, level=1, network=Network.USDT, amount=Decimal("1000")
            ),
        ]
    )
    await db.commit()
    return account


async def _balance(db, account_id) -> Decimal:
    result = await db.execute(select(Account.balance).where(Account.id == account_id))
    return result.scalar_one()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_quote_uses_tier_level_percent(db_session):
    account = await _account_with_rewards(db_session, "0.00", percent="5.00")

    quote = await quote_commission(
        db_session,
        account,
        ["USDT", "btc"],
        {"USDT": Decimal("1000"), "BTC": Decimal("0.01")},
        {Network.USDT: Decimal("1"), Network.BTC: Decimal("45000")},
    )

    assert quote.tier == 1
    assert quote.commission_percent == Decimal("5.00")
    assert quote.usd_value == Decimal("1450.00")
    assert quote.commission == Decimal("72.50")
    assert set(quote.breakdown) == {Network.USDT, Network.BTC}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_quote_rounds_half_up(db_session):
    account = await _account_with_rewards(db_session, "0.00", percent="2.50")

    quote = await quote_commission(
        db_session, account, ["SOL"], {"SOL": Decimal("1.1")}, RATES
    )

    # 1.1 * 2.5% = 0.0275
    assert quote.commission == Decimal("0.03")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_quote_requires_amount_for_each_network(db_session):
    account = await _account_with_rewards(db_session, "0.00")

    with pytest.raises(LedgerValidationError):
        await quote_commission(db_session, account, ["ETH"], {"BTC": "1"}, RATES)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_percent_falls_back_to_global_default(db_session):
    account = AccountFactory.create(tier=2)
    db_session.add(account)
    db_session.add(
        NetworkRewardFactory.create(level=2, network=Network.BTC, commission_percent=Decimal("8.00"))
    )
    await db_session.commit()

    assert await tier_commission_percent(db_session, account) == Decimal("8.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_commission_one_cent_short_fails(db_session):
    account = await _account_with_rewards(db_session, "49.99")

    with pytest.raises(InsufficientFundsError):
        await compute_commission(
            db_session, account, ["USDT"], {"USDT": Decimal("1000")}, RATES
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_withdraw_creation_fails_below_commission(db_session, oracle):
    account = await _account_with_rewards(db_session, "49.99")

    with pytest.raises(InsufficientFundsError):
        await create_reward_withdraw(
            db_session,
            account=account,
            level=1,
            network_rewards={"USDT": "1000"},
            oracle=oracle,
            amount="1000",
            wallet_address="TXwallet",
        )

    count = await db_session.execute(select(func.count()).select_from(WithdrawRequest))
    assert count.scalar_one() == 0
    assert await _balance(db_session, account.id) == Decimal("49.99")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_withdraw_creation_debits_exact_commission(db_session, oracle):
    account = await _account_with_rewards(db_session, "50.00")

    request = await create_reward_withdraw(
        db_session,
        account=account,
        level=1,
        network_rewards={"USDT": "1000"},
        oracle=oracle,
        amount="1000",
        wallet_address="TXwallet",
    )

    assert request.commission_paid == Decimal("50.00")
    assert request.networks == ["USDT"]
    assert request.network_rewards == {"USDT": "1000"}
    assert await _balance(db_session, account.id) == Decimal("0.00")
