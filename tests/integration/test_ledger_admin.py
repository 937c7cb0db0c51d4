"""Integration tests for ledger admin endpoints."""

from decimal import Decimal

import pytest
from services.ledger_service.models import Network, WithdrawStatus
from tests.factories import (
    AccountFactory,
    TierRequestFactory,
    TopupRequestFactory,
    WithdrawRequestFactory,
)


async def _account(db_session, balance="0.00", **overrides):
    account = AccountFactory.create(balance=Decimal(balance), **overrides)
    db_session.add(account)
    await db_session.commit()
    return account


# ---------------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_member_cannot_use_admin_routes(ledger_client, db_session):
    account = await _account(db_session)
    topup = TopupRequestFactory.create(account_id=account.id)
    db_session.add(topup)
    await db_session.commit()

    response = await ledger_client.post(f"/admin/ledger/topups/{topup.id}/approve", json={})

    assert response.status_code == 403


# ---------------------------------------------------------------------------
# Topups
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_approves_topup_once(ledger_client, db_session, auth_state):
    auth_state.as_admin()
    account = await _account(db_session)
    topup = TopupRequestFactory.create(account_id=account.id, amount=Decimal("60.00"))
    db_session.add(topup)
    await db_session.commit()

    response = await ledger_client.post(
        f"/admin/ledger/topups/{topup.id}/approve", json={"notes": "Received"}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "approved"
    assert data["processed_by"] == "admin-auth-1"

    response = await ledger_client.post(f"/admin/ledger/topups/{topup.id}/approve", json={})
    assert response.status_code == 409

    account_view = await ledger_client.get(f"/admin/ledger/accounts/{account.id}")
    assert Decimal(account_view.json()["balance"]) == Decimal("60.00")

    entries = await ledger_client.get(f"/admin/ledger/accounts/{account.id}/entries")
    assert len(entries.json()) == 1
    assert entries.json()[0]["entry_type"] == "topup"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_rejects_topup(ledger_client, db_session, auth_state):
    auth_state.as_admin()
    account = await _account(db_session)
    topup = TopupRequestFactory.create(account_id=account.id)
    db_session.add(topup)
    await db_session.commit()

    response = await ledger_client.post(
        f"/admin/ledger/topups/{topup.id}/reject", json={"notes": "No payment"}
    )

    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    listing = await ledger_client.get("/admin/ledger/topups", params={"status": "rejected"})
    assert len(listing.json()["topups"]) == 1


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_approves_withdraw(ledger_client, db_session, auth_state):
    auth_state.as_admin()
    account = await _account(db_session, "300.00")
    request = WithdrawRequestFactory.create(
        account_id=account.id, amount=Decimal("120.00"), is_direct_balance_withdraw=True
    )
    db_session.add(request)
    await db_session.commit()

    response = await ledger_client.post(
        f"/admin/ledger/withdraws/{request.id}/approve",
        json={"confirmed_wallet": "bc1admin", "confirmed_amount": "120"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == WithdrawStatus.APPROVED.value
    account_view = await ledger_client.get(f"/admin/ledger/accounts/{account.id}")
    assert Decimal(account_view.json()["balance"]) == Decimal("180.00")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_rejects_withdraw(ledger_client, db_session, auth_state):
    auth_state.as_admin()
    account = await _account(db_session, "300.00")
    request = WithdrawRequestFactory.create(account_id=account.id)
    db_session.add(request)
    await db_session.commit()

    response = await ledger_client.post(
        f"/admin/ledger/withdraws/{request.id}/reject", json={"notes": "Duplicate"}
    )

    assert response.status_code == 200
    assert response.json()["notes"] == "Duplicate"


# ---------------------------------------------------------------------------
# Tier requests
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_approves_tier_request(ledger_client, db_session, auth_state):
    auth_state.as_admin()
    account = await _account(db_session, tier=1)
    request = TierRequestFactory.create(account_id=account.id, requested_tier=3)
    db_session.add(request)
    await db_session.commit()

    response = await ledger_client.post(
        f"/admin/ledger/tier-requests/{request.id}/approve", json={"admin_note": "ok"}
    )

    assert response.status_code == 200
    assert response.json()["status"] == "approved"
    account_view = await ledger_client.get(f"/admin/ledger/accounts/{account.id}")
    assert account_view.json()["tier"] == 3


# ---------------------------------------------------------------------------
# Rates and rewards
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_sets_manual_rate(ledger_client, auth_state):
    auth_state.as_admin()

    response = await ledger_client.put(
        "/admin/ledger/rates/sol", json={"rate_to_usd": "155.5"}
    )
    assert response.status_code == 200
    assert response.json()["mode"] == "manual"
    assert response.json()["updated_by"] == "admin-auth-1"

    table = await ledger_client.get("/admin/ledger/rates")
    sol = next(r for r in table.json()["rates"] if r["network"] == "SOL")
    assert Decimal(sol["rate_to_usd"]) == Decimal("155.5")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_bulk_rates_rejects_negative(ledger_client, auth_state):
    auth_state.as_admin()

    response = await ledger_client.put(
        "/admin/ledger/rates", json={"rates": {"BTC": "50000", "ETH": "-1"}}
    )

    assert response.status_code == 400


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_refresh_rates(ledger_client, auth_state, price_source):
    auth_state.as_admin()
    price_source.prices = {Network.BTC: Decimal("61000")}

    response = await ledger_client.post("/admin/ledger/rates/refresh")

    assert response.status_code == 200
    btc = next(r for r in response.json()["rates"] if r["network"] == "BTC")
    assert Decimal(btc["rate_to_usd"]) == Decimal("61000")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_account_rewards_and_totals(ledger_client, db_session, auth_state):
    auth_state.as_admin()
    account = await _account(db_session)

    response = await ledger_client.put(
        f"/admin/ledger/accounts/{account.id}/rewards/2",
        json={"rewards": {"BTC": "0.02", "USDT": "10"}},
    )
    assert response.status_code == 200
    # 0.02 * 45000 + 10
    assert Decimal(response.json()["reward_total_usd"]) == Decimal("910.00")

    response = await ledger_client.get(f"/admin/ledger/accounts/{account.id}/level-totals")
    assert response.status_code == 200
    assert Decimal(response.json()["2"]) == Decimal("910.00")

    response = await ledger_client.put(
        f"/admin/ledger/accounts/{account.id}/commission/2",
        json={"commission_percent": "150"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_global_rewards(ledger_client, auth_state):
    auth_state.as_admin()

    response = await ledger_client.put(
        "/admin/ledger/rewards",
        json={
            "level": 1,
            "network": "ETH",
            "reward_amount": "0.05",
            "commission_percent": "6",
        },
    )
    assert response.status_code == 200

    listing = await ledger_client.get("/admin/ledger/rewards", params={"level": 1})
    assert [r["network"] for r in listing.json()] == ["ETH"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_gateway_health(ledger_client, auth_state, gateway):
    auth_state.as_admin()
    gateway.available = False

    response = await ledger_client.get("/admin/ledger/gateway/health")

    assert response.json() == {"available": False}
