"""Integration tests for the payment gateway webhook."""

from decimal import Decimal

import pytest
from tests.factories import AccountFactory, TopupRequestFactory


async def _pending_topup(db_session, session_id="sess-hook"):
    account = AccountFactory.create()
    db_session.add(account)
    await db_session.flush()
    topup = TopupRequestFactory.create(
        account_id=account.id, session_id=session_id, amount=Decimal("100.00")
    )
    db_session.add(topup)
    await db_session.commit()
    return account, topup


@pytest.mark.asyncio
@pytest.mark.integration
async def test_webhook_rejects_bad_secret(ledger_client, db_session):
    await _pending_topup(db_session)

    response = await ledger_client.post(
        "/ledger/webhooks/payment",
        json={"secret": "nope", "sessionId": "sess-hook", "network": "BTC"},
    )

    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.integration
async def test_webhook_credits_confirmed_payment_once(
    ledger_client, db_session, auth_state, webhook_secret
):
    account, topup = await _pending_topup(db_session)
    payload = {
        "sessionId": "sess-hook",
        "network": "BTC",
        "confirmations": 3,
        "paymentStatus": "confirmed",
        "txHash": "0xhook",
    }

    first = await ledger_client.post(
        "/ledger/webhooks/payment",
        json=payload,
        headers={"X-Webhook-Secret": webhook_secret},
    )
    second = await ledger_client.post(
        "/ledger/webhooks/payment", json={**payload, "secret": webhook_secret}
    )

    assert first.status_code == 200
    assert first.json()["credited"] is True
    assert first.json()["request_id"] == str(topup.id)
    assert first.json()["status"] == "approved"
    assert second.status_code == 200
    assert second.json()["credited"] is False

    auth_state.as_admin()
    account_view = await ledger_client.get(f"/admin/ledger/accounts/{account.id}")
    assert Decimal(account_view.json()["balance"]) == Decimal("100.00")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_webhook_progress_below_threshold(ledger_client, db_session, webhook_secret):
    await _pending_topup(db_session)

    response = await ledger_client.post(
        "/ledger/webhooks/payment",
        json={
            "secret": webhook_secret,
            "sessionId": "sess-hook",
            "network": "BTC",
            "confirmations": 1,
            "paymentStatus": "detected",
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["matched"] is True
    assert data["credited"] is False
    assert data["payment_status"] == "detected"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_webhook_without_identifiers(ledger_client, webhook_secret):
    response = await ledger_client.post(
        "/ledger/webhooks/payment",
        json={"secret": webhook_secret, "network": "BTC"},
    )

    assert response.status_code == 400
