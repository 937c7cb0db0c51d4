"""Unit tests for topup settlement.

The webhook, status polling and admin approval all race to settle the same
request; these tests check the balance is credited exactly once.
"""

import asyncio
import uuid
from decimal import Decimal

import pytest
from services.ledger_service.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    UpstreamUnavailableError,
)
from services.ledger_service.models import (
    Account,
    BalanceEntry,
    Network,
    PaymentStatus,
    TopupRequest,
    TopupStatus,
    payment_status_predecessors,
)
from services.ledger_service.services.topup_service import (
    approve_topup,
    cancel_topup,
    create_topup,
    expire_stale_topups,
    handle_payment_webhook,
    reconcile_pending_topups,
    refresh_topup_status,
    reject_topup,
)
from sqlalchemy import func, select
from tests.factories import AccountFactory, TopupRequestFactory, minutes_ago

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _make_account(db, balance="0.00"):
    account = AccountFactory.create(balance=Decimal(balance))
    db.add(account)
    await db.commit()
    return account


async def _make_topup(db, account, **overrides):
    topup = TopupRequestFactory.create(account_id=account.id, **overrides)
    db.add(topup)
    await db.commit()
    return topup


async def _balance(db, account_id) -> Decimal:
    result = await db.execute(select(Account.balance).where(Account.id == account_id))
    return result.scalar_one()


async def _entry_count(db, topup_id) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(BalanceEntry)
        .where(BalanceEntry.reference_id == str(topup_id))
    )
    return result.scalar_one()


# ---------------------------------------------------------------------------
# create_topup
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_automated_topup_opens_session(db_session, oracle, gateway):
    account = await _make_account(db_session)

    topup = await create_topup(
        db_session,
        account=account,
        amount="90",
        network="BTC",
        oracle=oracle,
        gateway=gateway,
    )

    assert topup.status == TopupStatus.PENDING
    assert topup.payment_status == PaymentStatus.PENDING
    assert topup.session_id == gateway.created[0]["session_id"]
    assert topup.payment_address == f"addr-{topup.session_id}"
    assert topup.required_confirmations == 3
    # 90 USD at the default 45000 BTC rate
    assert topup.crypto_amount == Decimal("0.002")
    assert topup.expires_at is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_gateway_failure_persists_nothing(db_session, oracle, gateway):
    account = await _make_account(db_session)
    gateway.fail_create = True

    with pytest.raises(UpstreamUnavailableError):
        await create_topup(
            db_session,
            account=account,
            amount="50",
            network="ETH",
            oracle=oracle,
            gateway=gateway,
        )

    count = await db_session.execute(select(func.count()).select_from(TopupRequest))
    assert count.scalar_one() == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_manual_topup_needs_no_gateway(db_session, oracle):
    account = await _make_account(db_session)

    topup = await create_topup(
        db_session,
        account=account,
        amount="25",
        network="usdt",
        oracle=oracle,
        gateway=None,
        automated=False,
        crypto_amount="25",
    )

    assert topup.session_id is None
    assert topup.is_automated is False
    assert topup.crypto_amount == Decimal("25")


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unpaid_topup_expires_after_timeout(db_session):
    account = await _make_account(db_session)
    topup = await _make_topup(db_session, account, created_at=minutes_ago(61))

    topup = await refresh_topup_status(db_session, topup.id, gateway=None)

    assert topup.payment_status == PaymentStatus.EXPIRED
    assert topup.status == TopupStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_recent_topup_does_not_expire(db_session):
    account = await _make_account(db_session)
    topup = await _make_topup(db_session, account, created_at=minutes_ago(59))

    topup = await refresh_topup_status(db_session, topup.id, gateway=None)

    assert topup.payment_status == PaymentStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_topup_with_confirmations_never_expires(db_session):
    account = await _make_account(db_session)
    topup = await _make_topup(
        db_session,
        account,
        created_at=minutes_ago(120),
        confirmations=1,
        payment_status=PaymentStatus.CONFIRMING,
    )

    topup = await refresh_topup_status(db_session, topup.id, gateway=None)

    assert topup.payment_status == PaymentStatus.CONFIRMING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_expire_stale_topups_sweep(db_session):
    account = await _make_account(db_session)
    await _make_topup(db_session, account, created_at=minutes_ago(90))
    await _make_topup(db_session, account, created_at=minutes_ago(5))

    assert await expire_stale_topups(db_session) == 1


# ---------------------------------------------------------------------------
# Auto-approval
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_poll_approves_once_confirmed(db_session, gateway):
    account = await _make_account(db_session, "10.00")
    topup = await _make_topup(db_session, account, session_id="sess-poll")
    gateway.set_status("sess-poll", "confirming", confirmations=3, tx_hash="0xabc")

    topup = await refresh_topup_status(db_session, topup.id, gateway=gateway)

    assert topup.status == TopupStatus.APPROVED
    assert topup.payment_status == PaymentStatus.CONFIRMED
    assert topup.approved_amount == Decimal("100.00")
    assert topup.tx_hash == "0xabc"
    assert await _balance(db_session, account.id) == Decimal("110.00")

    # Polling again is a no-op
    await refresh_topup_status(db_session, topup.id, gateway=gateway)
    assert await _entry_count(db_session, topup.id) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_poll_below_threshold_only_records_progress(db_session, gateway):
    account = await _make_account(db_session)
    topup = await _make_topup(db_session, account, session_id="sess-slow")
    gateway.set_status("sess-slow", "detected", confirmations=1)

    topup = await refresh_topup_status(db_session, topup.id, gateway=gateway)

    assert topup.status == TopupStatus.PENDING
    assert topup.payment_status == PaymentStatus.DETECTED
    assert topup.confirmations == 1
    assert await _balance(db_session, account.id) == Decimal("0.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_received_usd_is_credited_when_reported(db_session, gateway):
    account = await _make_account(db_session)
    topup = await _make_topup(db_session, account, session_id="sess-over")
    gateway.set_status(
        "sess-over", "completed", confirmations=6, received_amount_usd=Decimal("104.20")
    )

    topup = await refresh_topup_status(db_session, topup.id, gateway=gateway)

    assert topup.approved_amount == Decimal("104.20")
    assert await _balance(db_session, account.id) == Decimal("104.20")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_webhook_and_poll_credit_once(
    session_factory, gateway, webhook_secret
):
    async with session_factory() as db:
        account = await _make_account(db, "0.00")
        topup = await _make_topup(db, account, session_id="sess-race")
    gateway.set_status("sess-race", "confirming", confirmations=3, tx_hash="0xrace")

    async def via_webhook():
        async with session_factory() as db:
            return await handle_payment_webhook(
                db,
                secret=webhook_secret,
                session_id="sess-race",
                account_id=None,
                amount=None,
                network="BTC",
                confirmations=3,
                payment_status="confirming",
                tx_hash="0xrace",
            )

    async def via_poll():
        async with session_factory() as db:
            return await refresh_topup_status(db, topup.id, gateway=gateway)

    await asyncio.gather(via_webhook(), via_poll())

    async with session_factory() as db:
        stored = await db.get(TopupRequest, topup.id)
        assert stored.status == TopupStatus.APPROVED
        assert await _entry_count(db, topup.id) == 1
        assert await _balance(db, account.id) == Decimal("100.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_webhook_redelivery_is_noop(db_session, webhook_secret):
    account = await _make_account(db_session)
    topup = await _make_topup(db_session, account, session_id="sess-again")

    kwargs = dict(
        secret=webhook_secret,
        session_id="sess-again",
        account_id=account.id,
        amount=Decimal("100"),
        network="BTC",
        confirmations=3,
        payment_status="confirmed",
        tx_hash="0xagain",
    )
    first = await handle_payment_webhook(db_session, **kwargs)
    second = await handle_payment_webhook(db_session, **kwargs)

    assert first.matched and first.credited
    assert second.matched and not second.credited
    assert await _entry_count(db_session, topup.id) == 1
    assert await _balance(db_session, account.id) == Decimal("100.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_webhook_rejects_bad_secret(db_session):
    with pytest.raises(UnauthorizedError):
        await handle_payment_webhook(
            db_session,
            secret="wrong",
            session_id="sess-x",
            account_id=None,
            amount=None,
            network="BTC",
            confirmations=3,
            payment_status="confirmed",
            tx_hash=None,
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_webhook_matches_by_account_and_amount(db_session, webhook_secret):
    account = await _make_account(db_session)
    topup = await _make_topup(db_session, account, amount=Decimal("75.00"))

    outcome = await handle_payment_webhook(
        db_session,
        secret=webhook_secret,
        session_id=None,
        account_id=account.id,
        amount="75",
        network="btc",
        confirmations=3,
        payment_status="confirmed",
        tx_hash="0xmatch",
    )

    assert outcome.matched
    assert outcome.topup.id == topup.id
    assert await _balance(db_session, account.id) == Decimal("75.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_session_webhook_credits_requested_usd_not_crypto_amount(
    db_session, webhook_secret
):
    account = await _make_account(db_session)
    topup = await _make_topup(
        db_session,
        account,
        session_id="sess-eth",
        cryptocurrency=Network.ETH,
        required_confirmations=12,
        amount=Decimal("100.00"),
    )

    outcome = await handle_payment_webhook(
        db_session,
        secret=webhook_secret,
        session_id="sess-eth",
        account_id=None,
        amount="0.0333333333",
        network="ETH",
        confirmations=12,
        payment_status="confirmed",
        tx_hash="0xeth",
    )

    assert outcome.credited
    assert outcome.topup.approved_amount == Decimal("100.00")
    assert await _balance(db_session, account.id) == Decimal("100.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_lagging_poll_cannot_rewind_detected_payment(
    db_session, gateway, webhook_secret
):
    account = await _make_account(db_session)
    topup = await _make_topup(db_session, account, session_id="sess-lag")

    await handle_payment_webhook(
        db_session,
        secret=webhook_secret,
        session_id="sess-lag",
        account_id=None,
        amount=None,
        network="BTC",
        confirmations=1,
        payment_status="detected",
        tx_hash="0xlag",
    )
    gateway.set_status("sess-lag", "pending", confirmations=0)

    topup = await refresh_topup_status(db_session, topup.id, gateway=gateway)
    assert topup.payment_status == PaymentStatus.DETECTED
    assert topup.confirmations == 1

    with pytest.raises(ConflictError):
        await cancel_topup(db_session, topup.id, owner=account, gateway=gateway)
    stored = await db_session.get(TopupRequest, topup.id)
    assert stored.status == TopupStatus.PENDING
    assert gateway.cancelled == []


@pytest.mark.unit
def test_payment_status_only_moves_forward():
    assert PaymentStatus.DETECTED in payment_status_predecessors(PaymentStatus.CONFIRMED)
    assert PaymentStatus.DETECTED not in payment_status_predecessors(PaymentStatus.PENDING)
    assert payment_status_predecessors(PaymentStatus.EXPIRED) == {PaymentStatus.PENDING}
    assert PaymentStatus.COMPLETED not in payment_status_predecessors(PaymentStatus.FAILED)
    # funds that arrive after expiry are still tracked
    assert PaymentStatus.EXPIRED in payment_status_predecessors(PaymentStatus.DETECTED)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unmatched_settled_payment_credits_once_per_tx(
    db_session, webhook_secret
):
    account = await _make_account(db_session)
    kwargs = dict(
        secret=webhook_secret,
        session_id=None,
        account_id=account.id,
        amount="42.10",
        network="ETH",
        confirmations=12,
        payment_status="completed",
        tx_hash="0xorphan",
    )

    first = await handle_payment_webhook(db_session, **kwargs)
    second = await handle_payment_webhook(db_session, **kwargs)

    assert not first.matched and first.credited
    assert first.topup.status == TopupStatus.APPROVED
    assert not second.credited
    assert await _balance(db_session, account.id) == Decimal("42.10")


# ---------------------------------------------------------------------------
# Cancel / admin
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancel_pending_topup(db_session, gateway):
    account = await _make_account(db_session)
    topup = await _make_topup(db_session, account, session_id="sess-cancel")

    topup = await cancel_topup(db_session, topup.id, owner=account, gateway=gateway)

    assert topup.status == TopupStatus.REJECTED
    assert gateway.cancelled == ["sess-cancel"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancel_after_detection_conflicts(db_session, gateway):
    account = await _make_account(db_session)
    topup = await _make_topup(
        db_session, account, payment_status=PaymentStatus.DETECTED, confirmations=1
    )

    with pytest.raises(ConflictError):
        await cancel_topup(db_session, topup.id, owner=account, gateway=gateway)

    stored = await db_session.get(TopupRequest, topup.id)
    assert stored.status == TopupStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancel_someone_elses_topup_forbidden(db_session, gateway):
    owner = await _make_account(db_session)
    other = await _make_account(db_session)
    topup = await _make_topup(db_session, owner)

    with pytest.raises(ForbiddenError):
        await cancel_topup(db_session, topup.id, owner=other, gateway=gateway)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_admin_approve_with_amount_override(db_session):
    account = await _make_account(db_session)
    topup = await _make_topup(db_session, account)

    topup = await approve_topup(
        db_session, topup.id, admin_id="admin-1", amount=Decimal("80"), notes="Partial"
    )

    assert topup.status == TopupStatus.APPROVED
    assert topup.approved_amount == Decimal("80.00")
    assert topup.processed_by == "admin-1"
    assert await _balance(db_session, account.id) == Decimal("80.00")

    with pytest.raises(ConflictError):
        await approve_topup(db_session, topup.id, admin_id="admin-1")
    assert await _balance(db_session, account.id) == Decimal("80.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_admin_reject_credits_nothing(db_session):
    account = await _make_account(db_session)
    topup = await _make_topup(db_session, account)

    topup = await reject_topup(db_session, topup.id, admin_id="admin-1", notes="No funds")

    assert topup.status == TopupStatus.REJECTED
    assert topup.notes == "No funds"
    assert await _balance(db_session, account.id) == Decimal("0.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_pending_topups(db_session, gateway):
    account = await _make_account(db_session)
    await _make_topup(db_session, account, session_id="sess-a")
    await _make_topup(db_session, account, session_id="sess-b")
    gateway.set_status("sess-a", "confirmed", confirmations=3)
    gateway.set_status("sess-b", "pending", confirmations=0)

    approved = await reconcile_pending_topups(db_session, gateway)

    assert approved == 1
    assert await _balance(db_session, account.id) == Decimal("100.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_topup_id(db_session):
    with pytest.raises(NotFoundError):
        await approve_topup(db_session, uuid.uuid4(), admin_id="admin-1")
