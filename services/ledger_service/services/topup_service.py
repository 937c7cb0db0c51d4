"""Topup settlement: automated crypto deposits and manual admin topups.

Three independent paths can settle a pending topup: the payment webhook,
client status polling and an admin action. They all end in ``_settle``,
which performs the credit inside ``try_transition`` so only one of them
ever credits the balance.
"""

import hmac
import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from libs.common.config import get_settings
from libs.common.currency import ZERO, to_decimal, to_usd, usd_to_crypto
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.ledger_service.errors import (
    ConflictError,
    ForbiddenError,
    LedgerError,
    LedgerValidationError,
    NotFoundError,
    UnauthorizedError,
    UpstreamUnavailableError,
)
from services.ledger_service.models import (
    CANCELLABLE_PAYMENT_STATUSES,
    SETTLED_PAYMENT_STATUSES,
    Account,
    EntryType,
    Network,
    PaymentStatus,
    TopupRequest,
    TopupStatus,
    payment_status_predecessors,
)
from services.ledger_service.services.accounts import get_account
from services.ledger_service.services.balance_ops import credit_balance, find_entry
from services.ledger_service.services.notifications import notify
from services.ledger_service.services.payment_gateway import (
    GatewayError,
    PaymentGatewayClient,
    SessionStatus,
    required_confirmations_for,
)
from services.ledger_service.services.rate_oracle import RateOracle, parse_network
from services.ledger_service.services.transitions import reload, try_transition
from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

SYSTEM_ACTOR = "system"
WEBHOOK_ACTOR = "payment-webhook"
POLL_ACTOR = "status-poll"


def topup_idempotency_key(topup_id: uuid.UUID) -> str:
    return f"topup-{topup_id}"


def tx_idempotency_key(network: Network, tx_hash: str) -> str:
    return f"topup-tx-{network.value}-{tx_hash}"


def parse_payment_status(value: Optional[str]) -> Optional[PaymentStatus]:
    if value is None:
        return None
    try:
        return PaymentStatus(str(value).lower())
    except ValueError:
        raise LedgerValidationError(f"Unknown payment status: {value}")


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


async def get_topup(
    db: AsyncSession, topup_id: uuid.UUID, owner: Optional[Account] = None
) -> TopupRequest:
    topup = await reload(db, TopupRequest, topup_id)
    if topup is None:
        raise NotFoundError("Top-up request not found")
    if owner is not None and topup.account_id != owner.id:
        raise ForbiddenError("Access denied")
    return topup


async def list_topups(
    db: AsyncSession,
    *,
    account_id: Optional[uuid.UUID] = None,
    status: Optional[TopupStatus] = None,
    skip: int = 0,
    limit: int = 50,
) -> list[TopupRequest]:
    query = select(TopupRequest).order_by(TopupRequest.created_at.desc())
    if account_id is not None:
        query = query.where(TopupRequest.account_id == account_id)
    if status is not None:
        query = query.where(TopupRequest.status == status)
    result = await db.execute(query.offset(skip).limit(limit))
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


async def create_topup(
    db: AsyncSession,
    *,
    account: Account,
    amount,
    network,
    oracle: RateOracle,
    gateway: Optional[PaymentGatewayClient] = None,
    automated: bool = True,
    crypto_amount=None,
) -> TopupRequest:
    """Create a topup request.

    The automated flow opens a payment session first; if the gateway fails
    nothing is persisted.
    """
    amount = to_decimal(amount)
    if amount <= ZERO:
        raise LedgerValidationError("Invalid amount")
    amount = to_usd(amount)
    network = parse_network(network)

    topup = TopupRequest(
        account_id=account.id,
        amount=amount,
        cryptocurrency=network,
        status=TopupStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        confirmations=0,
        required_confirmations=required_confirmations_for(network.value),
    )

    if automated:
        if gateway is None:
            raise UpstreamUnavailableError("Payment gateway not configured")
        rate = await oracle.get_rate(db, network)
        topup.crypto_amount = usd_to_crypto(amount, rate)
        try:
            session = await gateway.create_session(
                str(account.id),
                network.value,
                amount,
                metadata={"crypto_amount": str(topup.crypto_amount)},
            )
        except GatewayError as e:
            logger.error(
                "Payment session creation failed for account %s: %s", account.id, e
            )
            raise UpstreamUnavailableError(f"Payment gateway unavailable: {e.message}")
        topup.session_id = session.session_id
        topup.payment_address = session.payment_address
        topup.expires_at = session.expires_at or utc_now() + timedelta(
            minutes=get_settings().TOPUP_EXPIRY_MINUTES
        )
    elif crypto_amount is not None:
        topup.crypto_amount = to_decimal(crypto_amount)

    db.add(topup)
    await db.commit()
    logger.info(
        "Created topup %s: account=%s amount=%s %s automated=%s",
        topup.id,
        account.id,
        amount,
        network.value,
        automated,
    )
    await notify(
        "topup.created",
        {"topup_id": str(topup.id), "account_id": str(account.id), "amount": str(amount)},
    )
    return topup


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


async def _settle(
    db: AsyncSession,
    topup: TopupRequest,
    *,
    credit_amount: Decimal,
    actor: str,
    notes: str,
    payment_status: Optional[PaymentStatus] = None,
    idempotency_key: Optional[str] = None,
) -> bool:
    """Approve ``topup`` and credit the balance exactly once.

    Returns True if this call did the credit.
    """
    credit_amount = to_usd(credit_amount)
    if credit_amount <= ZERO:
        raise LedgerValidationError("Amount must be greater than 0")

    values = {
        "status": TopupStatus.APPROVED,
        "approved_amount": credit_amount,
        "processed_at": utc_now(),
        "processed_by": actor,
        "notes": notes,
    }
    if payment_status is not None:
        values["payment_status"] = payment_status

    async def credit():
        await credit_balance(
            db,
            account_id=topup.account_id,
            amount=credit_amount,
            idempotency_key=idempotency_key or topup_idempotency_key(topup.id),
            entry_type=EntryType.TOPUP,
            description=f"Top-up {topup.id} approved ({credit_amount} USD)",
            reference_type="topup",
            reference_id=str(topup.id),
            initiated_by=actor,
        )

    won = await try_transition(
        db, TopupRequest, topup.id, TopupStatus.PENDING, values, side_effect=credit
    )
    if won:
        logger.info(
            "Top-up %s approved by %s: credited %s USD to account %s",
            topup.id,
            actor,
            credit_amount,
            topup.account_id,
        )
        await notify(
            "topup.approved",
            {
                "topup_id": str(topup.id),
                "account_id": str(topup.account_id),
                "amount": str(credit_amount),
            },
        )
    return won


def _settles(topup: TopupRequest, payment_status: PaymentStatus, confirmations: int) -> bool:
    return (
        payment_status in SETTLED_PAYMENT_STATUSES
        or confirmations >= topup.required_confirmations
    )


async def apply_payment_update(
    db: AsyncSession,
    topup: TopupRequest,
    *,
    payment_status: Optional[PaymentStatus],
    confirmations: Optional[int],
    tx_hash: Optional[str],
    received_usd: Optional[Decimal],
    actor: str,
) -> TopupRequest:
    """Record gateway progress and auto-approve once the payment settles.

    Safe to call any number of times from any path; an approved topup is
    never touched again.
    """
    if topup.status != TopupStatus.PENDING:
        return topup

    pending = (TopupRequest.id == topup.id, TopupRequest.status == TopupStatus.PENDING)
    confirmations = confirmations or 0
    values = {
        "confirmations": case(
            (TopupRequest.confirmations < confirmations, confirmations),
            else_=TopupRequest.confirmations,
        )
    }
    if tx_hash:
        values["tx_hash"] = tx_hash
    await db.execute(
        update(TopupRequest)
        .where(*pending)
        .values(**values)
        .execution_options(synchronize_session=False)
    )

    # A lagging source must not move the payment back (e.g. detected -> pending)
    sources = payment_status_predecessors(payment_status) if payment_status else None
    if sources:
        await db.execute(
            update(TopupRequest)
            .where(*pending, TopupRequest.payment_status.in_(sources))
            .values(payment_status=payment_status)
            .execution_options(synchronize_session=False)
        )
    await db.commit()
    topup = await reload(db, TopupRequest, topup.id)

    if topup.status == TopupStatus.PENDING and _settles(
        topup, topup.payment_status, topup.confirmations
    ):
        credit_amount = (
            received_usd if received_usd is not None and received_usd > ZERO else topup.amount
        )
        settled_status = (
            topup.payment_status
            if topup.payment_status in SETTLED_PAYMENT_STATUSES
            else PaymentStatus.CONFIRMED
        )
        notes = (
            f"Auto-approved by {actor} (TX: {topup.tx_hash or 'n/a'}, "
            f"confirmations {topup.confirmations}/{topup.required_confirmations})"
        )
        await _settle(
            db,
            topup,
            credit_amount=credit_amount,
            actor=actor,
            notes=notes,
            payment_status=settled_status,
        )
        topup = await reload(db, TopupRequest, topup.id)

    return topup


async def expire_if_timed_out(
    db: AsyncSession, topup: TopupRequest, now=None
) -> TopupRequest:
    """Mark an unpaid topup's payment as expired after the timeout.

    ``status`` stays pending for manual review.
    """
    now = now or utc_now()
    cutoff = now - timedelta(minutes=get_settings().TOPUP_EXPIRY_MINUTES)
    result = await db.execute(
        update(TopupRequest)
        .where(
            TopupRequest.id == topup.id,
            TopupRequest.status == TopupStatus.PENDING,
            TopupRequest.payment_status == PaymentStatus.PENDING,
            TopupRequest.confirmations == 0,
            TopupRequest.created_at < cutoff,
        )
        .values(payment_status=PaymentStatus.EXPIRED)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount:
        logger.info("Top-up %s payment expired (no confirmations)", topup.id)
    return await reload(db, TopupRequest, topup.id)


async def refresh_topup_status(
    db: AsyncSession,
    topup_id: uuid.UUID,
    *,
    gateway: Optional[PaymentGatewayClient],
    owner: Optional[Account] = None,
    actor: str = POLL_ACTOR,
) -> TopupRequest:
    """Poll the gateway for a topup and apply whatever it reports."""
    topup = await get_topup(db, topup_id, owner)
    if topup.status != TopupStatus.PENDING:
        return topup

    if topup.is_automated and gateway is not None:
        try:
            session: SessionStatus = await gateway.get_session_status(topup.session_id)
        except GatewayError as e:
            logger.warning("Status poll for topup %s failed: %s", topup.id, e)
        else:
            topup = await apply_payment_update(
                db,
                topup,
                payment_status=parse_payment_status(session.status),
                confirmations=session.confirmations,
                tx_hash=session.tx_hash,
                received_usd=session.received_amount_usd,
                actor=actor,
            )

    return await expire_if_timed_out(db, topup)


async def cancel_topup(
    db: AsyncSession,
    topup_id: uuid.UUID,
    *,
    owner: Account,
    gateway: Optional[PaymentGatewayClient],
) -> TopupRequest:
    """Owner cancels a topup before any payment has been seen."""
    topup = await get_topup(db, topup_id, owner)
    if topup.status != TopupStatus.PENDING:
        raise ConflictError(f"Request already {topup.status.value}")
    if topup.payment_status not in CANCELLABLE_PAYMENT_STATUSES:
        raise ConflictError(
            f"Payment already {topup.payment_status.value}; top-up can no longer be cancelled"
        )

    won = await try_transition(
        db,
        TopupRequest,
        topup.id,
        TopupStatus.PENDING,
        {
            "status": TopupStatus.REJECTED,
            "payment_status": PaymentStatus.EXPIRED,
            "processed_at": utc_now(),
            "processed_by": owner.auth_id,
            "notes": "Cancelled by user",
        },
        conditions=[TopupRequest.payment_status.in_(CANCELLABLE_PAYMENT_STATUSES)],
    )
    topup = await reload(db, TopupRequest, topup.id)
    if not won:
        raise ConflictError(
            f"Top-up is {topup.status.value}/{topup.payment_status.value}; cannot cancel"
        )

    if topup.session_id and gateway is not None:
        try:
            await gateway.cancel_session(topup.session_id)
        except GatewayError as e:
            logger.warning(
                "Gateway session %s not cancelled for topup %s: %s",
                topup.session_id,
                topup.id,
                e,
            )

    logger.info("Top-up %s cancelled by owner", topup.id)
    return topup


async def approve_topup(
    db: AsyncSession,
    topup_id: uuid.UUID,
    *,
    admin_id: str,
    amount=None,
    notes: Optional[str] = None,
) -> TopupRequest:
    """Admin approval: credits ``amount`` (or the requested amount) once."""
    topup = await get_topup(db, topup_id)
    if topup.status != TopupStatus.PENDING:
        raise ConflictError(f"Request already {topup.status.value}")

    credit_amount = to_decimal(amount) if amount is not None else topup.amount
    if credit_amount <= ZERO:
        raise LedgerValidationError("Amount must be greater than 0")

    won = await _settle(
        db,
        topup,
        credit_amount=credit_amount,
        actor=admin_id,
        notes=notes or "Approved by admin",
    )
    topup = await reload(db, TopupRequest, topup.id)
    if not won:
        raise ConflictError(f"Request already {topup.status.value}")
    return topup


async def reject_topup(
    db: AsyncSession,
    topup_id: uuid.UUID,
    *,
    admin_id: str,
    notes: Optional[str] = None,
) -> TopupRequest:
    topup = await get_topup(db, topup_id)
    if topup.status != TopupStatus.PENDING:
        raise ConflictError(f"Request already {topup.status.value}")

    values = {
        "status": TopupStatus.REJECTED,
        "processed_at": utc_now(),
        "processed_by": admin_id,
    }
    if notes:
        values["notes"] = notes
    won = await try_transition(db, TopupRequest, topup.id, TopupStatus.PENDING, values)
    topup = await reload(db, TopupRequest, topup.id)
    if not won:
        raise ConflictError(f"Request already {topup.status.value}")

    logger.info("Top-up %s rejected by %s", topup.id, admin_id)
    await notify(
        "topup.rejected",
        {"topup_id": str(topup.id), "account_id": str(topup.account_id)},
    )
    return topup


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


@dataclass
class WebhookOutcome:
    matched: bool
    credited: bool
    topup: Optional[TopupRequest]


def verify_webhook_secret(secret: Optional[str]) -> None:
    """Constant-time comparison against PAYMENT_WEBHOOK_SECRET."""
    expected = get_settings().PAYMENT_WEBHOOK_SECRET
    if not expected:
        logger.error("PAYMENT_WEBHOOK_SECRET is not configured")
        raise LedgerError("Webhook security not configured", status_code=500)
    if not secret or not hmac.compare_digest(secret.encode(), expected.encode()):
        raise UnauthorizedError("Unauthorized")


async def _find_webhook_topup(
    db: AsyncSession,
    *,
    session_id: Optional[str],
    account_id: Optional[uuid.UUID],
    amount: Optional[Decimal],
    network: Network,
) -> Optional[TopupRequest]:
    if session_id:
        result = await db.execute(
            select(TopupRequest).where(TopupRequest.session_id == session_id)
        )
        topup = result.scalar_one_or_none()
        if topup is not None:
            return topup

    if account_id is None or amount is None:
        return None
    result = await db.execute(
        select(TopupRequest)
        .where(
            TopupRequest.account_id == account_id,
            TopupRequest.amount == to_usd(amount),
            TopupRequest.cryptocurrency == network,
            TopupRequest.status == TopupStatus.PENDING,
        )
        .order_by(TopupRequest.created_at)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def handle_payment_webhook(
    db: AsyncSession,
    *,
    secret: Optional[str],
    session_id: Optional[str],
    account_id: Optional[uuid.UUID],
    amount,
    network,
    confirmations: Optional[int],
    payment_status: Optional[str],
    tx_hash: Optional[str],
    received_usd=None,
) -> WebhookOutcome:
    """Apply a payment notification pushed by the gateway."""
    verify_webhook_secret(secret)

    if not session_id and account_id is None:
        raise LedgerValidationError("Missing required fields")
    network = parse_network(network)
    amount = to_decimal(amount) if amount is not None else None
    received = to_decimal(received_usd) if received_usd is not None else None
    status = parse_payment_status(payment_status)

    topup = await _find_webhook_topup(
        db, session_id=session_id, account_id=account_id, amount=amount, network=network
    )
    if topup is not None:
        was_pending = topup.status == TopupStatus.PENDING
        topup = await apply_payment_update(
            db,
            topup,
            payment_status=status,
            confirmations=confirmations,
            tx_hash=tx_hash,
            received_usd=received,
            actor=WEBHOOK_ACTOR,
        )
        credited = was_pending and topup.status == TopupStatus.APPROVED
        return WebhookOutcome(matched=True, credited=credited, topup=topup)

    return await _record_unmatched_payment(
        db,
        account_id=account_id,
        amount=received if received is not None else amount,
        network=network,
        status=status,
        confirmations=confirmations or 0,
        tx_hash=tx_hash,
    )


async def _record_unmatched_payment(
    db: AsyncSession,
    *,
    account_id: Optional[uuid.UUID],
    amount: Optional[Decimal],
    network: Network,
    status: Optional[PaymentStatus],
    confirmations: int,
    tx_hash: Optional[str],
) -> WebhookOutcome:
    """A settled payment with no matching request becomes an approved topup.

    Keyed on the transaction hash so redelivery never credits twice.
    """
    if account_id is None:
        raise NotFoundError("Top-up request not found")
    account = await get_account(db, account_id)

    settled = status in SETTLED_PAYMENT_STATUSES
    if not settled or not tx_hash or amount is None or amount <= ZERO:
        logger.info(
            "Unmatched payment for account %s not credited (status=%s tx=%s)",
            account.id,
            status.value if status else None,
            tx_hash,
        )
        return WebhookOutcome(matched=False, credited=False, topup=None)

    key = tx_idempotency_key(network, tx_hash)
    seen = await db.execute(
        select(func.count())
        .select_from(TopupRequest)
        .where(TopupRequest.tx_hash == tx_hash)
    )
    if seen.scalar_one() or await find_entry(db, key):
        logger.info("Payment %s already recorded; ignoring redelivery", tx_hash)
        return WebhookOutcome(matched=False, credited=False, topup=None)

    credit_amount = to_usd(amount)
    topup = TopupRequest(
        account_id=account.id,
        amount=credit_amount,
        cryptocurrency=network,
        status=TopupStatus.PENDING,
        payment_status=status,
        confirmations=confirmations,
        required_confirmations=required_confirmations_for(network.value),
        tx_hash=tx_hash,
    )
    db.add(topup)
    await db.commit()

    credited = await _settle(
        db,
        topup,
        credit_amount=credit_amount,
        actor=WEBHOOK_ACTOR,
        notes=f"Auto-approved by payment backend (TX: {tx_hash})",
        payment_status=status,
        idempotency_key=key,
    )
    topup = await reload(db, TopupRequest, topup.id)
    return WebhookOutcome(matched=False, credited=credited, topup=topup)


# ---------------------------------------------------------------------------
# Background sweeps
# ---------------------------------------------------------------------------


async def expire_stale_topups(db: AsyncSession, now=None) -> int:
    """Bulk version of ``expire_if_timed_out`` for the worker."""
    now = now or utc_now()
    cutoff = now - timedelta(minutes=get_settings().TOPUP_EXPIRY_MINUTES)
    result = await db.execute(
        update(TopupRequest)
        .where(
            TopupRequest.status == TopupStatus.PENDING,
            TopupRequest.payment_status == PaymentStatus.PENDING,
            TopupRequest.confirmations == 0,
            TopupRequest.created_at < cutoff,
        )
        .values(payment_status=PaymentStatus.EXPIRED)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount or 0


async def reconcile_pending_topups(
    db: AsyncSession, gateway: PaymentGatewayClient, *, limit: int = 100
) -> int:
    """Poll the gateway for in-flight automated topups. Returns approvals."""
    result = await db.execute(
        select(TopupRequest.id)
        .where(
            TopupRequest.status == TopupStatus.PENDING,
            TopupRequest.session_id.is_not(None),
            TopupRequest.payment_status.not_in(
                [PaymentStatus.EXPIRED, PaymentStatus.FAILED]
            ),
        )
        .order_by(TopupRequest.created_at)
        .limit(limit)
    )
    approved = 0
    for topup_id in result.scalars().all():
        topup = await refresh_topup_status(
            db, topup_id, gateway=gateway, actor=SYSTEM_ACTOR
        )
        if topup.status == TopupStatus.APPROVED:
            approved += 1
    return approved
