"""Payment gateway webhook."""

from typing import Optional

from fastapi import APIRouter, Depends, Header
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.ledger_service.schemas import PaymentWebhookPayload, WebhookResponse
from services.ledger_service.services import topup_service
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/ledger/webhooks", tags=["ledger-webhooks"])
logger = get_logger(__name__)


@router.post("/payment", response_model=WebhookResponse)
async def payment_webhook(
    payload: PaymentWebhookPayload,
    x_webhook_secret: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Gateway push endpoint (no auth; verified by the shared webhook secret).

    The secret may arrive in the body or the X-Webhook-Secret header.
    Redelivery of an already applied notification is a no-op.
    """
    outcome = await topup_service.handle_payment_webhook(
        db,
        secret=payload.secret or x_webhook_secret,
        session_id=payload.session_id,
        account_id=payload.user_id,
        amount=payload.amount,
        network=payload.network,
        confirmations=payload.confirmations,
        payment_status=payload.payment_status,
        tx_hash=payload.tx_hash,
        received_usd=payload.received_amount_usd,
    )
    topup = outcome.topup
    logger.info(
        "Payment webhook session=%s matched=%s credited=%s",
        payload.session_id,
        outcome.matched,
        outcome.credited,
    )
    return WebhookResponse(
        matched=outcome.matched,
        credited=outcome.credited,
        request_id=topup.id if topup else None,
        status=topup.status.value if topup else None,
        payment_status=topup.payment_status.value if topup else None,
    )
