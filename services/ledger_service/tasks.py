"""Background jobs for the ledger service."""

from typing import Optional

from libs.common.logging import get_logger
from libs.db.config import AsyncSessionLocal
from services.ledger_service.services.payment_gateway import (
    PaymentGatewayClient,
    get_payment_gateway,
)
from services.ledger_service.services.rate_oracle import RateOracle, get_rate_oracle
from services.ledger_service.services.topup_service import (
    expire_stale_topups,
    reconcile_pending_topups,
)

logger = get_logger(__name__)


async def refresh_conversion_rates(
    session_factory=None, oracle: Optional[RateOracle] = None
) -> int:
    """Pull spot prices for auto-mode networks. Returns rates written."""
    session_factory = session_factory or AsyncSessionLocal
    oracle = oracle or get_rate_oracle()

    async with session_factory() as db:
        # Seeds any missing network before refreshing
        await oracle.list_rates(db)
        written = await oracle.refresh_from_source(db)

    if written is None:
        logger.warning("Scheduled rate refresh failed; stored rates kept")
        return 0
    return len(written)


async def expire_topups(session_factory=None) -> int:
    """Mark unpaid top-ups past the expiry window as expired."""
    session_factory = session_factory or AsyncSessionLocal
    async with session_factory() as db:
        expired = await expire_stale_topups(db)
    if expired:
        logger.info("Expired %d stale top-up requests", expired)
    return expired


async def reconcile_topups(
    session_factory=None, gateway: Optional[PaymentGatewayClient] = None
) -> int:
    """Poll the gateway for in-flight top-ups in case a webhook was missed."""
    session_factory = session_factory or AsyncSessionLocal
    gateway = gateway or get_payment_gateway()
    async with session_factory() as db:
        approved = await reconcile_pending_topups(db, gateway)
    if approved:
        logger.info("Reconciliation approved %d top-ups", approved)
    return approved
