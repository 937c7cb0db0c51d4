"""Fire-and-forget notifications through the Communications Service.

Settlement never waits on or fails because of a notification.
"""

from typing import Any, Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.common.service_client import internal_post

logger = get_logger(__name__)

NOTIFY_PATH = "/internal/notifications/events"


async def notify(event: str, payload: Optional[dict[str, Any]] = None) -> bool:
    """Send ``event`` to the communications service. Returns True on delivery."""
    settings = get_settings()
    if not settings.NOTIFICATIONS_ENABLED:
        logger.debug("Notifications disabled, dropping %s", event)
        return False

    try:
        response = await internal_post(
            service_url=settings.COMMUNICATIONS_SERVICE_URL,
            path=NOTIFY_PATH,
            calling_service="ledger_service",
            json={"event": event, "payload": payload or {}},
        )
    except httpx.HTTPError as e:
        logger.warning("Notification %s not delivered: %s", event, e)
        return False

    if response.status_code >= 400:
        logger.warning(
            "Notification %s rejected by communications service: %s",
            event,
            response.status_code,
        )
        return False
    return True
