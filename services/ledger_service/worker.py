"""ARQ worker for rate refresh and top-up reconciliation.

Run with ``arq services.ledger_service.worker.WorkerSettings``.
"""

from urllib.parse import urlparse

from arq import cron
from arq.connections import RedisSettings
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)

QUEUE_NAME = "arq:ledger"
_EVERY_FIVE_MINUTES = set(range(0, 60, 5))


def redis_settings_from_url(url: str) -> RedisSettings:
    """``redis://[:password@]host[:port][/db]``, ``rediss://`` for TLS."""
    parsed = urlparse(url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or "0"),
        password=parsed.password,
        ssl=parsed.scheme == "rediss",
    )


async def task_refresh_rates(ctx: dict):
    from services.ledger_service.tasks import refresh_conversion_rates

    logger.info("Running: refresh_conversion_rates")
    return await refresh_conversion_rates()


async def task_expire_topups(ctx: dict):
    from services.ledger_service.tasks import expire_topups

    logger.info("Running: expire_topups")
    return await expire_topups()


async def task_reconcile_topups(ctx: dict):
    from services.ledger_service.tasks import reconcile_topups

    logger.info("Running: reconcile_topups")
    return await reconcile_topups()


class WorkerSettings:
    redis_settings = redis_settings_from_url(get_settings().REDIS_URL)
    queue_name = QUEUE_NAME
    # Gateway polling for a full batch must finish before the next run
    job_timeout = 240

    functions = [
        task_refresh_rates,
        task_expire_topups,
        task_reconcile_topups,
    ]

    cron_jobs = [
        cron(task_refresh_rates, minute=_EVERY_FIVE_MINUTES, run_at_startup=True),
        cron(
            task_expire_topups,
            minute={m + 1 for m in _EVERY_FIVE_MINUTES},
            run_at_startup=True,
        ),
        cron(
            task_reconcile_topups,
            minute={m + 2 for m in _EVERY_FIVE_MINUTES},
            run_at_startup=True,
        ),
    ]
