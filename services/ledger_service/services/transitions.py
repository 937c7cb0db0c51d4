"""Compare-and-swap status transitions for settlement requests.

Every path that settles a request (webhook, client polling, admin action)
goes through ``try_transition``. The UPDATE only matches while the row is
still in ``expected_status``, so exactly one caller wins; the winner's side
effect (usually a balance mutation) commits in the same transaction.
"""

import uuid
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from libs.common.logging import get_logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

T = TypeVar("T")

SideEffect = Callable[[], Awaitable[Any]]


async def try_transition(
    db: AsyncSession,
    model,
    request_id: uuid.UUID,
    expected_status,
    values: dict[str, Any],
    side_effect: Optional[SideEffect] = None,
    conditions: Sequence = (),
) -> bool:
    """Move ``request_id`` out of ``expected_status`` exactly once.

    Returns True if this call performed the transition. Returns False when
    another caller got there first (nothing is written). If the side effect
    raises, the transition is rolled back and the exception propagates.
    """
    stmt = (
        update(model)
        .where(model.id == request_id, model.status == expected_status, *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        # Ends the (empty) transaction so the write lock is released
        await db.commit()
        logger.info(
            "%s %s no longer %s; transition skipped",
            model.__name__,
            request_id,
            getattr(expected_status, "value", expected_status),
        )
        return False

    try:
        if side_effect is not None:
            await side_effect()
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return True


async def reload(db: AsyncSession, model: type[T], request_id: uuid.UUID) -> Optional[T]:
    """Re-read a row, overwriting any stale copy in the session."""
    result = await db.execute(
        select(model)
        .where(model.id == request_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
