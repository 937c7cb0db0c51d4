"""Process-wide TTL cache for conversion rates."""

import time
from decimal import Decimal
from typing import Callable, Optional

from services.ledger_service.models import Network


class RateCache:
    """Holds the last rate table read from the database.

    Entries expire after ``ttl_seconds`` and are dropped by ``invalidate()``
    whenever a rate is written.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._rates: Optional[dict[Network, Decimal]] = None
        self._loaded_at = 0.0

    def get(self) -> Optional[dict[Network, Decimal]]:
        if self._rates is None:
            return None
        if self._clock() - self._loaded_at >= self.ttl_seconds:
            self._rates = None
            return None
        return dict(self._rates)

    def set(self, rates: dict[Network, Decimal]) -> None:
        self._rates = dict(rates)
        self._loaded_at = self._clock()

    def invalidate(self) -> None:
        self._rates = None
