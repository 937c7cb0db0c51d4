"""RateOracle: USD conversion rates per network.

Reads are served from an injected ``RateCache``. A miss re-reads the
``ledger_conversion_rates`` table, seeding literal defaults for any network
that has no row yet. When every row is in auto mode and the newest update is
older than the staleness window, one fetch from the price source refreshes
the table. Price source failures never reach the caller.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal
from typing import Callable, Optional

from libs.common.config import get_settings
from libs.common.currency import to_decimal
from libs.common.datetime_utils import as_utc, utc_now
from libs.common.logging import get_logger
from services.ledger_service.errors import LedgerValidationError
from services.ledger_service.models import ConversionRate, Network, RateMode
from services.ledger_service.services.price_source import PriceSource, PriceSourceError
from services.ledger_service.services.rate_cache import RateCache
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

DEFAULT_RATES = {
    Network.BTC: Decimal("45000"),
    Network.ETH: Decimal("3000"),
    Network.TRON: Decimal("0.1"),
    Network.USDT: Decimal("1"),
    Network.BNB: Decimal("300"),
    Network.SOL: Decimal("100"),
}

PRICE_SOURCE_ACTOR = "price-source"


def parse_network(value) -> Network:
    """Return the Network for ``value`` or raise a validation error."""
    if isinstance(value, Network):
        return value
    try:
        return Network(str(value).upper())
    except ValueError:
        valid = ", ".join(n.value for n in Network)
        raise LedgerValidationError(
            f"Invalid network: {value}. Must be one of: {valid}"
        )


def parse_rate(network: Network, value) -> Decimal:
    try:
        rate = to_decimal(value)
    except ValueError:
        rate = None
    if rate is None or not rate.is_finite() or rate < 0:
        raise LedgerValidationError(
            f"Invalid rate for {network.value}: {value}. Must be a non-negative number."
        )
    return rate


class RateOracle:
    def __init__(
        self,
        cache: RateCache,
        price_source: PriceSource,
        staleness_seconds: Optional[int] = None,
        clock: Callable = utc_now,
    ):
        self.cache = cache
        self.price_source = price_source
        self.staleness = timedelta(
            seconds=staleness_seconds
            if staleness_seconds is not None
            else get_settings().RATE_STALENESS_SECONDS
        )
        self._clock = clock
        self._refresh_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_rates(self, db: AsyncSession) -> dict[Network, Decimal]:
        """Return ``{network: rate_to_usd}`` for all six networks."""
        cached = self.cache.get()
        if cached is not None:
            return cached

        rows = await self.list_rates(db)
        if self._is_stale(rows):
            # One fetch per stale window, even with concurrent readers
            async with self._refresh_lock:
                rows = await self.list_rates(db)
                if self._is_stale(rows):
                    if await self.refresh_from_source(db) is not None:
                        rows = await self.list_rates(db)

        rates = {row.network: row.rate_to_usd for row in rows}
        self.cache.set(rates)
        return rates

    async def get_rate(self, db: AsyncSession, network) -> Decimal:
        network = parse_network(network)
        rates = await self.get_rates(db)
        return rates.get(network, Decimal("0"))

    async def list_rates(self, db: AsyncSession) -> list[ConversionRate]:
        """Persisted rate rows, seeding defaults for missing networks."""
        query = select(ConversionRate).execution_options(populate_existing=True)
        result = await db.execute(query)
        rows = list(result.scalars().all())
        missing = set(Network) - {row.network for row in rows}
        if missing:
            await self._seed_defaults(db, missing)
            result = await db.execute(query)
            rows = list(result.scalars().all())
        return sorted(rows, key=lambda r: list(Network).index(r.network))

    async def _seed_defaults(self, db: AsyncSession, networks: set[Network]) -> None:
        logger.info(
            "Seeding default conversion rates for %s",
            ", ".join(sorted(n.value for n in networks)),
        )
        now = self._clock()
        for network in networks:
            db.add(
                ConversionRate(
                    network=network,
                    rate_to_usd=DEFAULT_RATES[network],
                    mode=RateMode.AUTO,
                    updated_at=now,
                )
            )
        try:
            await db.commit()
        except IntegrityError:
            # Another reader seeded concurrently; its rows win
            await db.rollback()

    def _is_stale(self, rows: list[ConversionRate]) -> bool:
        if not rows or any(row.mode != RateMode.AUTO for row in rows):
            return False
        newest = max(as_utc(row.updated_at) for row in rows)
        return self._clock() - newest > self.staleness

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_from_source(
        self, db: AsyncSession
    ) -> Optional[dict[Network, Decimal]]:
        """Fetch spot prices and persist them for auto-mode networks.

        Returns the rates written, or None when the price source failed.
        """
        result = await db.execute(
            select(ConversionRate).where(ConversionRate.mode == RateMode.AUTO)
        )
        auto_rows = list(result.scalars().all())
        if not auto_rows:
            return {}

        try:
            prices = await self.price_source.fetch_spot_prices(
                [row.network for row in auto_rows]
            )
        except PriceSourceError as e:
            logger.warning("Rate refresh failed, keeping persisted rates: %s", e)
            return None

        now = self._clock()
        written: dict[Network, Decimal] = {}
        for row in auto_rows:
            price = prices.get(row.network)
            if price is None or price < 0:
                continue
            row.rate_to_usd = price
            row.updated_at = now
            row.updated_by = PRICE_SOURCE_ACTOR
            written[row.network] = price

        await db.commit()
        self.cache.invalidate()
        logger.info(
            "Refreshed %d conversion rates from price source: %s",
            len(written),
            {n.value: str(r) for n, r in written.items()},
        )
        return written

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set_rate(
        self, db: AsyncSession, network, rate, updated_by: Optional[str] = None
    ) -> ConversionRate:
        """Manually set one rate. The network switches to manual mode."""
        network = parse_network(network)
        rate = parse_rate(network, rate)
        row = await self._upsert_manual(db, network, rate, updated_by)
        await db.commit()
        self.cache.invalidate()
        logger.info("Conversion rate %s set to %s by %s", network.value, rate, updated_by)
        return row

    async def set_rates(
        self, db: AsyncSession, rates: dict, updated_by: Optional[str] = None
    ) -> list[ConversionRate]:
        """Bulk manual update. Validates every entry before writing any."""
        if not rates:
            raise LedgerValidationError("At least one rate must be provided")
        parsed = {}
        for key, value in rates.items():
            network = parse_network(key)
            parsed[network] = parse_rate(network, value)

        rows = [
            await self._upsert_manual(db, network, rate, updated_by)
            for network, rate in parsed.items()
        ]
        await db.commit()
        self.cache.invalidate()
        logger.info("Updated %d conversion rates by %s", len(rows), updated_by)
        return rows

    async def set_mode(
        self, db: AsyncSession, mode: RateMode, updated_by: Optional[str] = None
    ) -> list[ConversionRate]:
        """Toggle the whole table between auto and manual mode."""
        await self.list_rates(db)
        await db.execute(update(ConversionRate).values(mode=mode))
        await db.commit()
        self.cache.invalidate()
        logger.info("Conversion rate mode set to %s by %s", mode.value, updated_by)
        result = await db.execute(
            select(ConversionRate).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _upsert_manual(
        self, db: AsyncSession, network: Network, rate: Decimal, updated_by: Optional[str]
    ) -> ConversionRate:
        result = await db.execute(
            select(ConversionRate).where(ConversionRate.network == network)
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = ConversionRate(network=network)
            db.add(row)
        row.rate_to_usd = rate
        row.mode = RateMode.MANUAL
        row.updated_by = updated_by
        row.updated_at = self._clock()
        await db.flush()
        return row


_oracle: Optional[RateOracle] = None


def get_rate_oracle() -> RateOracle:
    """FastAPI dependency returning the process-wide oracle."""
    global _oracle
    if _oracle is None:
        settings = get_settings()
        _oracle = RateOracle(
            cache=RateCache(ttl_seconds=settings.RATE_CACHE_TTL_SECONDS),
            price_source=PriceSource(),
        )
    return _oracle
