"""Unit tests for RateOracle, RateCache and USD conversion."""

from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
from libs.common.datetime_utils import utc_now
from services.ledger_service.errors import LedgerValidationError
from services.ledger_service.models import ConversionRate, Network, RateMode
from services.ledger_service.services.price_source import PriceSource, PriceSourceError
from services.ledger_service.services.rate_cache import RateCache
from services.ledger_service.services.rate_oracle import (
    DEFAULT_RATES,
    RateOracle,
    parse_network,
)
from services.ledger_service.services.reward_ledger import to_usd_value
from sqlalchemy import select, update

SPOT = {
    Network.BTC: Decimal("60000"),
    Network.ETH: Decimal("2500"),
    Network.TRON: Decimal("0.12"),
    Network.USDT: Decimal("1"),
    Network.BNB: Decimal("550"),
    Network.SOL: Decimal("150"),
}


async def _age_rates(db, minutes: int) -> None:
    await db.execute(
        update(ConversionRate).values(updated_at=utc_now() - timedelta(minutes=minutes))
    )
    await db.commit()


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_to_usd_value_sums_every_network():
    rates = {
        Network.BTC: Decimal("45000"),
        Network.ETH: Decimal("3000"),
        Network.TRON: Decimal("0.1"),
        Network.USDT: Decimal("1"),
        Network.BNB: Decimal("300"),
        Network.SOL: Decimal("100"),
    }
    rewards = {
        Network.BTC: Decimal("0.1"),
        Network.ETH: Decimal("1"),
        Network.TRON: Decimal("1"),
        Network.USDT: Decimal("11"),
        Network.BNB: Decimal("1"),
        Network.SOL: Decimal("1"),
    }

    valuation = to_usd_value(rewards, rates)

    assert valuation.total == Decimal("7911.1")
    assert valuation.breakdown[Network.BTC].usd == Decimal("4500")
    assert valuation.breakdown[Network.TRON].original == Decimal("1")


@pytest.mark.unit
def test_to_usd_value_missing_rate_counts_as_zero():
    valuation = to_usd_value(
        {Network.BTC: Decimal("1"), Network.SOL: Decimal("2")},
        {Network.BTC: Decimal("100")},
    )
    assert valuation.total == Decimal("100")
    assert valuation.breakdown[Network.SOL].usd == 0


@pytest.mark.unit
def test_parse_network_accepts_lowercase_and_rejects_unknown():
    assert parse_network("eth") == Network.ETH
    with pytest.raises(LedgerValidationError) as exc:
        parse_network("DOGE")
    assert "DOGE" in exc.value.detail


# ---------------------------------------------------------------------------
# RateCache
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_rate_cache_expires_after_ttl():
    now = [100.0]
    cache = RateCache(ttl_seconds=60, clock=lambda: now[0])
    cache.set({Network.BTC: Decimal("1")})

    now[0] = 159.0
    assert cache.get() == {Network.BTC: Decimal("1")}
    now[0] = 160.0
    assert cache.get() is None


@pytest.mark.unit
def test_rate_cache_invalidate():
    cache = RateCache(ttl_seconds=60)
    cache.set({Network.BTC: Decimal("1")})
    cache.invalidate()
    assert cache.get() is None


# ---------------------------------------------------------------------------
# Reads and staleness
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_first_read_seeds_defaults(db_session, oracle, price_source):
    rates = await oracle.get_rates(db_session)

    assert rates == DEFAULT_RATES
    assert price_source.calls == 0
    rows = (await db_session.execute(select(ConversionRate))).scalars().all()
    assert len(rows) == len(Network)
    assert all(row.mode == RateMode.AUTO for row in rows)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stale_rates_trigger_exactly_one_fetch(db_session, oracle, price_source):
    await oracle.list_rates(db_session)
    await _age_rates(db_session, minutes=6)
    price_source.prices = SPOT

    rates = await oracle.get_rates(db_session)
    assert price_source.calls == 1
    assert rates[Network.BTC] == Decimal("60000")

    # Fresh after the refresh, cached or not
    await oracle.get_rates(db_session)
    oracle.cache.invalidate()
    await oracle.get_rates(db_session)
    assert price_source.calls == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_recent_rates_do_not_fetch(db_session, oracle, price_source):
    await oracle.list_rates(db_session)
    await _age_rates(db_session, minutes=2)
    price_source.prices = SPOT

    rates = await oracle.get_rates(db_session)

    assert price_source.calls == 0
    assert rates[Network.BTC] == DEFAULT_RATES[Network.BTC]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_price_source_failure_keeps_persisted_rates(
    db_session, oracle, price_source
):
    await oracle.list_rates(db_session)
    await _age_rates(db_session, minutes=10)
    price_source.fail = True

    rates = await oracle.get_rates(db_session)

    assert price_source.calls == 1
    assert rates == DEFAULT_RATES


@pytest.mark.asyncio
@pytest.mark.unit
async def test_manual_rate_disables_staleness_refresh(db_session, oracle, price_source):
    await oracle.list_rates(db_session)
    await oracle.set_rate(db_session, "btc", "50000", updated_by="admin-1")
    await _age_rates(db_session, minutes=30)
    price_source.prices = SPOT

    rates = await oracle.get_rates(db_session)

    assert price_source.calls == 0
    assert rates[Network.BTC] == Decimal("50000")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_set_rate_invalidates_cache(db_session, oracle):
    before = await oracle.get_rates(db_session)
    assert before[Network.ETH] == Decimal("3000")

    row = await oracle.set_rate(db_session, Network.ETH, Decimal("3100"), updated_by="admin-1")

    assert row.mode == RateMode.MANUAL
    assert row.updated_by == "admin-1"
    assert (await oracle.get_rates(db_session))[Network.ETH] == Decimal("3100")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_set_rates_validates_before_writing(db_session, oracle):
    await oracle.list_rates(db_session)

    with pytest.raises(LedgerValidationError):
        await oracle.set_rates(
            db_session, {"BTC": Decimal("1"), "ETH": Decimal("-5")}, updated_by="admin-1"
        )
    with pytest.raises(LedgerValidationError):
        await oracle.set_rates(db_session, {}, updated_by="admin-1")

    await db_session.rollback()
    rates = await oracle.get_rates(db_session)
    assert rates[Network.BTC] == DEFAULT_RATES[Network.BTC]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refresh_only_touches_auto_rows(db_session, oracle, price_source):
    await oracle.list_rates(db_session)
    await oracle.set_rate(db_session, Network.SOL, "120", updated_by="admin-1")
    price_source.prices = SPOT

    written = await oracle.refresh_from_source(db_session)

    assert Network.SOL not in written
    assert written[Network.BTC] == Decimal("60000")
    rates = await oracle.get_rates(db_session)
    assert rates[Network.SOL] == Decimal("120")
    assert rates[Network.ETH] == Decimal("2500")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_set_mode_switches_every_row(db_session, oracle):
    rows = await oracle.set_mode(db_session, RateMode.MANUAL, updated_by="admin-1")
    assert len(rows) == len(Network)
    assert {row.mode for row in rows} == {RateMode.MANUAL}


# ---------------------------------------------------------------------------
# PriceSource response handling
# ---------------------------------------------------------------------------


def _http_price_source(body) -> PriceSource:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/simple/price"
        return httpx.Response(200, json=body)

    return PriceSource(
        base_url="https://prices.test", transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_price_source_rejects_non_object_body():
    with pytest.raises(PriceSourceError):
        await _http_price_source([1, 2]).fetch_spot_prices()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_price_source_skips_unparseable_prices():
    source = _http_price_source(
        {
            "bitcoin": {"usd": "not-a-number"},
            "ethereum": {"usd": 2500.5},
            "tron": "0.1",
            "tether": {"usd": -1},
        }
    )

    prices = await source.fetch_spot_prices()

    assert prices == {Network.ETH: Decimal("2500.5")}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_malformed_price_response_keeps_persisted_rates(db_session):
    oracle = RateOracle(
        cache=RateCache(ttl_seconds=60),
        price_source=_http_price_source([1, 2]),
        staleness_seconds=300,
    )
    await oracle.list_rates(db_session)
    await _age_rates(db_session, minutes=10)

    assert await oracle.refresh_from_source(db_session) is None
    assert await oracle.get_rates(db_session) == DEFAULT_RATES
