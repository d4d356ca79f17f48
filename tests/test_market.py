"""
Market intelligence: static area tables, national fallback, deterministic
comparable-sale synthesis and cache-backed lookups.
"""

import asyncio
from datetime import date

from woz_valuation.data.base import AreaStats, MarketData
from woz_valuation.data.market_client import MarketIntelligence, NATIONAL_AREA_STATS


def test_unknown_prefix_falls_back_to_national_figures(market):
    async def run():
        stats = await market.get_area_stats("3769")
        assert stats == AreaStats(avg_value=380_000, avg_size=105, avg_year=1965)
        assert stats == NATIONAL_AREA_STATS
        assert await market.get_multiplier("3769") == 1.18
        assert await market.get_market_data("3769") == MarketData(1.18, 34, 6.2)
    asyncio.run(run())


def test_known_prefix(market):
    async def run():
        assert await market.get_multiplier("1015") == 1.35
        assert (await market.get_area_stats("1000")).avg_value == 620_000
    asyncio.run(run())


def test_comparables_are_deterministic_and_priced_per_m2(cache, settings):
    async def run():
        first = await MarketIntelligence(cache, settings)._synthesize_comparable_sales("3500", "house")
        second = await MarketIntelligence(cache, settings)._synthesize_comparable_sales("3500", "house")
        assert first == second
        assert len(first) == 3
        base = round(1.27 * 300_000)
        for sale in first:
            assert sale.price_per_sqm == round(sale.sold_price / sale.square_meters)
            assert abs(sale.sold_price - base) <= 30_000
            assert 0.1 <= sale.distance_km <= 2.0
            assert date.fromisoformat(sale.sold_date) <= date.today()
    asyncio.run(run())


def test_lookups_are_served_from_cache(market, cache):
    async def run():
        sales = await market.get_comparable_sales("1000", "apartment")
        assert await cache.get("1000:apartment", "sales") is not None
        assert await market.get_comparable_sales("1000", "apartment") == sales

        await market.get_area_stats("2500")
        assert await cache.get("2500", "area-stats") == {"avg_value": 460_000, "avg_size": 90, "avg_year": 1930}
    asyncio.run(run())


def test_market_trends(market):
    async def run():
        trends = await market.get_market_trends("1000", 100, 500_000)
        assert trends["average_days_on_market"] == 16
        assert trends["average_price_change"] == 6.8
        assert trends["price_per_square_meter"] == 5000
        assert trends["median_comparable_price"] > 0
    asyncio.run(run())


def test_market_trends_without_floor_area(market):
    trends = asyncio.run(market.get_market_trends("1000", None, 500_000))
    assert trends["price_per_square_meter"] is None
    assert trends["average_days_on_market"] == 16
