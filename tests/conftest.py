"""
Shared fixtures: an in-process cache on a controllable clock, settings with
every remote credential cleared, and scriptable assessed-value tiers.
"""

import asyncio

import pytest

from woz_valuation.core.cache import Cache, MemoryBackend
from woz_valuation.core.config import Settings
from woz_valuation.data.base import AcquisitionResult, AssessedValueRecord, Source, ValueHistoryEntry, WozMetadata
from woz_valuation.data.building_client import BuildingDataClient
from woz_valuation.data.energy_client import EnergyLabelClient
from woz_valuation.data.market_client import MarketIntelligence
from woz_valuation.data.store import MemoryStore
from woz_valuation.data.woz_client import CacheLookup, StoreLookup, WozResolver
from woz_valuation.models.adjustment_engine import ValuationEngine
from woz_valuation.models.presets import MARKET
from woz_valuation.services.property_service import PropertyService


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTier:
    """Assessed-value strategy that returns, raises or stalls on demand."""

    def __init__(self, source: Source, record=None, error: Exception | None = None, delay: float = 0.0):
        self.source = source
        self.record = record
        self.error = error
        self.delay = delay
        self.calls = 0

    async def fetch(self, address, postal_code):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.record is None:
            return AcquisitionResult.fail("nothing here", self.source)
        return AcquisitionResult.ok(self.record, self.source)


def woz_record(value: int = 350_000, address: str = "Kampweg 10", postal_code: str = "3769DG",
               provenance: Source = Source.BROWSER, **kw) -> AssessedValueRecord:
    metadata = kw.pop("metadata", None) or WozMetadata(
        construction_year="1975",
        floor_area="120 m²",
        usage_purpose="woonfunctie",
        woz_object_id="034400012345",
        value_history=[
            ValueHistoryEntry(date="01-01-2024", value="€ 350.000"),
            ValueHistoryEntry(date="01-01-2023", value="€ 331.000"),
        ],
    )
    return AssessedValueRecord(
        address=address,
        postal_code=postal_code,
        assessed_value=value,
        reference_year=2024,
        object_type=kw.pop("object_type", "Woning"),
        surface_area=kw.pop("surface_area", 120.0),
        source_url="https://www.wozwaardeloket.nl",
        provenance=provenance.value,
        metadata=metadata,
        **kw,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        USE_REDIS=False,
        BROWSER_ENABLED=False,
        SCRAPINGBEE_API_KEY=None,
        APIFY_API_TOKEN=None,
        PROXY_ENABLED=False,
        EP_ONLINE_API_KEY=None,
        BAG_API_KEY=None,
        SOURCE_TIMEOUT_SECONDS=2.0,
        VALUATION_PRESET="market",
    )


@pytest.fixture
def cache(clock, settings):
    return Cache(MemoryBackend(maxsize=1024, timer=clock), settings=settings)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def market(cache, settings):
    return MarketIntelligence(cache, settings)


@pytest.fixture
def make_resolver(cache, store, settings):
    """Resolver with the cache and store tiers in front of the given tiers."""
    def _make(*tiers, cfg: Settings | None = None):
        cfg = cfg or settings
        chain = [CacheLookup(cache), StoreLookup(store, cfg), *tiers]
        return WozResolver(chain, cache, store, cfg)
    return _make


@pytest.fixture
def make_service(cache, store, market, settings, make_resolver):
    def _make(*tiers, engine=None):
        return PropertyService(
            cache=cache,
            store=store,
            resolver=make_resolver(*tiers),
            energy=EnergyLabelClient(cache, settings),
            building=BuildingDataClient(cache, market, settings),
            market=market,
            engine=engine or ValuationEngine(MARKET),
            settings=settings,
        )
    return _make
