import asyncio
import logging
from typing import Iterable, List, Optional, Tuple

import httpx

from ..core.cache import Cache
from ..core.config import Settings, settings as default_settings
from ..core.errors import InvalidInput, SourceUnavailable
from ..core.logging import audit
from ..core.utils import is_valid_postal_code, normalize_address, normalize_postal_code, postal_area
from ..data.base import PropertyRecord, PropertyType, Source, WozStore
from ..data.browser import BrowserSession
from ..data.building_client import BuildingDataClient
from ..data.energy_client import EnergyLabelClient
from ..data.market_client import MarketIntelligence
from ..data.parsing import parse_year
from ..data.store import create_store
from ..data.woz_client import WozResolver, build_resolver
from ..models.adjustment_engine import ValuationEngine
from ..models.base import AdjustmentModel, MarketContext, ValuationResult
from ..models.presets import get_preset

logger = logging.getLogger(__name__)

VALUATION_PREFIX = "valuation"


def _city_ranges() -> dict:
    ranges = [
        (1000, 1019, "Amsterdam"),
        (3000, 3015, "Rotterdam"),
        (2500, 2515, "Den Haag"),
        (3500, 3515, "Utrecht"),
        (5600, 5603, "Eindhoven"),
        (9700, 9703, "Groningen"),
        (6800, 6803, "Arnhem"),
        (7500, 7503, "Enschede"),
    ]
    return {str(code): city for start, end, city in ranges for code in range(start, end + 1)}


CITY_BY_AREA = _city_ranges()


def city_for(postal_code: str) -> str:
    return CITY_BY_AREA.get(postal_area(postal_code), "Nederland")


def property_type_for(object_type: str) -> str:
    t = (object_type or "").lower()
    if "appartement" in t or "flat" in t:
        return PropertyType.APARTMENT.value
    if "rijtjes" in t or "tussenwoning" in t or "hoek" in t:
        return PropertyType.TOWNHOUSE.value
    if "woning" in t or "vrijstaand" in t or "eengezins" in t:
        return PropertyType.HOUSE.value
    return PropertyType.OTHER.value


def _key(address: str, postal_code: str) -> str:
    return f"{address}:{postal_code}"


class PropertyService:
    """
    Orchestrates:
      address → assessed value (fallback chain) → energy label + building data
      (concurrently) → PropertyRecord → market context → adjustment engine.
    Both stages are cached; valuations are also persisted for history.
    """
    def __init__(
        self,
        cache: Cache,
        store: WozStore,
        resolver: WozResolver,
        energy: EnergyLabelClient,
        building: BuildingDataClient,
        market: MarketIntelligence,
        engine: AdjustmentModel,
        settings: Settings | None = None,
    ):
        self.cache = cache
        self.store = store
        self.resolver = resolver
        self.energy = energy
        self.building = building
        self.market = market
        self.engine = engine
        self.settings = settings or default_settings

    @staticmethod
    def validate(address: str, postal_code: str) -> Tuple[str, str]:
        address = normalize_address(address or "")
        if len(address) < 3 or not any(c.isalpha() for c in address):
            raise InvalidInput("address must contain a street name")
        if not is_valid_postal_code(postal_code):
            raise InvalidInput("postal code must look like 1234AB")
        return address, normalize_postal_code(postal_code)

    async def get_property_data(self, address: str, postal_code: str) -> PropertyRecord:
        address, postal_code = self.validate(address, postal_code)
        key = _key(address, postal_code)
        cached = await self.cache.get_cached_property_data(key)
        if cached is not None:
            return PropertyRecord.from_dict(cached)

        result = await self.resolver.resolve(address, postal_code)
        if not result.success:
            logger.error(
                "Property data unavailable",
                extra={"context": {"address": address, "postal_code": postal_code, "error": result.error}},
            )
            raise SourceUnavailable(Source.ERROR.value, result.error or "no tier produced a value")
        woz = result.data

        estimated_fields: List[str] = []
        woz_year = parse_year(woz.metadata.construction_year)
        energy, building = await asyncio.gather(
            self.energy.resolve(address, postal_code, woz_year),
            self.building.resolve(address, postal_code),
        )

        construction_year = woz_year
        year_estimated = woz.estimated
        if construction_year is None and building is not None and building.construction_year:
            construction_year = building.construction_year
            year_estimated = building.source == "estimated"
        if construction_year is not None and year_estimated:
            estimated_fields.append("construction_year")

        if energy is None and construction_year:
            energy = self.energy.estimate(construction_year)
        if energy is not None and energy.source == "estimated":
            estimated_fields.append("energy_label")

        square_meters = woz.surface_area
        size_estimated = woz.estimated
        if square_meters is None and building is not None and building.surface_area:
            square_meters = building.surface_area
            size_estimated = building.source == "estimated"
        if square_meters is not None and size_estimated:
            estimated_fields.append("square_meters")

        record = PropertyRecord(
            address=woz.address,
            postal_code=woz.postal_code,
            city=city_for(postal_code),
            property_type=property_type_for(woz.object_type),
            assessed_value=woz.assessed_value,
            reference_year=woz.reference_year,
            construction_year=construction_year,
            square_meters=square_meters,
            energy_label=energy.energy_label if energy else None,
            coordinates=building.coordinates if building else None,
            data_source=woz.provenance,
            metadata=woz.metadata,
            estimated_fields=estimated_fields,
        )

        await self.cache.cache_property_data(key, record.to_dict())
        audit(
            logger, "property_data_retrieved",
            address=address, postal_code=postal_code,
            assessed_value=record.assessed_value, source=record.data_source,
            energy_label=record.energy_label, construction_year=record.construction_year,
            square_meters=record.square_meters,
        )
        return record

    async def calculate_valuation(self, record: PropertyRecord) -> ValuationResult:
        key = _key(record.address, record.postal_code)
        cached = await self.cache.get(key, VALUATION_PREFIX)
        if cached is not None:
            return ValuationResult.from_dict(cached)

        area = postal_area(record.postal_code)
        market_data = await self.market.get_market_data(area)
        comparables = await self.market.get_comparable_sales(area, record.property_type)
        context = MarketContext(comparable_sales=comparables, price_change=market_data.price_change)

        valuation = self.engine.compute(record, market_data.market_multiplier, context)
        valuation.market_trends = await self.market.get_market_trends(
            area, record.square_meters, valuation.estimated_value
        )

        payload = valuation.to_dict()
        await self.cache.set(key, payload, ttl=self.settings.VALUATION_TTL, prefix=VALUATION_PREFIX)
        try:
            await self.store.insert_valuation(record.address, record.postal_code, payload)
        except Exception:
            logger.warning(
                "Persisting valuation failed", exc_info=True,
                extra={"context": {"address": record.address, "postal_code": record.postal_code}},
            )

        audit(
            logger, "valuation_calculated",
            address=record.address, postal_code=record.postal_code,
            assessed_value=record.assessed_value, estimated_value=valuation.estimated_value,
            confidence=valuation.confidence_score, source=record.data_source,
        )
        return valuation

    async def value_address(self, address: str, postal_code: str) -> Tuple[PropertyRecord, ValuationResult]:
        record = await self.get_property_data(address, postal_code)
        return record, await self.calculate_valuation(record)

    async def batch_calculate_valuations(self, items: Iterable[Tuple[str, str]]) -> List[dict]:
        """Values many addresses concurrently; failed ones are left out."""
        items = list(items)
        results = await asyncio.gather(*(self.value_address(a, p) for a, p in items), return_exceptions=True)
        out = []
        for (address, postal_code), res in zip(items, results):
            if isinstance(res, BaseException):
                logger.warning(
                    "Batch valuation failed: %s", res,
                    extra={"context": {"address": address, "postal_code": postal_code}},
                )
                continue
            record, valuation = res
            out.append({"property": record.to_dict(), "valuation": valuation.to_dict()})
        return out

    async def health_check(self) -> dict:
        return await self.resolver.health_check()


def create_property_service(
    browser: BrowserSession,
    settings: Settings | None = None,
    cache: Optional[Cache] = None,
    store: Optional[WozStore] = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> PropertyService:
    """Wire the default components from settings."""
    settings = settings or default_settings
    cache = cache or Cache(settings=settings)
    store = store or create_store(settings)
    market = MarketIntelligence(cache, settings)
    return PropertyService(
        cache=cache,
        store=store,
        resolver=build_resolver(cache, store, market, browser, settings, transport),
        energy=EnergyLabelClient(cache, settings, transport),
        building=BuildingDataClient(cache, market, settings, transport),
        market=market,
        engine=ValuationEngine(get_preset(settings.VALUATION_PRESET)),
        settings=settings,
    )
