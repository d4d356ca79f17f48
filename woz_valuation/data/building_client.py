import logging
from dataclasses import asdict
from typing import Optional

import httpx

from .base import BuildingData, Coordinates, plausible_square_meters
from .energy_client import split_house_number
from .market_client import MarketIntelligence
from .parsing import parse_dutch_address
from ..core.cache import Cache
from ..core.config import Settings, settings as default_settings
from ..core.utils import fnv1a_32, normalize_address, normalize_postal_code, postal_area, seeded_rand

logger = logging.getLogger(__name__)

BUILDING_PREFIX = "bag"


class BuildingDataClient:
    """
    BAG (basisregistratie adressen en gebouwen) lookup for construction
    year, floor area, usage and location. Falls back to the area averages
    when the registry is unconfigured or unreachable.
    """
    def __init__(
        self,
        cache: Cache,
        market: MarketIntelligence,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.cache = cache
        self.market = market
        self.settings = settings or default_settings
        self.transport = transport
        self._warned_missing_key = False

    async def resolve(self, address: str, postal_code: str) -> Optional[BuildingData]:
        postal_code = normalize_postal_code(postal_code)
        key = f"{normalize_address(address)}:{postal_code}"
        cached = await self.cache.get(key, BUILDING_PREFIX)
        if cached is not None:
            return BuildingData.from_dict(cached)

        if not self.settings.BAG_API_KEY:
            if not self._warned_missing_key:
                self._warned_missing_key = True
                logger.warning("BAG_API_KEY not configured, building data will be estimated")
            return await self.estimate(address, postal_code)

        try:
            data = await self._fetch(address, postal_code)
        except (httpx.HTTPError, ValueError, KeyError, TypeError, IndexError):
            logger.warning(
                "Building registry lookup failed, estimating", exc_info=True,
                extra={"context": {"address": address, "postal_code": postal_code, "tier": "bag"}},
            )
            return await self.estimate(address, postal_code)

        if data is None:
            return await self.estimate(address, postal_code)

        await self.cache.set(key, asdict(data), ttl=self.settings.BUILDING_TTL, prefix=BUILDING_PREFIX)
        return data

    async def _fetch(self, address: str, postal_code: str) -> Optional[BuildingData]:
        _, house_number = parse_dutch_address(address)
        number, letter = split_house_number(house_number)
        if not number:
            return None

        params = {"postcode": postal_code, "huisnummer": number}
        if letter:
            params["huisletter"] = letter
        async with httpx.AsyncClient(timeout=self.settings.SOURCE_TIMEOUT_SECONDS, transport=self.transport) as client:
            r = await client.get(
                f"{self.settings.BAG_BASE_URL.rstrip('/')}/verblijfsobjecten",
                params=params,
                headers={"X-Api-Key": self.settings.BAG_API_KEY, "Accept": "application/hal+json"},
            )
            if r.status_code == 404:
                return None
            r.raise_for_status()
            body = r.json()

        objects = (body.get("_embedded") or {}).get("verblijfsobjecten") or []
        if not objects:
            return None
        obj = objects[0]
        # Some responses wrap the object once more
        obj = obj.get("verblijfsobject", obj)

        year = obj.get("oorspronkelijkBouwjaar")
        if isinstance(year, list):
            year = year[0] if year else None
        usage = obj.get("gebruiksdoelen") or obj.get("gebruiksdoel") or ["woonfunctie"]
        if isinstance(usage, list):
            usage = usage[0] if usage else "woonfunctie"

        coords = None
        point = (obj.get("geometrie") or {}).get("coordinates")
        if point and len(point) >= 2:
            coords = Coordinates(lat=float(point[1]), lng=float(point[0]))

        surface = obj.get("oppervlakte")
        return BuildingData(
            construction_year=int(year) if year else None,
            surface_area=plausible_square_meters(float(surface)) if surface else None,
            usage_function=str(usage),
            source="bag",
            bag_id=obj.get("identificatie"),
            coordinates=coords,
        )

    async def estimate(self, address: str, postal_code: str) -> Optional[BuildingData]:
        """Area averages with a small per-address spread on the year."""
        area = postal_area(postal_code)
        if len(area) != 4 or not area.isdigit():
            return None
        stats = await self.market.get_area_stats(area)
        offset = int(seeded_rand(fnv1a_32(f"{normalize_address(address)}:{postal_code}"))[0] * 21) - 10
        return BuildingData(
            construction_year=stats.avg_year + offset,
            surface_area=float(stats.avg_size),
            usage_function="Woonfunctie",
            source="estimated",
        )
