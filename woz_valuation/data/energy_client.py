import logging
import re
from dataclasses import asdict
from typing import Optional

import httpx

from .base import EnergyLabelData
from .parsing import parse_dutch_address
from ..core.cache import Cache
from ..core.config import Settings, settings as default_settings
from ..core.utils import normalize_address, normalize_postal_code

logger = logging.getLogger(__name__)

ENERGY_PREFIX = "energy"

ENERGY_INDEX = {
    "A+++": 50, "A++": 75, "A+": 100, "A": 125,
    "B": 150, "C": 175, "D": 200, "E": 250, "F": 300, "G": 350,
}

# Lower bound of construction year -> estimated grade, newest first
YEAR_TO_LABEL = [
    (2015, "A"),
    (2010, "B"),
    (2000, "C"),
    (1990, "D"),
    (1980, "E"),
    (1970, "F"),
]


def label_for_year(construction_year: int) -> str:
    for min_year, label in YEAR_TO_LABEL:
        if construction_year >= min_year:
            return label
    return "G"


def split_house_number(house_number: str) -> tuple[str, str]:
    """'10a' -> ('10', 'A')"""
    m = re.match(r"(\d+)\s*([A-Za-z]?)", house_number or "")
    if not m:
        return "", ""
    return m.group(1), m.group(2).upper()


class EnergyLabelClient:
    """
    EP-Online lookup keyed by postal code + house number, with a
    construction-year heuristic when the registry is unconfigured, has no
    label on file, or fails.
    """
    def __init__(
        self,
        cache: Cache,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.cache = cache
        self.settings = settings or default_settings
        self.transport = transport
        self._warned_missing_key = False

    async def resolve(
        self, address: str, postal_code: str, construction_year: Optional[int] = None
    ) -> Optional[EnergyLabelData]:
        postal_code = normalize_postal_code(postal_code)
        key = f"{normalize_address(address)}:{postal_code}"
        cached = await self.cache.get(key, ENERGY_PREFIX)
        if cached is not None:
            return EnergyLabelData(**cached)

        if not self.settings.EP_ONLINE_API_KEY:
            if not self._warned_missing_key:
                self._warned_missing_key = True
                logger.warning("EP_ONLINE_API_KEY not configured, energy labels will be estimated")
            return self.estimate(construction_year)

        try:
            label = await self._fetch(address, postal_code)
        except (httpx.HTTPError, ValueError, KeyError, TypeError):
            logger.warning(
                "Energy label lookup failed, estimating", exc_info=True,
                extra={"context": {"address": address, "postal_code": postal_code, "tier": "ep-online"}},
            )
            return self.estimate(construction_year)

        if label is None:
            logger.info(
                "No energy label registered",
                extra={"context": {"address": address, "postal_code": postal_code}},
            )
            return self.estimate(construction_year)

        await self.cache.set(key, asdict(label), ttl=self.settings.ENERGY_TTL, prefix=ENERGY_PREFIX)
        return label

    async def _fetch(self, address: str, postal_code: str) -> Optional[EnergyLabelData]:
        _, house_number = parse_dutch_address(address)
        number, letter = split_house_number(house_number)
        if not number:
            return None

        params = {"postcode": postal_code, "huisnummer": number}
        if letter:
            params["huisletter"] = letter
        async with httpx.AsyncClient(timeout=self.settings.SOURCE_TIMEOUT_SECONDS, transport=self.transport) as client:
            r = await client.get(
                f"{self.settings.EP_ONLINE_BASE_URL.rstrip('/')}/PandEnergielabel/Adres",
                params=params,
                headers={"Authorization": self.settings.EP_ONLINE_API_KEY, "Accept": "application/json"},
            )
            if r.status_code == 404:
                return None
            r.raise_for_status()
            data = r.json()

        item = data[0] if isinstance(data, list) and data else None
        grade = (item or {}).get("Energieklasse")
        if grade not in ENERGY_INDEX:
            return None
        return EnergyLabelData(
            energy_label=grade,
            energy_index=int(item.get("EnergieIndex") or ENERGY_INDEX[grade]),
            source="ep-online",
            registration_date=item.get("Registratiedatum") or "",
            valid_until=item.get("Geldig_tot") or "",
            building_type=item.get("Gebouwtype") or "Woning",
        )

    def estimate(self, construction_year: Optional[int]) -> Optional[EnergyLabelData]:
        """Heuristic grade from the construction year; None without a year."""
        if not construction_year:
            return None
        grade = label_for_year(construction_year)
        return EnergyLabelData(energy_label=grade, energy_index=ENERGY_INDEX[grade], source="estimated")
