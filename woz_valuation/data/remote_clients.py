import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

import httpx

from .base import AcquisitionResult, AssessedValueRecord, Source, WozMetadata, plausible_square_meters
from .parsing import parse_assessed_value, parse_surface_area, parse_year
from ..core.config import Settings, settings as default_settings
from ..core.errors import ConfigurationGap, ParseFailure, SourceUnavailable
from ..core.utils import normalize_postal_code

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

SCRAPINGBEE_URL = "https://app.scrapingbee.com/api/v1/"
APIFY_URL = "https://api.apify.com/v2/acts/apify~web-scraper/run-sync-get-dataset-items"

EXTRACT_RULES = {
    "woz_value": ".woz-table .waarden-row:first-child .wozwaarde-waarde, .woz-waarde .bedrag, .result-value",
    "year": ".woz-table .waarden-row:first-child .wozwaarde-datum, .peildatum",
    "object_type": ".objecttype, .object-type",
    "surface_area": "#kenmerk-oppervlakte, .oppervlakte",
    "construction_year": "#kenmerk-bouwjaar",
}

APIFY_PAGE_FUNCTION = """
async function pageFunction(context) {
  const { page } = context;
  await page.waitForTimeout(3000);
  const text = (sel) => page.$eval(sel, el => el.textContent).catch(() => null);
  return {
    wozValue: await text('.woz-waarde .bedrag, .woz-result .waarde, .result-value'),
    year: await text('.woz-datum, .peildatum'),
    objectType: await text('.objecttype, .object-type'),
    surfaceArea: await text('.oppervlakte, .surface-area'),
    url: page.url()
  };
}
"""


def lookup_url(base_url: str, address: str, postal_code: str) -> str:
    return f"{base_url.rstrip('/')}/woz-waarde/{quote(address)}-{normalize_postal_code(postal_code)}"


def build_record(
    address: str,
    postal_code: str,
    value_text: Optional[str],
    source: Source,
    source_url: str,
    year_text: Optional[str] = None,
    object_type: Optional[str] = None,
    surface_text: Optional[str] = None,
    construction_year: Optional[str] = None,
) -> AssessedValueRecord:
    """
    Normalize loosely typed extracted fields into the canonical record.
    Raises ParseFailure when no plausible value is present.
    """
    value = parse_assessed_value(value_text or "")
    if value is None:
        raise ParseFailure(source.value, value_text or "")
    return AssessedValueRecord(
        address=address,
        postal_code=normalize_postal_code(postal_code),
        assessed_value=value,
        reference_year=parse_year(year_text) or datetime.now(timezone.utc).year - 1,
        object_type=(object_type or "").strip() or "Woning",
        surface_area=plausible_square_meters(parse_surface_area(surface_text)),
        source_url=source_url,
        provenance=source.value,
        metadata=WozMetadata(
            construction_year=(construction_year or "").strip() or None,
            floor_area=(surface_text or "").strip() or None,
        ),
    )


class _HttpStrategy:
    source: Source

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings or default_settings
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.SOURCE_TIMEOUT_SECONDS,
            transport=self.transport,
            headers={"User-Agent": USER_AGENT},
        )


class ScrapingBeeLookup(_HttpStrategy):
    """Rendered page + CSS extract rules through ScrapingBee."""
    source = Source.SCRAPINGBEE

    async def fetch(self, address: str, postal_code: str) -> AcquisitionResult:
        api_key = self.settings.SCRAPINGBEE_API_KEY
        if not api_key:
            raise ConfigurationGap(self.source.value, "SCRAPINGBEE_API_KEY")

        async with self._client() as client:
            r = await client.post(SCRAPINGBEE_URL, json={
                "api_key": api_key,
                "url": lookup_url(self.settings.WOZ_LOOKUP_URL, address, postal_code),
                "render_js": True,
                "wait": 5000,
                "extract_rules": EXTRACT_RULES,
            })
            r.raise_for_status()
            extracted = (r.json() or {}).get("extracted_data") or {}

        if not extracted.get("woz_value"):
            raise SourceUnavailable(self.source.value, "no extracted value in response")
        record = build_record(
            address, postal_code, extracted.get("woz_value"), self.source,
            "ScrapingBee via wozwaardeloket.nl",
            year_text=extracted.get("year"),
            object_type=extracted.get("object_type"),
            surface_text=extracted.get("surface_area"),
            construction_year=extracted.get("construction_year"),
        )
        return AcquisitionResult.ok(record, self.source)


class ApifyLookup(_HttpStrategy):
    """Synchronous Apify web-scraper run returning dataset items."""
    source = Source.APIFY

    async def fetch(self, address: str, postal_code: str) -> AcquisitionResult:
        token = self.settings.APIFY_API_TOKEN
        if not token:
            raise ConfigurationGap(self.source.value, "APIFY_API_TOKEN")

        async with self._client() as client:
            r = await client.post(
                APIFY_URL,
                headers={"Authorization": f"Bearer {token}"},
                json={
                    "startUrls": [{"url": lookup_url(self.settings.WOZ_LOOKUP_URL, address, postal_code)}],
                    "pageFunction": APIFY_PAGE_FUNCTION,
                },
            )
            r.raise_for_status()
            items = r.json()

        item = items[0] if isinstance(items, list) and items else {}
        if not item.get("wozValue"):
            raise SourceUnavailable(self.source.value, "no dataset item with a value")
        record = build_record(
            address, postal_code, item.get("wozValue"), self.source,
            "Apify via wozwaardeloket.nl",
            year_text=item.get("year"),
            object_type=item.get("objectType"),
            surface_text=item.get("surfaceArea"),
        )
        return AcquisitionResult.ok(record, self.source)


class ProxyLookup(_HttpStrategy):
    """Raw page through a content proxy, parsed with the text rules."""
    source = Source.PROXY

    async def fetch(self, address: str, postal_code: str) -> AcquisitionResult:
        if not self.settings.PROXY_ENABLED:
            raise ConfigurationGap(self.source.value, "PROXY_ENABLED")

        target = lookup_url(self.settings.WOZ_LOOKUP_URL, address, postal_code)
        async with self._client() as client:
            r = await client.get(f"{self.settings.PROXY_BASE_URL.rstrip('/')}/get", params={"url": target})
            r.raise_for_status()
            html = (r.json() or {}).get("contents") or ""

        if not html:
            raise SourceUnavailable(self.source.value, "empty proxy response")
        record = build_record(address, postal_code, html, self.source, "Proxy API via wozwaardeloket.nl")
        return AcquisitionResult.ok(record, self.source)
