"""
Headless-browser tier for the assessed-value register.

``BrowserSession`` is the one long-lived exclusive resource in the process:
it launches Chromium lazily on first use, is shared by every request, and
hands out one page at a time. The app lifespan owns it and calls
``release()`` on shutdown.
"""
import asyncio
import logging
from datetime import date
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from playwright.async_api import async_playwright, Browser, Page, Playwright, Route

from .base import AcquisitionResult, AssessedValueRecord, Source, ValueHistoryEntry, WozMetadata, plausible_square_meters
from .parsing import parse_assessed_value, parse_surface_area, parse_year
from ..core.config import Settings, settings as default_settings
from ..core.errors import ConfigurationGap, ParseFailure, SourceUnavailable
from ..core.utils import normalize_postal_code

logger = logging.getLogger(__name__)

BLOCKED_RESOURCES = {"image", "font", "stylesheet", "media"}

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--no-zygote",
]

SEARCH_INPUT = "#ggcSearchInput"
SUGGESTION_LIST = "#ggcSuggestionList"
SUGGESTION_ITEM = f"{SUGGESTION_LIST} .list-group-item, {SUGGESTION_LIST} [role='option']"
RESULTS_PANEL = ".sidebar-block.sidebar-block--open"

# Runs in the page; returns plain strings only.
EXTRACT_SCRIPT = """
() => {
  const text = (sel) => (document.querySelector(sel)?.textContent || '').trim();
  const rows = Array.from(document.querySelectorAll('.woz-table .waarden-row')).map(row => ({
    date: (row.querySelector('.wozwaarde-datum')?.textContent || '').trim(),
    value: (row.querySelector('.wozwaarde-waarde')?.textContent || '').trim(),
  }));
  let valueText = text('.woz-table .waarden-row:first-child .wozwaarde-waarde');
  if (!valueText) {
    for (const sel of ['.woz-waarde .bedrag', '.woz-waarde', '.woz-result .waarde', '.result-value', '.waarde-bedrag']) {
      valueText = text(sel);
      if (valueText) break;
    }
  }
  return {
    valueText,
    yearText: text('.woz-table .waarden-row:first-child .wozwaarde-datum'),
    objectType: text('.objecttype, .object-type, .property-type'),
    surfaceText: text('.oppervlakte, .surface-area'),
    landArea: text('#kenmerk-grondoppervlakte'),
    constructionYear: text('#kenmerk-bouwjaar'),
    usagePurpose: text('#kenmerk-gebruiksdoel'),
    floorArea: text('#kenmerk-oppervlakte'),
    wozObjectId: text('#kenmerk-wozobjectnummer'),
    addressableObjectId: text('#link-adresseerbaarobjectid'),
    numberDesignationId: text('#link-nummeraanduidingid'),
    history: rows,
    pageText: document.body ? document.body.innerText : '',
  };
}
"""


async def _block_heavy_resources(route: Route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCES:
        await route.abort()
    else:
        await route.continue_()


class BrowserSession:
    """Lazily started, explicitly released Chromium handle."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or default_settings
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._start_lock = asyncio.Lock()
        self._page_lock = asyncio.Lock()

    @property
    def started(self) -> bool:
        return self._browser is not None

    async def acquire(self) -> Browser:
        async with self._start_lock:
            if self._browser is None:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=True, args=LAUNCH_ARGS)
                logger.info("Browser session started")
            return self._browser

    async def release(self) -> None:
        async with self._start_lock:
            if self._browser is not None:
                await self._browser.close()
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
                logger.info("Browser session released")

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Page]:
        """One page at a time; concurrent lookups queue on the lock."""
        browser = await self.acquire()
        async with self._page_lock:
            page = await browser.new_page(user_agent=(
                "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
            ), viewport={"width": 1280, "height": 720})
            try:
                await page.route("**/*", _block_heavy_resources)
                yield page
            finally:
                await page.close()


def record_from_extracted(address: str, postal_code: str, fields: dict, source_url: str) -> AssessedValueRecord:
    value = parse_assessed_value(fields.get("valueText") or "")
    if value is None:
        value = parse_assessed_value(fields.get("pageText") or "")
    if value is None:
        raise ParseFailure(Source.BROWSER.value, fields.get("valueText") or "")

    surface = parse_surface_area(fields.get("floorArea")) or parse_surface_area(fields.get("surfaceText"))
    history = [
        ValueHistoryEntry(date=row.get("date", ""), value=row.get("value", ""))
        for row in fields.get("history") or []
    ]
    return AssessedValueRecord(
        address=address,
        postal_code=normalize_postal_code(postal_code),
        assessed_value=value,
        reference_year=parse_year(fields.get("yearText")) or _default_reference_year(),
        object_type=fields.get("objectType") or "Woning",
        surface_area=plausible_square_meters(surface),
        source_url=source_url,
        provenance=Source.BROWSER.value,
        metadata=WozMetadata(
            land_area=fields.get("landArea") or None,
            construction_year=fields.get("constructionYear") or None,
            usage_purpose=fields.get("usagePurpose") or None,
            floor_area=fields.get("floorArea") or None,
            woz_object_id=fields.get("wozObjectId") or None,
            addressable_object_id=fields.get("addressableObjectId") or None,
            number_designation_id=fields.get("numberDesignationId") or None,
            value_history=history,
        ),
    )


def _default_reference_year() -> int:
    return date.today().year - 1


class BrowserLookup:
    """Type the address into the register's search box and read the result panel."""
    source = Source.BROWSER

    def __init__(self, session: BrowserSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or default_settings

    async def fetch(self, address: str, postal_code: str) -> AcquisitionResult:
        if not self.settings.BROWSER_ENABLED:
            raise ConfigurationGap(self.source.value, "BROWSER_ENABLED")

        nav_timeout = self.settings.BROWSER_NAV_TIMEOUT_MS
        wait_timeout = self.settings.BROWSER_WAIT_TIMEOUT_MS
        async with self.session.page() as page:
            await page.goto(self.settings.WOZ_LOOKUP_URL, wait_until="domcontentloaded", timeout=nav_timeout)
            await page.wait_for_selector(SEARCH_INPUT, timeout=wait_timeout)
            await page.type(SEARCH_INPUT, f"{address}, {normalize_postal_code(postal_code)}")
            await page.wait_for_selector(SUGGESTION_ITEM, state="visible", timeout=wait_timeout)
            await page.click(SUGGESTION_ITEM)
            await page.wait_for_selector(RESULTS_PANEL, timeout=wait_timeout * 2)
            fields = await page.evaluate(EXTRACT_SCRIPT)

        if not isinstance(fields, dict):
            raise SourceUnavailable(self.source.value, "unexpected extraction result")
        record = record_from_extracted(address, postal_code, fields, self.settings.WOZ_LOOKUP_URL)
        return AcquisitionResult.ok(record, self.source)
