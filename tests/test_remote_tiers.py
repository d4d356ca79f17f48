"""
Remote assessed-value tiers: ScrapingBee, Apify and the content proxy via
httpx.MockTransport, the browser tier against a fake page, and the browser
session lifecycle against a fake Playwright driver.
"""

import asyncio
import json
from contextlib import asynccontextmanager

import httpx
import pytest

from woz_valuation.core.errors import ConfigurationGap, ParseFailure
from woz_valuation.data import browser as browser_module
from woz_valuation.data.browser import BrowserLookup, BrowserSession, _block_heavy_resources, record_from_extracted
from woz_valuation.data.remote_clients import ApifyLookup, ProxyLookup, ScrapingBeeLookup, lookup_url


def test_lookup_url():
    assert lookup_url("https://www.wozwaardeloket.nl/", "Kampweg 10", "3769 dg") == \
        "https://www.wozwaardeloket.nl/woz-waarde/Kampweg%2010-3769DG"


# =============================================================================
# HTTP tiers
# =============================================================================

def test_scrapingbee_structured_fields(settings):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"extracted_data": {
            "woz_value": "€ 412.000",
            "year": "01-01-2024",
            "object_type": "Tussenwoning",
            "surface_area": "96 m²",
            "construction_year": "1975",
        }})

    cfg = settings.model_copy(update={"SCRAPINGBEE_API_KEY": "bee"})
    result = asyncio.run(
        ScrapingBeeLookup(cfg, httpx.MockTransport(handler)).fetch("Kampweg 10", "3769DG")
    )
    record = result.data
    assert result.source == "scrapingbee-api"
    assert record.assessed_value == 412_000
    assert record.reference_year == 2024
    assert record.object_type == "Tussenwoning"
    assert record.surface_area == 96.0
    assert record.metadata.construction_year == "1975"
    assert record.provenance == "scrapingbee-api"
    assert seen[0]["api_key"] == "bee"
    assert seen[0]["render_js"] is True


def test_scrapingbee_without_key_is_a_configuration_gap(settings):
    with pytest.raises(ConfigurationGap):
        asyncio.run(ScrapingBeeLookup(settings).fetch("Kampweg 10", "3769DG"))


def test_apify_reads_first_item(settings):
    def handler(request):
        assert request.headers["Authorization"] == "Bearer tok"
        return httpx.Response(200, json=[{"wozValue": "€ 389.000", "year": "2024"}])

    cfg = settings.model_copy(update={"APIFY_API_TOKEN": "tok"})
    result = asyncio.run(ApifyLookup(cfg, httpx.MockTransport(handler)).fetch("Kampweg 10", "3769DG"))
    assert result.data.assessed_value == 389_000
    assert result.source == "apify-api"


def test_proxy_parses_raw_html(settings):
    html = "<div class='woz'>WOZ-waarde: € 412.000 <small>vorig jaar € 390.000</small></div>"

    def handler(request):
        assert request.url.path == "/get"
        return httpx.Response(200, json={"contents": html})

    cfg = settings.model_copy(update={"PROXY_ENABLED": True})
    result = asyncio.run(ProxyLookup(cfg, httpx.MockTransport(handler)).fetch("Kampweg 10", "3769DG"))
    assert result.data.assessed_value == 412_000


def test_proxy_page_without_value_is_a_parse_failure(settings):
    def handler(request):
        return httpx.Response(200, json={"contents": "<p>Geen resultaten</p>"})

    cfg = settings.model_copy(update={"PROXY_ENABLED": True})
    with pytest.raises(ParseFailure) as exc:
        asyncio.run(ProxyLookup(cfg, httpx.MockTransport(handler)).fetch("Kampweg 10", "3769DG"))
    assert "Geen resultaten" in exc.value.raw_text


def test_http_errors_propagate_to_the_resolver(settings):
    def handler(request):
        return httpx.Response(503)

    cfg = settings.model_copy(update={"PROXY_ENABLED": True})
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(ProxyLookup(cfg, httpx.MockTransport(handler)).fetch("Kampweg 10", "3769DG"))


# =============================================================================
# Browser tier
# =============================================================================

EXTRACTED = {
    "valueText": "€ 412.000",
    "yearText": "01-01-2024",
    "objectType": "",
    "surfaceText": "",
    "landArea": "180 m²",
    "constructionYear": "1975",
    "usagePurpose": "woonfunctie",
    "floorArea": "120 m²",
    "wozObjectId": "034400012345",
    "addressableObjectId": "0344010000012345",
    "numberDesignationId": "0344200000012345",
    "history": [
        {"date": "01-01-2024", "value": "€ 412.000"},
        {"date": "01-01-2023", "value": "€ 389.000"},
    ],
    "pageText": "",
}


class FakePage:
    def __init__(self, fields):
        self.fields = fields
        self.actions = []

    async def goto(self, url, **kw):
        self.actions.append(("goto", url))

    async def wait_for_selector(self, selector, **kw):
        self.actions.append(("wait", selector))

    async def type(self, selector, text):
        self.actions.append(("type", text))

    async def click(self, selector):
        self.actions.append(("click", selector))

    async def evaluate(self, script):
        return self.fields


class FakeSession:
    def __init__(self, page):
        self._page = page

    @asynccontextmanager
    async def page(self):
        yield self._page


def test_browser_tier_extracts_labelled_fields(settings):
    page = FakePage(EXTRACTED)
    cfg = settings.model_copy(update={"BROWSER_ENABLED": True})
    result = asyncio.run(BrowserLookup(FakeSession(page), cfg).fetch("Kampweg 10", "3769 dg"))

    record = result.data
    assert result.source == "browser"
    assert record.assessed_value == 412_000
    assert record.reference_year == 2024
    assert record.object_type == "Woning"
    assert record.surface_area == 120.0
    assert record.metadata.land_area == "180 m²"
    assert record.metadata.number_designation_id == "0344200000012345"
    assert [h.value for h in record.metadata.value_history] == ["€ 412.000", "€ 389.000"]
    assert ("type", "Kampweg 10, 3769DG") in page.actions


def test_browser_tier_disabled_in_constrained_runtime(settings):
    page = FakePage(EXTRACTED)
    with pytest.raises(ConfigurationGap):
        asyncio.run(BrowserLookup(FakeSession(page), settings).fetch("Kampweg 10", "3769DG"))
    assert page.actions == []


def test_extracted_fields_without_value_fail_to_parse():
    with pytest.raises(ParseFailure):
        record_from_extracted("Kampweg 10", "3769DG", {"valueText": "onbekend", "pageText": ""}, "url")


def test_page_text_is_a_fallback_for_the_value():
    record = record_from_extracted(
        "Kampweg 10", "3769DG", {"valueText": "", "pageText": "De WOZ-waarde is € 298.000"}, "url"
    )
    assert record.assessed_value == 298_000


# =============================================================================
# Browser session lifecycle
# =============================================================================

class FakeRequest:
    def __init__(self, resource_type):
        self.resource_type = resource_type


class FakeRoute:
    def __init__(self, resource_type):
        self.request = FakeRequest(resource_type)
        self.outcome = None

    async def abort(self):
        self.outcome = "abort"

    async def continue_(self):
        self.outcome = "continue"


@pytest.mark.parametrize("resource_type, outcome", [
    ("image", "abort"),
    ("font", "abort"),
    ("stylesheet", "abort"),
    ("media", "abort"),
    ("document", "continue"),
    ("script", "continue"),
    ("xhr", "continue"),
])
def test_heavy_resources_are_blocked(resource_type, outcome):
    route = FakeRoute(resource_type)
    asyncio.run(_block_heavy_resources(route))
    assert route.outcome == outcome


class FakeBrowserPage:
    def __init__(self):
        self.routes = []
        self.closed = False

    async def route(self, pattern, handler):
        self.routes.append((pattern, handler))

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self):
        self.pages = []
        self.closed = False

    async def new_page(self, **kw):
        page = FakeBrowserPage()
        self.pages.append(page)
        return page

    async def close(self):
        self.closed = True


class FakeChromium:
    def __init__(self):
        self.launches = []

    async def launch(self, **kw):
        self.launches.append(kw)
        return FakeBrowser()


class FakePlaywright:
    def __init__(self):
        self.chromium = FakeChromium()
        self.stopped = False

    async def stop(self):
        self.stopped = True


class FakePlaywrightManager:
    def __init__(self):
        self.instance = FakePlaywright()
        self.starts = 0

    async def start(self):
        self.starts += 1
        return self.instance


@pytest.fixture
def fake_playwright(monkeypatch):
    manager = FakePlaywrightManager()
    monkeypatch.setattr(browser_module, "async_playwright", lambda: manager)
    return manager


def test_session_launches_once_and_closes_pages(fake_playwright, settings):
    session = BrowserSession(settings)

    async def run():
        async with session.page() as first:
            pass
        async with session.page() as second:
            pass
        return first, second

    assert not session.started
    first, second = asyncio.run(run())

    assert session.started
    assert fake_playwright.starts == 1
    assert len(fake_playwright.instance.chromium.launches) == 1
    assert fake_playwright.instance.chromium.launches[0]["headless"] is True
    assert first is not second
    assert first.closed and second.closed
    assert first.routes[0] == ("**/*", _block_heavy_resources)


def test_release_closes_browser_and_stops_playwright(fake_playwright, settings):
    session = BrowserSession(settings)

    async def run():
        browser = await session.acquire()
        await session.release()
        await session.release()
        return browser

    browser = asyncio.run(run())
    assert browser.closed
    assert fake_playwright.instance.stopped
    assert not session.started


def test_pages_are_handed_out_one_at_a_time(fake_playwright, settings):
    session = BrowserSession(settings)
    events = []

    async def use(name):
        async with session.page():
            events.append(f"{name}:open")
            await asyncio.sleep(0.01)
            events.append(f"{name}:close")

    async def run():
        await asyncio.gather(use("a"), use("b"))
        await session.release()

    asyncio.run(run())
    assert events in (
        ["a:open", "a:close", "b:open", "b:close"],
        ["b:open", "b:close", "a:open", "a:close"],
    )
