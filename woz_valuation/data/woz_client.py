"""
Assessed-value resolution.

``WozResolver`` walks an explicit, ordered list of strategies and stops at
the first success. A strategy reports a miss with a failed
``AcquisitionResult`` or by raising; either way the resolver logs it,
counts it and moves on to the next tier. Write-backs happen once, here,
after the winning tier is known.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Sequence

import httpx

from .base import (
    AUTHORITATIVE_SOURCES, AcquisitionResult, AssessedValueRecord, AssessedValueStrategy, Source, WozStore,
)
from .browser import BrowserLookup, BrowserSession
from .estimate import IntelligentEstimate
from .market_client import MarketIntelligence
from .remote_clients import ApifyLookup, ProxyLookup, ScrapingBeeLookup
from ..core.cache import Cache
from ..core.config import Settings, settings as default_settings
from ..core.errors import ConfigurationGap, ParseFailure
from ..core.logging import audit
from ..core.metrics import SOURCE_RESULTS
from ..core.utils import normalize_address, normalize_postal_code

logger = logging.getLogger(__name__)

WOZ_PREFIX = "woz"
HEALTH_PROBE = ("Teststraat 1", "1000AA")


def woz_cache_key(address: str, postal_code: str) -> str:
    return f"{normalize_address(address)}:{normalize_postal_code(postal_code)}"


class CacheLookup:
    source = Source.CACHE

    def __init__(self, cache: Cache):
        self.cache = cache

    async def fetch(self, address: str, postal_code: str) -> AcquisitionResult:
        hit = await self.cache.get(woz_cache_key(address, postal_code), WOZ_PREFIX)
        if hit is None:
            return AcquisitionResult.fail("cache miss", self.source)
        return AcquisitionResult.ok(AssessedValueRecord.from_dict(hit), self.source, cached=True)


class StoreLookup:
    source = Source.STORE

    def __init__(self, store: WozStore, settings: Settings | None = None):
        self.store = store
        self.settings = settings or default_settings

    async def fetch(self, address: str, postal_code: str) -> AcquisitionResult:
        record = await self.store.find_woz(address, postal_code, self.settings.STORE_STALENESS_DAYS)
        if record is None:
            return AcquisitionResult.fail("no fresh stored record", self.source)
        return AcquisitionResult.ok(record, self.source, cached=True)


class WozResolver:
    def __init__(
        self,
        strategies: Sequence[AssessedValueStrategy],
        cache: Cache,
        store: WozStore,
        settings: Settings | None = None,
    ):
        self.strategies = list(strategies)
        self.cache = cache
        self.store = store
        self.settings = settings or default_settings
        self._gaps_reported: set[str] = set()

    async def resolve(self, address: str, postal_code: str) -> AcquisitionResult:
        address = normalize_address(address)
        postal_code = normalize_postal_code(postal_code)
        errors: List[str] = []

        for strategy in self.strategies:
            tier = strategy.source.value
            result = await self._attempt(strategy, address, postal_code)
            if not result.success:
                errors.append(f"{tier}: {result.error}")
                continue

            record: AssessedValueRecord = result.data
            if not record.assessed_value or record.assessed_value <= 0:
                SOURCE_RESULTS.labels(source=tier, outcome="invalid").inc()
                logger.warning(
                    "Tier returned a non-positive assessed value",
                    extra={"context": {"address": address, "postal_code": postal_code, "tier": tier}},
                )
                errors.append(f"{tier}: non-positive value")
                continue

            SOURCE_RESULTS.labels(source=tier, outcome="hit").inc()
            await self._write_back(strategy.source, record)
            audit(
                logger, "woz_value_resolved",
                address=address, postal_code=postal_code,
                assessed_value=record.assessed_value, source=tier, provenance=record.provenance,
            )
            return result

        logger.error(
            "All assessed-value tiers failed",
            extra={"context": {"address": address, "postal_code": postal_code, "errors": errors}},
        )
        return AcquisitionResult.fail("source unavailable: " + "; ".join(errors))

    async def _attempt(self, strategy: AssessedValueStrategy, address: str, postal_code: str) -> AcquisitionResult:
        tier = strategy.source.value
        ctx = {"address": address, "postal_code": postal_code, "tier": tier}
        try:
            result = await asyncio.wait_for(
                strategy.fetch(address, postal_code), timeout=self.settings.SOURCE_TIMEOUT_SECONDS
            )
        except ConfigurationGap as e:
            SOURCE_RESULTS.labels(source=tier, outcome="skipped").inc()
            if tier not in self._gaps_reported:
                self._gaps_reported.add(tier)
                logger.warning("Tier not configured, skipping", extra={"context": {**ctx, "credential": e.credential}})
            return AcquisitionResult.fail(str(e), strategy.source)
        except ParseFailure as e:
            SOURCE_RESULTS.labels(source=tier, outcome="parse_error").inc()
            logger.warning("Tier returned unparseable content", extra={"context": {**ctx, "raw_text": e.raw_text[:500]}})
            return AcquisitionResult.fail(str(e), strategy.source)
        except asyncio.TimeoutError:
            SOURCE_RESULTS.labels(source=tier, outcome="timeout").inc()
            logger.warning("Tier timed out", extra={"context": ctx})
            return AcquisitionResult.fail("timed out", strategy.source)
        except httpx.HTTPError as e:
            SOURCE_RESULTS.labels(source=tier, outcome="error").inc()
            logger.warning("Tier HTTP request failed: %s", e, extra={"context": ctx})
            return AcquisitionResult.fail(str(e) or type(e).__name__, strategy.source)
        except Exception as e:
            SOURCE_RESULTS.labels(source=tier, outcome="error").inc()
            logger.warning("Tier failed", exc_info=True, extra={"context": ctx})
            return AcquisitionResult.fail(str(e) or type(e).__name__, strategy.source)

        if not result.success:
            SOURCE_RESULTS.labels(source=tier, outcome="miss").inc()
        return result

    async def _write_back(self, source: Source, record: AssessedValueRecord) -> None:
        key = woz_cache_key(record.address, record.postal_code)
        if source == Source.CACHE:
            return
        if source in AUTHORITATIVE_SOURCES:
            try:
                await self.store.upsert_woz(record)
            except Exception:
                logger.warning(
                    "Persisting assessed value failed", exc_info=True,
                    extra={"context": {"address": record.address, "postal_code": record.postal_code}},
                )
        ttl = self.settings.ESTIMATE_TTL if record.estimated else self.settings.WOZ_TTL
        await self.cache.set(key, record.to_dict(), ttl=ttl, prefix=WOZ_PREFIX)

    async def health_check(self) -> dict:
        """Resolve a fixed probe address and report which tier answered."""
        result = await self.resolve(*HEALTH_PROBE)
        authoritative = result.success and not result.data.estimated
        return {
            "status": "operational" if authoritative else "degraded",
            "source": result.source,
            "tiers": [s.source.value for s in self.strategies],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


def build_resolver(
    cache: Cache,
    store: WozStore,
    market: MarketIntelligence,
    browser: BrowserSession,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> WozResolver:
    """Default chain: cache, store, browser, remote APIs, estimate."""
    settings = settings or default_settings
    strategies = [
        CacheLookup(cache),
        StoreLookup(store, settings),
        BrowserLookup(browser, settings),
        ScrapingBeeLookup(settings, transport),
        ApifyLookup(settings, transport),
        ProxyLookup(settings, transport),
        IntelligentEstimate(market),
    ]
    return WozResolver(strategies, cache, store, settings)
