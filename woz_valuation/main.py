import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Routers
from .routers.valuation import router as valuation_router

# Core modules
from .core.cache import Cache
from .core.config import settings
from .core.logging import configure_logging, CorrelationIdMiddleware
from .core.metrics import PromMiddleware, metrics_endpoint
from .data.browser import BrowserSession
from .services.property_service import PropertyService, create_property_service

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Owns the long-lived resources: cache client, store and the browser
    session. The browser is only launched on first use but is always
    released here.
    """
    browser = BrowserSession(settings)
    service: PropertyService = getattr(app.state, "service", None) or create_property_service(browser, settings)
    app.state.service = service
    app.state.cache = service.cache
    try:
        yield
    finally:
        await browser.release()
        await service.cache.close()
        await service.store.close()
        logger.info("Shutdown complete")

def create_app(service: PropertyService | None = None) -> FastAPI:
    """
    App factory so tests and ASGI servers can instantiate cleanly.
    Pass a prebuilt service to run against fakes.
    """
    configure_logging()  # JSON logs

    app = FastAPI(
        title="WOZ Property Valuation API",
        version="1.0.0",
        description="Assessed-value acquisition with fallback tiers, enrichment, market adjustment and caching.",
        lifespan=lifespan,
    )
    if service is not None:
        app.state.service = service
        app.state.cache = service.cache

    # CORS: allow the marketing site to call the API.
    allow_origins = [o.strip() for o in settings.ALLOW_ORIGINS.split(",")] if settings.ALLOW_ORIGINS else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["ETag","X-Request-Id"],
    )

    # Observability middlewares
    app.add_middleware(CorrelationIdMiddleware)  # Adds/propagates X-Request-Id
    if settings.PROMETHEUS_ENABLED:
        app.add_middleware(PromMiddleware)       # Records req/latency metrics

    # Meta routes
    @app.get("/v1/health", tags=["meta"])
    def health():
        return {"status": "ok"}

    @app.get("/v1/ping", tags=["meta"])
    def ping():
        return {"pong": True}

    if settings.PROMETHEUS_ENABLED:
        # Standard Prometheus scrape endpoint
        app.add_route("/v1/metrics", metrics_endpoint, methods=["GET"])

    # Business routes
    app.include_router(valuation_router, prefix="/v1", tags=["valuation"])

    return app

app = create_app()
