import os
from pydantic import BaseModel

class Settings(BaseModel):
    # Basic
    ENV: str = os.getenv("ENV", "dev")
    DEFAULT_CURRENCY: str = os.getenv("CURRENCY", "EUR")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Cache
    USE_REDIS: bool = os.getenv("USE_REDIS", "false").lower() == "true"
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    LOCAL_CACHE_SIZE: int = int(os.getenv("LOCAL_CACHE_SIZE", "8192"))
    CACHE_DEFAULT_TTL: int = int(os.getenv("CACHE_DEFAULT_TTL", "3600"))

    # Per-namespace TTLs (seconds)
    WOZ_TTL: int = int(os.getenv("WOZ_TTL", "86400"))
    ESTIMATE_TTL: int = int(os.getenv("ESTIMATE_TTL", "3600"))
    PROPERTY_TTL: int = int(os.getenv("PROPERTY_TTL", "1800"))
    VALUATION_TTL: int = int(os.getenv("VALUATION_TTL", "1800"))
    ENERGY_TTL: int = int(os.getenv("ENERGY_TTL", "2592000"))      # 30 days
    BUILDING_TTL: int = int(os.getenv("BUILDING_TTL", "604800"))   # 7 days
    MARKET_TTL: int = int(os.getenv("MARKET_TTL", "21600"))        # 6 hours
    AREA_STATS_TTL: int = int(os.getenv("AREA_STATS_TTL", "86400"))
    SALES_TTL: int = int(os.getenv("SALES_TTL", "86400"))
    SESSION_TTL: int = int(os.getenv("SESSION_TTL", "3600"))
    SEARCH_TTL: int = int(os.getenv("SEARCH_TTL", "600"))

    # Persistence
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "memory")       # memory | sqlite
    STORE_PATH: str = os.getenv("STORE_PATH", "./data/woz.db")
    STORE_STALENESS_DAYS: int = int(os.getenv("STORE_STALENESS_DAYS", "30"))

    # Primary value source
    SOURCE_TIMEOUT_SECONDS: float = float(os.getenv("SOURCE_TIMEOUT_SECONDS", "20"))
    BROWSER_ENABLED: bool = os.getenv("BROWSER_ENABLED", "false").lower() == "true"
    WOZ_LOOKUP_URL: str = os.getenv("WOZ_LOOKUP_URL", "https://www.wozwaardeloket.nl")
    BROWSER_NAV_TIMEOUT_MS: int = int(os.getenv("BROWSER_NAV_TIMEOUT_MS", "15000"))
    BROWSER_WAIT_TIMEOUT_MS: int = int(os.getenv("BROWSER_WAIT_TIMEOUT_MS", "10000"))
    SCRAPINGBEE_API_KEY: str | None = os.getenv("SCRAPINGBEE_API_KEY")
    APIFY_API_TOKEN: str | None = os.getenv("APIFY_API_TOKEN")
    PROXY_ENABLED: bool = os.getenv("PROXY_ENABLED", "true").lower() == "true"
    PROXY_BASE_URL: str = os.getenv("PROXY_BASE_URL", "https://api.allorigins.win")

    # Enrichment registries
    EP_ONLINE_API_KEY: str | None = os.getenv("EP_ONLINE_API_KEY")
    EP_ONLINE_BASE_URL: str = os.getenv("EP_ONLINE_BASE_URL", "https://public.ep-online.nl/api/v4")
    BAG_API_KEY: str | None = os.getenv("BAG_API_KEY")
    BAG_BASE_URL: str = os.getenv("BAG_BASE_URL", "https://api.bag.kadaster.nl/lvbag/individuelebevragingen/v2")

    # Valuation
    VALUATION_PRESET: str = os.getenv("VALUATION_PRESET", "market")  # simple | market

    # Security
    API_KEY: str | None = os.getenv("API_KEY")
    RATE_LIMIT_RPM: int = int(os.getenv("RATE_LIMIT_RPM", "60"))

    # CORS
    ALLOW_ORIGINS: str = os.getenv("ALLOW_ORIGINS", "*")

    # Metrics
    PROMETHEUS_ENABLED: bool = os.getenv("PROMETHEUS_ENABLED", "true").lower() == "true"

settings = Settings()
