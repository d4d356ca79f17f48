from fastapi import Header, HTTPException, Request
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_429_TOO_MANY_REQUESTS

from .config import settings

RATE_LIMIT_WINDOW = 60

def require_api_key(x_api_key: str | None = Header(default=None, alias="x-api-key")):
    """
    Simple header-based API key check.
    In prod, you could swap to OAuth or JWT validation dependency.
    """
    if not settings.API_KEY:
        # If unset, we allow requests (dev convenience).
        return
    if x_api_key != settings.API_KEY:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Invalid API key")

async def rate_limit(request: Request):
    """
    Per-client RPM limiter on the shared cache tier.
    Keyed by API key (if present) or client IP. Fails open if the cache is down.
    """
    rpm = max(1, settings.RATE_LIMIT_RPM)
    client_ip = request.client.host if request.client else "unknown"
    api_key = request.headers.get("x-api-key") or "anon"
    cache = request.app.state.cache
    check = await cache.rate_limit_check(f"{api_key}:{client_ip}", rpm, RATE_LIMIT_WINDOW)
    if not check["allowed"]:
        raise HTTPException(
            status_code=HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded",
            headers={"Retry-After": str(RATE_LIMIT_WINDOW)},
        )
