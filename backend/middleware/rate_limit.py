"""SlowAPI limits for the endpoints that fan out to provider APIs."""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

# A full refresh calls every provider once per tracked account
REFRESH_RATE_LIMIT = "6/minute"
SINGLE_REFRESH_RATE_LIMIT = "30/minute"


def client_key(request: Request) -> str:
    """First X-Forwarded-For hop when behind a proxy, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(key_func=client_key)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """429 with the violated limit, so clients know when to retry a refresh."""
    return JSONResponse(
        status_code=429,
        content={
            "detail": f"Too many refresh requests for {request.url.path}. Please try again later.",
            "limit": exc.detail,
        },
    )
