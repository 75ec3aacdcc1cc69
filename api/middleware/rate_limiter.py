"""
Rate Limiting Middleware
========================

IP-based rate limiting with slowapi. The processing endpoints each start a
billable cloud speech job or an LLM call, so they are limited to
``Settings.rate_limit`` per client address.
"""

from fastapi import FastAPI
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from config import get_settings


# Create limiter instance with IP-based rate limiting
limiter = Limiter(key_func=get_remote_address)

# Limit string for processing routes, e.g. "20/minute"
PROCESSING_RATE_LIMIT = get_settings().rate_limit


def setup_rate_limiting(app: FastAPI) -> None:
    """
    Attach the limiter to the app and register the 429 handler.

    Usage in routes:
        from api.middleware.rate_limiter import limiter, PROCESSING_RATE_LIMIT

        @router.post("/process")
        @limiter.limit(PROCESSING_RATE_LIMIT)
        async def process(request: Request, ...):
            ...
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
