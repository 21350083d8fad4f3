# middleware/rate_limit.py
"""
Shared slowapi limiter. Routes opt into tighter limits with
``@limiter.limit("N/minute")`` and must accept ``request: Request``.
Everything else gets RATE_LIMIT_DEFAULT through SlowAPIMiddleware.
"""
from fastapi import Request
from jose import JWTError, jwt
from slowapi import Limiter
from slowapi.util import get_remote_address

from config.settings import get_settings


def _caller_key(request: Request) -> str:
    """Per-user bucket from the token's sub claim; client IP when there is none."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        try:
            # signature is checked later by get_current_db_user
            sub = jwt.get_unverified_claims(token.strip()).get("sub")
        except JWTError:
            sub = None
        if sub:
            return f"user:{sub}"
    return get_remote_address(request)


_settings = get_settings()

limiter = Limiter(
    key_func=_caller_key,
    default_limits=[_settings.rate_limit_default],
    storage_uri=_settings.redis_url or "memory://",
    strategy="fixed-window",
)
