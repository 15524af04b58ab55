import time
from typing import Dict

from fastapi import Request

from errors import RateLimitError

# Simple in-process rate limiting (per IP per route, fixed window)
RateKey = str
_rate_store: Dict[RateKey, Dict[str, float]] = {}


def _evict_expired(now: float) -> None:
    for key in [k for k, entry in _rate_store.items() if now > entry["reset"]]:
        del _rate_store[key]


def check_rate_limit(request: Request, limit: int, window_seconds: int) -> bool:
    ip = request.client.host if request.client else "unknown"
    # key by route template so /people/{id}/photo shares one window per IP
    route = request.scope.get("route")
    path = getattr(route, "path", request.url.path)
    key = f"{ip}:{path}:{window_seconds}"
    now = time.time()
    _evict_expired(now)
    entry = _rate_store.get(key)
    if not entry or now > entry["reset"]:
        _rate_store[key] = {"count": 1, "reset": now + window_seconds}
        return True
    if entry["count"] >= limit:
        return False
    entry["count"] += 1
    return True


def reset_rate_limits() -> None:
    _rate_store.clear()


def rate_limit(limit: int, window_seconds: int, message: str = "Rate limit exceeded"):
    """Dependency rejecting with 429 once ``limit`` requests hit the window."""

    def dependency(request: Request) -> None:
        if not check_rate_limit(request, limit=limit, window_seconds=window_seconds):
            raise RateLimitError(message)

    return dependency


login_limiter = rate_limit(10, 15 * 60, "Too many login attempts from this IP, please try again later.")
change_password_limiter = rate_limit(5, 60 * 60, "Too many password change attempts from this IP, please try again later.")
upload_limiter = rate_limit(20, 60 * 60, "Too many uploads from this IP, please try again later.")
export_limiter = rate_limit(10, 60 * 60, "Too many export requests from this IP, please try again later.")
