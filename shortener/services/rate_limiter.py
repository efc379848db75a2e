from fastapi import Request, HTTPException
from typing import Optional
from ..observability import RATE_LIMITED_TOTAL
from ..utils import client_ip
import time

class RateLimiter:
    """
    Fixed-window limit per client IP, shared by every route that uses it.

    Limits default to the app's settings. Without Redis every request is
    allowed.
    """

    def __init__(self, requests: Optional[int] = None, window: Optional[int] = None, scope: str = "global"):
        self.requests = requests
        self.window = window
        self.scope = scope

    async def __call__(self, request: Request):
        settings = request.app.state.settings
        redis_client = getattr(request.app.state, "redis", None)
        if redis_client is None:
            return

        await check_rate_limit(
            redis_client,
            client_ip(request, settings.TRUSTED_PROXY_HOPS) or "unknown",
            self.requests or settings.RATE_LIMIT_REQUESTS,
            self.window or settings.RATE_LIMIT_WINDOW_SECONDS,
            self.scope,
        )

async def check_rate_limit(redis_client, client_id: str, limit: int, window: int, key_prefix: str):
    current_window = int(time.time() / window)
    redis_key = f"rate:{key_prefix}:{client_id}:{current_window}"

    count = await redis_client.incr_window(redis_key, window)
    if count is not None and count > limit:
        RATE_LIMITED_TOTAL.inc()
        raise HTTPException(
            status_code=429,
            detail="Too many requests, please try again later",
            headers={"Retry-After": str(window)},
        )
