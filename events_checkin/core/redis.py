from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
import redis.asyncio as redis
from .config import get_settings

_settings = get_settings()
_r: redis.Redis | None = None

DAY_SECONDS = 86400

def get_redis() -> redis.Redis:
    global _r
    if _r is None:
        _r = redis.from_url(_settings.redis_url, decode_responses=True)
    return _r

async def ping_redis() -> bool:
    pong = await get_redis().ping()
    return bool(pong)

async def close_redis() -> None:
    global _r
    if _r is not None:
        await _r.aclose()
        _r = None

@dataclass(frozen=True)
class QuotaStatus:
    allowed: bool
    current_count: int
    limit_per_day: int

# ---- Per-user daily quota (create_event / register / qr_fetch) ----
async def check_and_increment_quota(user_id: str, action: str) -> QuotaStatus:
    """
    Count one use of `action` for `user_id` in the current UTC day.
    The counter is incremented even when the limit is exceeded, so a client
    hammering past its quota stays blocked until the day rolls over.
    """
    limit = _settings.daily_quota(action)
    if not _settings.quota_enabled:
        return QuotaStatus(allowed=True, current_count=0, limit_per_day=limit)
    day = datetime.now(timezone.utc).strftime("%Y%m%d")
    key = f"quota:{action}:{user_id}:{day}"
    pipe = get_redis().pipeline()
    pipe.incr(key)
    pipe.expire(key, DAY_SECONDS, nx=True)
    count, _ = await pipe.execute()
    return QuotaStatus(allowed=int(count) <= limit, current_count=int(count), limit_per_day=limit)

# ---- Simple fixed-window rate limit per IP/route ----
async def allow_request(ip: str, route_key: str) -> bool:
    if not _settings.rl_enabled:
        return True
    key = f"rl:{route_key}:{ip}"
    pipe = get_redis().pipeline()
    pipe.incr(key)
    pipe.expire(key, _settings.rl_window_seconds, nx=True)
    count, _ = await pipe.execute()
    return int(count) <= _settings.rl_max_reqs
