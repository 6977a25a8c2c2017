from __future__ import annotations
import redis.asyncio as redis
from .config import get_settings

_settings = get_settings()
_client: redis.Redis | None = None

def get_redis() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.from_url(_settings.redis_url, decode_responses=True)
    return _client

async def ping_redis() -> bool:
    try:
        return bool(await get_redis().ping())
    except (redis.RedisError, OSError):
        return False

def _window_key(caller: str, route_key: str) -> str:
    return f"attendance:rl:{route_key}:{caller}"

# ---- Fixed window per caller and route; the window starts at the first hit ----
async def allow_request(caller: str, route_key: str) -> bool:
    if not _settings.rl_enabled:
        return True
    pipe = get_redis().pipeline()
    key = _window_key(caller, route_key)
    pipe.incr(key)
    pipe.expire(key, _settings.rl_window_seconds, nx=True)
    hits, _ = await pipe.execute()
    return int(hits) <= _settings.rl_max_reqs

async def retry_after(caller: str, route_key: str) -> int:
    """Seconds until the caller's current window resets."""
    ttl = await get_redis().ttl(_window_key(caller, route_key))
    return max(int(ttl), 1)
