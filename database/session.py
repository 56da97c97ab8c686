"""
Async Redis client for the user / source store.

One client per process, created lazily and closed on shutdown.  The
refresh check-and-set runs server-side as a Lua script so two workers can
never both observe a ``connected`` source and start refreshing it.
"""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as redis

from config.settings import config

logger = logging.getLogger(__name__)

# Checks if a source's token can be refreshed.
#   KEYS[1]: the user's sources hash, KEYS[2]: the source id
#   returns 0 when the caller may refresh (status is now "refreshing"),
#   1 when another worker is already refreshing.
#   A source missing from the hash is one being linked and not saved yet:
#   no other worker can see it, so the caller may refresh (0) and nothing
#   is written.
SHOULD_REFRESH_LUA_SCRIPT = """
local raw_source = redis.call("hget", KEYS[1], KEYS[2])
if not raw_source then
    return 0
end
local json_source = cjson.decode(raw_source)
local source_status = json_source["status"]
if source_status == nil or source_status == "connected" then
    json_source["status"] = "refreshing"
    redis.call("hset", KEYS[1], KEYS[2], cjson.encode(json_source))
    return 0
else
    return 1
end
"""

_client: Optional[redis.Redis] = None
_should_refresh_script = None


def get_redis() -> redis.Redis:
    """Return the shared client, connecting on first use."""
    global _client
    if _client is None:
        _client = redis.from_url(config.redis_url, decode_responses=True)
        logger.info("Redis client created for %s", config.redis_url.rsplit("@", 1)[-1])
    return _client


def set_redis(client: Optional[redis.Redis]) -> None:
    """Swap the shared client (tests inject an in-memory double)."""
    global _client, _should_refresh_script
    _client = client
    _should_refresh_script = None


def get_should_refresh_script():
    global _should_refresh_script
    if _should_refresh_script is None:
        _should_refresh_script = get_redis().register_script(SHOULD_REFRESH_LUA_SCRIPT)
    return _should_refresh_script


async def ping() -> bool:
    try:
        return bool(await get_redis().ping())
    except redis.RedisError as exc:
        logger.error("Redis ping failed: %s", exc)
        return False


async def close_redis() -> None:
    global _client, _should_refresh_script
    if _client is not None:
        await _client.aclose()
        logger.info("Redis client closed")
    _client = None
    _should_refresh_script = None
