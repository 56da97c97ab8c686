"""
Shared fixtures: an in-memory store and a fake provider HTTP layer.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from connectors import encryption
from connectors.request import set_http_client
from database.session import set_redis


class _FakeScript:
    """Python rendition of the refresh check-and-set, atomic on one event loop."""

    def __init__(self, store: "InMemoryRedis"):
        self._store = store

    async def __call__(self, keys=None, args=None, client=None):
        sources_key, source_id = keys
        raw_source = self._store.hashes.get(sources_key, {}).get(source_id)
        if raw_source is None:
            return 0
        source = json.loads(raw_source)
        if source.get("status") in (None, "connected"):
            source["status"] = "refreshing"
            self._store.hashes[sources_key][source_id] = json.dumps(source)
            self._store.writes.append(("script", sources_key))
            return 0
        return 1


class InMemoryRedis:
    """The subset of ``redis.asyncio.Redis`` the store uses, with write logging."""

    def __init__(self):
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.strings: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.writes: List[Tuple[str, str]] = []
        self.closed = False

    async def hgetall(self, key: str) -> Dict[str, str]:
        return dict(self.hashes.get(key, {}))

    async def hget(self, key: str, field: str) -> Optional[str]:
        return self.hashes.get(key, {}).get(field)

    async def hset(self, key: str, field=None, value=None, mapping=None) -> int:
        items = dict(mapping or {})
        if field is not None:
            items[field] = value
        target = self.hashes.setdefault(key, {})
        added = len(set(items) - set(target))
        target.update({k: str(v) for k, v in items.items()})
        self.writes.append(("hset", key))
        return added

    async def hdel(self, key: str, *fields: str) -> int:
        target = self.hashes.get(key, {})
        removed = 0
        for field in fields:
            if target.pop(field, None) is not None:
                removed += 1
        self.writes.append(("hdel", key))
        return removed

    async def get(self, key: str) -> Optional[str]:
        return self.strings.get(key)

    async def set(self, key: str, value: Any, nx: bool = False, ex: Optional[int] = None):
        if nx and key in self.strings:
            return None
        self.strings[key] = str(value)
        if ex is not None:
            self.ttls[key] = ex
        self.writes.append(("set", key))
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.strings.pop(key, None) is not None or self.hashes.pop(key, None) is not None:
                removed += 1
        self.writes.append(("delete", ",".join(keys)))
        return removed

    async def ping(self) -> bool:
        return True

    def register_script(self, script: str) -> _FakeScript:
        return _FakeScript(self)

    async def aclose(self) -> None:
        self.closed = True

    def source_status(self, user_id: str, source_id: str) -> Optional[str]:
        raw = self.hashes.get(f"{user_id}:sources", {}).get(source_id)
        return json.loads(raw).get("status") if raw else None


@pytest.fixture(autouse=True)
def store():
    """Every test runs against a fresh in-memory store."""
    fake = InMemoryRedis()
    set_redis(fake)
    encryption.reset()
    yield fake
    set_redis(None)
    encryption.reset()


class ProviderStub:
    """Routes outbound requests to a handler and keeps them for assertions."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.handler = lambda request: httpx.Response(404, json={})

    async def _dispatch(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.handler(request)
        if not isinstance(response, httpx.Response):
            response = await response
        return response

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._dispatch)

    def paths(self) -> List[str]:
        return [request.url.path for request in self.requests]


@pytest.fixture
def provider():
    stub = ProviderStub()
    set_http_client(httpx.AsyncClient(transport=stub.transport()))
    yield stub
    set_http_client(None)
