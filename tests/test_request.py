"""
Tests for the provider request engine: retries, backoff, refresh, disconnect.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from connectors.base import ProviderSpec, merge_options
from connectors.request import RequestContext, backoff_delay_ms, decode_body, execute
from connectors.token_manager import exchange_refresh_token
from database.models import Source, SourceStatus
from database.users import User
from utils.errors import DisconnectedSource, ProviderHTTPError

USER_ID = "acme-42"
SOURCE_ID = "acme-42"
TOKEN_URL = "https://auth.acme.test/token"


def _build_options(access_token, overrides):
    return merge_options({"headers": {"Authorization": f"Bearer {access_token}"}}, overrides)


async def _refresh(ctx, source):
    await exchange_refresh_token(
        ctx, source, TOKEN_URL,
        data={"grant_type": "refresh_token", "refresh_token": source.refresh_token},
    )


def _spec(refresh=False, max_attempts=3):
    return ProviderSpec(
        name="acme",
        base_url="https://api.acme.test/",
        timeout=1.0,
        build_request_options=_build_options,
        refresh_token=_refresh if refresh else None,
        backoff_delay_ms=100,
        max_attempts=max_attempts,
    )


async def _context(access_token="old-token") -> RequestContext:
    user = User.new(USER_ID, display_name="Ann")
    user.set_source(Source.create(SOURCE_ID, access_token, refresh_token="refresh-1"))
    await user.save()
    return RequestContext(user=await User.load(USER_ID))


def _bearer(request):
    return request.headers.get("Authorization", "").replace("Bearer ", "")


class TestBackoff:
    def test_fibonacci_delays(self):
        assert [backoff_delay_ms(n, 1000) for n in range(1, 6)] == [1000, 1000, 2000, 3000, 5000]

    def test_uses_provider_delay(self):
        assert backoff_delay_ms(4, 250) == 750


class TestDecodeBody:
    def test_json(self):
        response = httpx.Response(200, json={"a": 1})
        assert decode_body(response) == {"a": 1}

    def test_text(self):
        response = httpx.Response(401, text="invalid token")
        assert decode_body(response) == "invalid token"

    def test_no_content(self):
        assert decode_body(httpx.Response(204)) is None


class TestExecute:
    @pytest.mark.asyncio
    async def test_success_injects_token_and_counts(self, provider):
        provider.handler = lambda request: httpx.Response(200, json={"ok": _bearer(request)})
        ctx = await _context()

        body = await execute(ctx, _spec(), SOURCE_ID, "things", {"params": {"q": "x"}})

        assert body == {"ok": "old-token"}
        assert ctx.nb_reqs_out == 1
        assert provider.requests[0].url.params["q"] == "x"

    @pytest.mark.asyncio
    async def test_timeouts_exhaust_budget(self, provider):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        provider.handler = handler
        ctx = await _context()

        with patch("connectors.request.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(httpx.ReadTimeout):
                await execute(ctx, _spec(max_attempts=3), SOURCE_ID, "things")

        assert len(provider.requests) == 3
        assert [call.args[0] for call in sleep.await_args_list] == [0.1, 0.1]

    @pytest.mark.asyncio
    async def test_observed_backoff_follows_fibonacci(self, provider, store):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        provider.handler = handler
        ctx = await _context()

        with patch("connectors.request.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(httpx.ConnectTimeout):
                await execute(ctx, _spec(max_attempts=6), SOURCE_ID, "things")

        assert len(provider.requests) == 6
        assert [call.args[0] for call in sleep.await_args_list] == [0.1, 0.1, 0.2, 0.3, 0.5]
        # a timeout is never a reason to disconnect
        assert store.source_status(USER_ID, SOURCE_ID) == "connected"

    @pytest.mark.asyncio
    async def test_unclassified_error_is_not_retried(self, provider):
        provider.handler = lambda request: httpx.Response(500, json={"error": "boom"})
        ctx = await _context()

        with pytest.raises(ProviderHTTPError) as excinfo:
            await execute(ctx, _spec(refresh=True), SOURCE_ID, "things")

        assert excinfo.value.status_code == 500
        assert excinfo.value.body == {"error": "boom"}
        assert len(provider.requests) == 1

    @pytest.mark.asyncio
    async def test_invalid_creds_without_refresh_disconnects(self, provider, store):
        provider.handler = lambda request: httpx.Response(401, json={})
        ctx = await _context()

        with pytest.raises(DisconnectedSource) as excinfo:
            await execute(ctx, _spec(), SOURCE_ID, "things")

        assert excinfo.value.params == {"source_id": SOURCE_ID}
        assert isinstance(excinfo.value.__cause__, ProviderHTTPError)
        assert len(provider.requests) == 1
        assert ctx.user.get_source(SOURCE_ID).status == SourceStatus.DISCONNECTED
        assert store.source_status(USER_ID, SOURCE_ID) == "disconnected"


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refreshes_then_retries(self, provider, store):
        def handler(request):
            if request.url.host == "auth.acme.test":
                return httpx.Response(200, json={"access_token": "fresh-token"})
            if _bearer(request) == "fresh-token":
                return httpx.Response(200, json={"ok": True})
            return httpx.Response(401, json={})

        provider.handler = handler
        ctx = await _context()

        body = await execute(ctx, _spec(refresh=True), SOURCE_ID, "things")

        assert body == {"ok": True}
        assert ctx.nb_reqs_out == 3
        stored = (await User.load(USER_ID)).get_source(SOURCE_ID)
        assert stored.access_token == "fresh-token"
        assert stored.refresh_token == "refresh-1"
        assert stored.status == SourceStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_refresh_failure_resets_status(self, provider, store):
        def handler(request):
            if request.url.host == "auth.acme.test":
                return httpx.Response(503, json={"error": "unavailable"})
            return httpx.Response(401, json={})

        provider.handler = handler
        ctx = await _context()

        with pytest.raises(ProviderHTTPError) as excinfo:
            await execute(ctx, _spec(refresh=True), SOURCE_ID, "things")

        # the triggering 401, chained to the token endpoint failure
        assert excinfo.value.url == "https://api.acme.test/things"
        assert excinfo.value.status_code == 401
        assert isinstance(excinfo.value.__cause__, ProviderHTTPError)
        assert excinfo.value.__cause__.url == TOKEN_URL
        assert excinfo.value.__cause__.status_code == 503
        assert store.source_status(USER_ID, SOURCE_ID) == "connected"
        assert ctx.user.get_source(SOURCE_ID).status == SourceStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_refresh_failure_allows_a_later_refresh(self, provider, store):
        responses = iter([503, 200])

        def handler(request):
            if request.url.host == "auth.acme.test":
                status = next(responses)
                return httpx.Response(status, json={"access_token": "fresh-token"} if status == 200 else {})
            if _bearer(request) == "fresh-token":
                return httpx.Response(200, json={"ok": True})
            return httpx.Response(401, json={})

        provider.handler = handler
        ctx = await _context()

        with pytest.raises(ProviderHTTPError):
            await execute(ctx, _spec(refresh=True), SOURCE_ID, "things")

        assert await execute(ctx, _spec(refresh=True), SOURCE_ID, "things") == {"ok": True}

    @pytest.mark.asyncio
    async def test_revoked_refresh_token_disconnects(self, provider, store):
        def handler(request):
            if request.url.host == "auth.acme.test":
                return httpx.Response(401, json={"error": "invalid_grant"})
            return httpx.Response(401, json={})

        provider.handler = handler
        ctx = await _context()

        with pytest.raises(DisconnectedSource) as excinfo:
            await execute(ctx, _spec(refresh=True), SOURCE_ID, "things")

        assert excinfo.value.__cause__.url == TOKEN_URL
        assert store.source_status(USER_ID, SOURCE_ID) == "disconnected"

    @pytest.mark.asyncio
    async def test_refresh_never_helping_ends_disconnected(self, provider, store):
        def handler(request):
            if request.url.host == "auth.acme.test":
                return httpx.Response(200, json={"access_token": "still-bad"})
            return httpx.Response(401, json={})

        provider.handler = handler
        ctx = await _context()

        with pytest.raises(DisconnectedSource):
            await execute(ctx, _spec(refresh=True, max_attempts=3), SOURCE_ID, "things")

        hosts = [request.url.host for request in provider.requests]
        assert hosts.count("api.acme.test") == 3
        assert hosts.count("auth.acme.test") == 2
        assert store.source_status(USER_ID, SOURCE_ID) == "disconnected"

    @pytest.mark.asyncio
    async def test_already_refreshing_waits_and_reloads(self, provider, store):
        provider.handler = lambda request: (
            httpx.Response(200, json={"ok": True})
            if _bearer(request) == "fresh-token"
            else httpx.Response(401, json={})
        )
        ctx = await _context()
        original_user = ctx.user

        # another worker holds the refresh claim
        other = await User.load(USER_ID)
        claimed = other.get_source(SOURCE_ID)
        claimed.status = SourceStatus.REFRESHING
        other.set_source(claimed)
        await other.save()

        async def other_worker_finishes(seconds):
            done = other.get_source(SOURCE_ID)
            done.access_token = "fresh-token"
            done.status = SourceStatus.CONNECTED
            other.set_source(done)
            await other.save()

        with patch("connectors.request.asyncio.sleep", side_effect=other_worker_finishes) as sleep:
            body = await execute(ctx, _spec(refresh=True), SOURCE_ID, "things")

        assert body == {"ok": True}
        assert sleep.await_count == 1
        assert sleep.await_args.args[0] == 0.1
        assert ctx.user is not original_user
        assert all(request.url.host == "api.acme.test" for request in provider.requests)


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_calls_refresh_once(self, provider, store):
        gate = asyncio.Event()
        refresh_calls = []

        async def handler(request):
            if request.url.host == "auth.acme.test":
                refresh_calls.append(request)
                await gate.wait()
                return httpx.Response(200, json={"access_token": "fresh-token"})
            if _bearer(request) == "fresh-token":
                return httpx.Response(200, json={"ok": True})
            return httpx.Response(401, json={})

        provider.handler = handler
        first = await _context()
        second = RequestContext(user=await User.load(USER_ID))

        pending_real_sleep = asyncio.sleep

        async def wait_for_winner(seconds):
            gate.set()
            for _ in range(1000):
                if store.source_status(USER_ID, SOURCE_ID) != "refreshing":
                    return
                await pending_real_sleep(0)

        spec = _spec(refresh=True)
        with patch("connectors.request.asyncio.sleep", side_effect=wait_for_winner) as sleep:
            results = await asyncio.gather(
                execute(first, spec, SOURCE_ID, "things"),
                execute(second, spec, SOURCE_ID, "things"),
            )

        assert results == [{"ok": True}, {"ok": True}]
        assert len(refresh_calls) == 1
        assert sleep.await_count == 1
        assert store.source_status(USER_ID, SOURCE_ID) == "connected"
