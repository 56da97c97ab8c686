"""
Tests for linking, validating and removing sources.
"""

import httpx
import pytest

from connectors.request import RequestContext
from connectors.sources import (
    OAuthProfile,
    OAuthTokens,
    create_source,
    deauth_source,
    get_connector,
    save_source,
    validate_source,
)
from database.models import Source, SourceStatus
from database.users import User
from utils.errors import (
    ActionNotSupported,
    DisconnectedSource,
    ProviderHTTPError,
    SourceAlreadyUsed,
    SourceNotFound,
)


async def _context(user_id="google-1", *sources):
    user = User.new(user_id, display_name="Ann")
    for source in sources:
        await user.add_source(source, with_alias=True)
    await user.save()
    return RequestContext(user=await User.load(user_id))


class TestCreateSource:
    def test_profile_fields(self):
        profile = OAuthProfile(provider="facebook", id="77", display_name="Ann", emails=["ann@example.com", "b@c.d"])

        source = create_source(profile, "tok")

        assert source.id == "facebook-77"
        assert source.email == "ann@example.com"
        assert source.display_name == "Ann"
        assert source.refresh_token is None
        assert source.status == SourceStatus.CONNECTED

    def test_no_email(self):
        source = create_source(OAuthProfile(provider="trello", id="x"), "tok", "ref")
        assert source.email is None
        assert source.refresh_token == "ref"


class TestGetConnector:
    def test_unknown_provider(self):
        with pytest.raises(SourceNotFound):
            get_connector("myspace-1")

    def test_unsupported_action(self):
        with pytest.raises(ActionNotSupported) as excinfo:
            get_connector("eventbrite-1", "create_event")
        assert excinfo.value.params == {"action": "create event", "provider": "eventbrite"}

    def test_supported_action(self):
        assert get_connector("google-1", "load_contacts").name == "google"


class TestValidateSource:
    @pytest.mark.asyncio
    async def test_missing(self):
        ctx = await _context()
        with pytest.raises(SourceNotFound):
            validate_source(ctx.user, "google-1")

    @pytest.mark.asyncio
    async def test_disconnected(self):
        source = Source.create("google-1", "g")
        source.status = SourceStatus.DISCONNECTED
        ctx = await _context("google-1", source)

        with pytest.raises(DisconnectedSource):
            validate_source(ctx.user, "google-1")

    @pytest.mark.asyncio
    async def test_connected(self):
        ctx = await _context("google-1", Source.create("google-1", "g"))
        assert validate_source(ctx.user, "google-1").access_token == "g"


class TestSaveSource:
    @pytest.mark.asyncio
    async def test_selected_layers_are_autoloaded(self, store):
        ctx = await _context("google-1", Source.create("google-1", "g"))

        source = await save_source(ctx, OAuthProfile(provider="facebook", id="7"), OAuthTokens(access_token="fb"))
        await ctx.user.save()

        assert source.id == "facebook-7"
        assert store.strings["alias:facebook-7"] == "google-1"
        assert store.hashes["google-1:selected_layers"] == {
            "facebook-7:events_attending": "true",
            "facebook-7:events_tentative": "true",
        }

    @pytest.mark.asyncio
    async def test_account_of_another_user(self, store):
        await _context("trello-3", Source.create("facebook-7", "fb"))
        ctx = await _context()

        with pytest.raises(SourceAlreadyUsed):
            await save_source(ctx, OAuthProfile(provider="facebook", id="7"), OAuthTokens(access_token="fb2"))

        assert ctx.user.sources == {}
        assert not ctx.user.dirty

    @pytest.mark.asyncio
    async def test_google_link_writes(self, provider, store):
        def handler(request):
            if request.url.path.endswith("/users/me/calendarList"):
                return httpx.Response(200, json={"items": [
                    {"id": "primary", "summary": "Ann", "accessRole": "owner", "selected": True},
                    {"id": "holidays", "summary": "Holidays", "accessRole": "reader", "selected": False},
                    {"id": "birthdays", "summary": "Birthdays", "accessRole": "reader"},
                ]})
            if request.url.path.endswith("/colors"):
                return httpx.Response(200, json={"event": {"1": {"background": "#a4bdfc"}}})
            return httpx.Response(404, json={})

        provider.handler = handler
        ctx = await _context("facebook-7", Source.create("facebook-7", "fb"))
        store.writes.clear()

        profile = OAuthProfile(provider="google", id="1", emails=["ann@example.com"])

        source = await save_source(ctx, profile, OAuthTokens(access_token="g", refresh_token="r"))
        await ctx.user.save()

        assert source.id == "google-1"
        assert sorted(store.writes) == [
            ("hset", "facebook-7:selected_layers"),
            ("hset", "facebook-7:sources"),
            ("set", "alias:google-1"),
        ]
        assert store.strings["alias:google-1"] == "facebook-7"
        assert store.hashes["facebook-7:selected_layers"] == {"google-1:primary": "true"}
        stored = (await User.load("facebook-7")).get_source("google-1")
        assert stored.colors == {"1": {"background": "#a4bdfc"}}
        assert stored.email == "ann@example.com"

    @pytest.mark.asyncio
    async def test_link_refreshes_an_expired_token(self, provider, store):
        def handler(request):
            if request.url.path == "/oauth2/v4/token":
                return httpx.Response(200, json={"access_token": "fresh"})
            if request.headers["Authorization"] != "Bearer fresh":
                return httpx.Response(401, json={})
            if request.url.path.endswith("/colors"):
                return httpx.Response(200, json={"event": {}})
            return httpx.Response(200, json={"items": [{"id": "primary", "selected": True}]})

        provider.handler = handler
        ctx = await _context("facebook-7", Source.create("facebook-7", "fb"))

        tokens = OAuthTokens(access_token="stale", refresh_token="r")

        await save_source(ctx, OAuthProfile(provider="google", id="1"), tokens)
        await ctx.user.save()

        stored = (await User.load("facebook-7")).get_source("google-1")
        assert stored.access_token == "fresh"
        assert stored.status == SourceStatus.CONNECTED
        assert store.hashes["facebook-7:selected_layers"] == {"google-1:primary": "true"}

    @pytest.mark.asyncio
    async def test_failed_link_releases_the_account(self, provider, store):
        provider.handler = lambda request: httpx.Response(500, json={"error": {"message": "backend error"}})
        ctx = await _context("facebook-7", Source.create("facebook-7", "fb"))

        with pytest.raises(ProviderHTTPError):
            await save_source(ctx, OAuthProfile(provider="google", id="1"), OAuthTokens(access_token="g"))

        assert "alias:google-1" not in store.strings
        assert ctx.user.get_source("google-1") is None
        assert not ctx.user.dirty

    @pytest.mark.asyncio
    async def test_failed_link_can_be_retried(self, provider, store):
        responses = iter([httpx.Response(500, json={})])

        def handler(request):
            response = next(responses, None)
            if response is not None:
                return response
            if request.url.path.endswith("/colors"):
                return httpx.Response(200, json={"event": {}})
            return httpx.Response(200, json={"items": []})

        provider.handler = handler
        ctx = await _context("facebook-7", Source.create("facebook-7", "fb"))
        profile = OAuthProfile(provider="google", id="1")

        with pytest.raises(ProviderHTTPError):
            await save_source(ctx, profile, OAuthTokens(access_token="g"))
        await save_source(ctx, profile, OAuthTokens(access_token="g"))

        assert store.strings["alias:google-1"] == "facebook-7"
        assert ctx.user.get_source("google-1").access_token == "g"


class TestDeauthSource:
    @pytest.mark.asyncio
    async def test_revoke_failure_still_removes(self, provider, store):
        provider.handler = lambda request: httpx.Response(500, json={"error": {"message": "boom"}})
        ctx = await _context("google-1", Source.create("google-1", "g"), Source.create("facebook-7", "fb"))

        await deauth_source(ctx, ctx.user.get_source("facebook-7"))

        assert provider.requests[0].method == "DELETE"
        assert provider.paths() == ["/v2.7/7/permissions"]
        assert "facebook-7" not in store.hashes["google-1:sources"]
        assert "alias:facebook-7" not in store.strings

    @pytest.mark.asyncio
    async def test_disconnected_source_is_not_revoked(self, provider, store):
        source = Source.create("facebook-7", "fb")
        source.status = SourceStatus.DISCONNECTED
        ctx = await _context("google-1", Source.create("google-1", "g"), source)

        await deauth_source(ctx, ctx.user.get_source("facebook-7"))

        assert provider.requests == []
        assert ctx.user.get_source("facebook-7") is None

    @pytest.mark.asyncio
    async def test_provider_without_revoke(self, provider):
        ctx = await _context("google-1", Source.create("google-1", "g"), Source.create("github-2", "gh"))

        await deauth_source(ctx, ctx.user.get_source("github-2"))

        assert provider.requests == []
        assert set(ctx.user.sources) == {"google-1"}
