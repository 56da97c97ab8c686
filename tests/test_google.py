"""
Tests for the Google connector.
"""

import json

import httpx
import pytest

from connectors import google
from connectors.request import RequestContext
from database.models import Source
from database.users import User
from utils.errors import (
    DisconnectedSource,
    InvalidFormat,
    LayerNotFound,
    LimitExceeded,
    ProviderHTTPError,
    TimeRangeEmpty,
)
from utils.schemas import EventPatch, EventTime, Reminder

SOURCE_ID = "google-1"

CONTACTS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom" xmlns:gd="http://schemas.google.com/g/2005">
  <entry>
    <id>http://www.google.com/m8/feeds/contacts/me/base/abc</id>
    <title>Jane Doe</title>
    <gd:email rel="http://schemas.google.com/g/2005#home" address="jane@example.com"/>
  </entry>
  <entry>
    <id>http://www.google.com/m8/feeds/contacts/me/base/def</id>
    <title>No Mail</title>
  </entry>
</feed>
"""


async def _context():
    user = User.new(SOURCE_ID)
    user.set_source(Source.create(SOURCE_ID, "tok", "ref"))
    await user.save()
    user = await User.load(SOURCE_ID)
    return RequestContext(user=user), user.get_source(SOURCE_ID)


def _google_error(status, reason):
    return httpx.Response(status, json={"error": {"errors": [{"reason": reason}], "code": status}})


class TestFormatting:
    def test_layer(self):
        layer = google.format_layer(
            SOURCE_ID,
            {
                "id": "primary",
                "summary": "Me",
                "summaryOverride": "Mine",
                "backgroundColor": "#000",
                "foregroundColor": "#fff",
                "accessRole": "owner",
                "selected": True,
            },
        )
        assert layer.id == "google-1:primary"
        assert layer.title == "Mine"
        assert layer.acl.edit and layer.acl.create and layer.acl.delete
        assert layer.selected is True

    def test_read_only_weather_layer(self):
        layer = google.format_layer(
            SOURCE_ID,
            {"id": google.WEATHER_CALENDAR_ID, "summary": "Weather: Paris", "accessRole": "reader"},
        )
        assert layer.title == "Weather"
        assert not layer.acl.edit
        assert layer.selected is None

    def test_invitation(self):
        event = google.format_event(
            "google-1:primary",
            {"1": {"background": "#a4bdfc"}},
            {
                "id": "e1",
                "summary": "Lunch",
                "colorId": "1",
                "start": {"dateTime": "2017-01-01T12:00:00+01:00"},
                "end": {"dateTime": "2017-01-01T13:00:00+01:00"},
                "attendees": [
                    {"email": "me@example.com", "self": True, "responseStatus": "needsAction"},
                    {"email": "bob@example.com", "responseStatus": "accepted"},
                ],
                "reminders": {"overrides": [{"method": "popup", "minutes": 10}]},
            },
        )
        assert event.id == "google-1:primary:e1"
        assert event.kind == "event#invitation"
        assert event.status == "confirmed"
        assert event.color == "#a4bdfc"
        assert [a.response_status for a in event.attendees] == ["needs_action", "accepted"]
        assert event.reminders[0].minutes == 10

    def test_patch_validates_dates(self):
        with pytest.raises(InvalidFormat):
            google.format_patch(EventPatch(start=EventTime(date_time="2017-01-01 12:00")))
        with pytest.raises(InvalidFormat):
            google.format_patch(EventPatch(end=EventTime(date="01/02/2017")))

    def test_patch_reminders(self):
        patch = EventPatch(title="x", reminders=[Reminder(minutes=m) for m in (10, 10, 30)])
        output = google.format_patch(patch)
        assert output["summary"] == "x"
        assert output["reminders"]["overrides"] == [
            {"method": "popup", "minutes": 10},
            {"method": "popup", "minutes": 30},
        ]

    def test_too_many_reminders(self):
        patch = EventPatch(reminders=[Reminder(minutes=m) for m in range(6)])
        with pytest.raises(LimitExceeded):
            google.format_patch(patch)

    def test_contacts_feed(self):
        contacts = google.parse_contacts_feed(CONTACTS_FEED)
        assert len(contacts) == 1
        assert contacts[0].email == "jane@example.com"
        assert contacts[0].display_name == "Jane Doe"


class TestActions:
    @pytest.mark.asyncio
    async def test_load_events_follows_pages(self, provider):
        def handler(request):
            if "pageToken" not in request.url.params:
                return httpx.Response(200, json={"items": [{"id": "a"}], "nextPageToken": "p2"})
            return httpx.Response(200, json={"items": [{"id": "b"}], "nextSyncToken": "s1"})

        provider.handler = handler
        ctx, source = await _context()

        page = await google.load_events(ctx, source, "google-1:primary")

        assert [event.id for event in page.events] == ["google-1:primary:a", "google-1:primary:b"]
        assert page.sync_type == "full"
        assert page.next_sync_token == "s1"
        assert "timeMin" in provider.requests[0].url.params

    @pytest.mark.asyncio
    async def test_expired_sync_token_triggers_full_load(self, provider):
        def handler(request):
            if "syncToken" in request.url.params:
                return _google_error(410, "fullSyncRequired")
            return httpx.Response(200, json={"items": [{"id": "a"}], "nextSyncToken": "s2"})

        provider.handler = handler
        ctx, source = await _context()

        page = await google.load_events(ctx, source, "google-1:primary", sync_token="old")

        assert page.sync_type == "full"
        assert page.next_sync_token == "s2"
        assert len(page.events) == 1

    @pytest.mark.asyncio
    async def test_unknown_calendar(self, provider):
        provider.handler = lambda request: _google_error(404, "notFound")
        ctx, source = await _context()

        with pytest.raises(LayerNotFound):
            await google.load_events(ctx, source, "google-1:nope")

    @pytest.mark.asyncio
    async def test_create_time_range_empty(self, provider):
        provider.handler = lambda request: _google_error(400, "timeRangeEmpty")
        ctx, source = await _context()
        patch = EventPatch(
            start=EventTime(date_time="2017-01-02T12:00:00+0000"),
            end=EventTime(date_time="2017-01-01T12:00:00+0000"),
        )

        with pytest.raises(TimeRangeEmpty):
            await google.create_event(ctx, source, "google-1:primary", patch, True)

        request = provider.requests[0]
        assert request.method == "POST"
        assert request.url.params["sendNotifications"] == "true"
        assert json.loads(request.content)["start"]["dateTime"] == "2017-01-02T12:00:00+0000"

    @pytest.mark.asyncio
    async def test_invalid_patch_sends_nothing(self, provider):
        ctx, source = await _context()

        with pytest.raises(InvalidFormat):
            await google.patch_event(
                ctx, source, "google-1:primary:e1", EventPatch(start=EventTime(date="tomorrow"))
            )

        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_other_patch_errors_propagate(self, provider):
        provider.handler = lambda request: _google_error(400, "invalid")
        ctx, source = await _context()

        with pytest.raises(ProviderHTTPError):
            await google.patch_event(ctx, source, "google-1:primary:e1", EventPatch(title="x"))

    @pytest.mark.asyncio
    async def test_load_colors_marks_source(self, provider):
        provider.handler = lambda request: httpx.Response(200, json={"event": {"1": {"background": "#fff"}}})
        ctx, source = await _context()

        await google.load_colors(ctx, source)

        assert ctx.user.get_source(SOURCE_ID).colors == {"1": {"background": "#fff"}}
        assert ctx.user.dirty

    @pytest.mark.asyncio
    async def test_revoked_grant_disconnects(self, provider, store):
        def handler(request):
            if request.url.path == "/oauth2/v4/token":
                return httpx.Response(400, json={"error": "invalid_grant"})
            return httpx.Response(401, json={"error": {"code": 401}})

        provider.handler = handler
        ctx, source = await _context()

        with pytest.raises(DisconnectedSource) as excinfo:
            await google.load_layers(ctx, source)

        assert excinfo.value.__cause__.status_code == 400
        assert store.source_status(SOURCE_ID, SOURCE_ID) == "disconnected"

    @pytest.mark.asyncio
    async def test_load_colors_keeps_reloaded_tokens(self, provider, store):
        provider.handler = lambda request: httpx.Response(200, json={"event": {"2": {"background": "#000"}}})
        ctx, stale = await _context()

        # another worker refreshed the tokens and the user was reloaded since
        other = await User.load(SOURCE_ID)
        fresh = other.get_source(SOURCE_ID)
        fresh.access_token = "fresh-tok"
        other.set_source(fresh)
        await other.save()
        ctx.user = await ctx.user.reload()

        await google.load_colors(ctx, stale)
        await ctx.user.save()

        assert provider.requests[0].headers["Authorization"] == "Bearer fresh-tok"
        stored = (await User.load(SOURCE_ID)).get_source(SOURCE_ID)
        assert stored.access_token == "fresh-tok"
        assert stored.colors == {"2": {"background": "#000"}}

    @pytest.mark.asyncio
    async def test_places_and_contacts(self, provider):
        def handler(request):
            if request.url.host == "maps.googleapis.com":
                return httpx.Response(200, json={"predictions": [{"description": "Paris, France"}]})
            return httpx.Response(200, text=CONTACTS_FEED, headers={"content-type": "application/atom+xml"})

        provider.handler = handler
        ctx, source = await _context()

        places = await google.load_places(ctx, source, "Par")
        contacts = await google.load_contacts(ctx, source, "jane")

        assert places[0].description == "Paris, France"
        assert contacts[0].email == "jane@example.com"
        assert await google.load_places(ctx, source, "") == []
