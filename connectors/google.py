"""
Google Calendar connector.

Calendars map to layers, events are loaded page by page and can be
synced incrementally with Google's ``nextSyncToken``.  Also serves place
autocomplete (Maps) and contact search (Contacts feed).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from lxml import etree

from config.settings import config
from connectors.base import Connector, ProviderSpec, body_get, merge_options
from connectors.request import RequestContext, execute
from connectors.token_manager import exchange_refresh_token
from database.models import Source
from utils.dates import load_window, to_iso_utc
from utils.errors import LayerNotFound, LimitExceeded, ProviderHTTPError, TimeRangeEmpty
from utils.ids import merge_ids, split_merged_id
from utils.schemas import (
    Acl,
    Attendee,
    Contact,
    Event,
    EventPatch,
    EventsPage,
    EventTime,
    Layer,
    Place,
    Reminder,
)
from utils.validators import (
    DATE_FORMAT_LABEL,
    DATE_TIME_FORMAT_LABEL,
    parse_date,
    parse_date_time,
)

logger = logging.getLogger(__name__)

GCAL_API_BASE_URL = "https://www.googleapis.com/calendar/v3/"
GPLACES_API_BASE_URL = "https://maps.googleapis.com/maps/api/place/"
GCONTACTS_API_BASE_URL = "https://www.google.com/m8/feeds/contacts/"
GOOGLE_OAUTH_TOKEN_URL = "https://www.googleapis.com/oauth2/v4/token"
GOOGLE_REVOKE_URL = "https://accounts.google.com/o/oauth2/revoke"
GOOGLE_API_TIMEOUT = 4.0
GOOGLE_MAX_REMINDERS = 5
WEATHER_CALENDAR_ID = "p#weather@group.v.calendar.google.com"

_EVENT_FIELDS = (
    "items(id,summary,status,location,description,start,end,attendees,reminders,colorId),"
    "nextPageToken,nextSyncToken"
)

_ATOM_NS = {"atom": "http://www.w3.org/2005/Atom", "gd": "http://schemas.google.com/g/2005"}

_RESPONSE_STATUSES = {
    "needsAction": "needs_action",
    "declined": "declined",
    "tentative": "tentative",
    "accepted": "accepted",
}
_GOOGLE_RESPONSE_STATUSES = {value: key for key, value in _RESPONSE_STATUSES.items()}
_EVENT_STATUSES = ("confirmed", "tentative", "cancelled")


# ── Request layer ────────────────────────────────────────────────────────


def build_request_options(access_token: Optional[str], overrides: Dict[str, Any]) -> Dict[str, Any]:
    return merge_options(
        {
            "headers": {"Authorization": f"Bearer {access_token}"},
            "timeout": GOOGLE_API_TIMEOUT,
        },
        overrides,
    )


def is_invalid_creds_error(err: Exception) -> bool:
    if not isinstance(err, ProviderHTTPError):
        return False
    return err.status_code == 401 or (
        err.status_code == 400 and body_get(err, "error") == "invalid_grant"
    )


async def refresh_token(ctx: RequestContext, source: Source) -> None:
    await exchange_refresh_token(
        ctx,
        source,
        GOOGLE_OAUTH_TOKEN_URL,
        data={
            "client_id": config.google_client_id,
            "client_secret": config.google_client_secret,
            "grant_type": "refresh_token",
            "refresh_token": source.refresh_token,
        },
        timeout=GOOGLE_API_TIMEOUT,
    )


GOOGLE = ProviderSpec(
    name="google",
    base_url=GCAL_API_BASE_URL,
    timeout=GOOGLE_API_TIMEOUT,
    build_request_options=build_request_options,
    is_invalid_creds_error=is_invalid_creds_error,
    refresh_token=refresh_token,
)


# ── Formatting ───────────────────────────────────────────────────────────


def _is_writable(access_role: Optional[str]) -> bool:
    return access_role in ("owner", "writer")


def format_layer(source_id: str, gc_layer: Dict[str, Any]) -> Layer:
    writable = _is_writable(gc_layer.get("accessRole"))
    title = gc_layer.get("summaryOverride", gc_layer.get("summary"))
    if gc_layer.get("id") == WEATHER_CALENDAR_ID:
        # Google titles it "Weather: <some city>"
        title = gc_layer.get("summaryOverride", "Weather")

    selected = gc_layer.get("selected")
    return Layer(
        id=merge_ids(source_id, gc_layer["id"]),
        title=title,
        color=gc_layer.get("backgroundColor") or None,
        text_color=gc_layer.get("foregroundColor") or None,
        acl=Acl(edit=writable, create=writable, delete=writable),
        selected=selected if isinstance(selected, bool) else None,
    )


def _format_time(prop: Any) -> Optional[EventTime]:
    if not prop or not isinstance(prop, dict):
        return None
    return EventTime(date_time=prop.get("dateTime"), date=prop.get("date"), timezone=prop.get("timeZone"))


def format_event(layer_id: str, colors: Optional[Dict[str, Any]], event: Dict[str, Any]) -> Event:
    attendees = event.get("attendees") or []
    me = next((attendee for attendee in attendees if attendee.get("self")), None)
    kind = "event#invitation" if me is not None and me.get("responseStatus") == "needsAction" else "event#basic"

    status = event.get("status")
    color = None
    if colors is not None:
        color = (colors.get(event.get("colorId")) or {}).get("background")

    return Event(
        id=merge_ids(layer_id, event["id"]),
        title=event.get("summary"),
        status=status if status in _EVENT_STATUSES else "confirmed",
        kind=kind,
        description=event.get("description") or None,
        location=event.get("location") or None,
        start=_format_time(event.get("start")),
        end=_format_time(event.get("end")),
        attendees=[
            Attendee(
                email=attendee.get("email"),
                response_status=_RESPONSE_STATUSES.get(attendee.get("responseStatus"), "needs_action"),
                is_self=attendee.get("self"),
            )
            for attendee in attendees
        ],
        reminders=[
            Reminder(minutes=reminder["minutes"])
            for reminder in (event.get("reminders") or {}).get("overrides", [])
        ],
        color=color,
    )


def format_patch(patch: EventPatch) -> Dict[str, Any]:
    """Translate a client patch, validating dates before anything is sent."""
    output: Dict[str, Any] = {}
    for prop in ("start", "end"):
        value: Optional[EventTime] = getattr(patch, prop)
        if value is None or (value.date_time is None and value.date is None):
            continue
        if value.date_time is not None:
            parse_date_time(value.date_time, prop)
        if value.date is not None:
            parse_date(value.date, prop)
        output[prop] = {"dateTime": value.date_time, "date": value.date}

    if patch.color_id is not None:
        output["colorId"] = patch.color_id
    if patch.title is not None:
        output["summary"] = patch.title
    if patch.location is not None:
        output["location"] = patch.location
    if patch.description is not None:
        output["description"] = patch.description
    if patch.attendees is not None:
        output["attendees"] = [
            {
                "email": attendee.email,
                "responseStatus": _GOOGLE_RESPONSE_STATUSES.get(attendee.response_status, "needsAction"),
            }
            for attendee in patch.attendees
        ]
    if patch.reminders is not None:
        minutes: List[int] = []
        for reminder in patch.reminders:
            if reminder.minutes not in minutes:
                minutes.append(reminder.minutes)
        if len(minutes) > GOOGLE_MAX_REMINDERS:
            raise LimitExceeded("reminders", GOOGLE_MAX_REMINDERS)
        output["reminders"] = {
            "useDefault": False,
            "overrides": [{"method": "popup", "minutes": m} for m in minutes],
        }
    return output


def _raise_typed(err: ProviderHTTPError) -> None:
    if err.first_error_reason() == "timeRangeEmpty":
        raise TimeRangeEmpty() from err


# ── Actions ──────────────────────────────────────────────────────────────


async def load_layers(ctx: RequestContext, source: Source) -> List[Layer]:
    google_res = await execute(ctx, GOOGLE, source.id, "users/me/calendarList")
    return [format_layer(source.id, item) for item in (google_res or {}).get("items", [])]


async def load_events(
    ctx: RequestContext,
    source: Source,
    layer_id: str,
    sync_token: Optional[str] = None,
) -> EventsPage:
    _, calendar_id = split_merged_id(layer_id)[:2]
    params: Dict[str, Any] = {"singleEvents": "true", "maxResults": 250, "fields": _EVENT_FIELDS}
    page = EventsPage(sync_type="full")
    if sync_token:
        params["syncToken"] = sync_token
        page.sync_type = "incremental"
    else:
        min_date, max_date = load_window()
        params.update(timeMin=to_iso_utc(min_date), timeMax=to_iso_utc(max_date), showDeleted="false")

    colors = getattr(source, "colors", None)
    path = f"calendars/{quote(calendar_id, safe='')}/events"
    try:
        while True:
            google_res = await execute(ctx, GOOGLE, source.id, path, {"params": params}) or {}
            page.events.extend(format_event(layer_id, colors, item) for item in google_res.get("items", []))
            if "nextPageToken" not in google_res:
                page.next_sync_token = google_res.get("nextSyncToken")
                return page
            params["pageToken"] = google_res["nextPageToken"]
    except ProviderHTTPError as err:
        if err.status_code == 410 and sync_token:
            logger.debug("%s sync token expired for layer `%s`, full resync", ctx.id, layer_id)
            return await load_events(ctx, source, layer_id)
        if err.first_error_reason() == "notFound":
            raise LayerNotFound(layer_id) from err
        raise


async def create_event(
    ctx: RequestContext,
    source: Source,
    layer_id: str,
    patch: EventPatch,
    notify: bool = False,
) -> Event:
    _, calendar_id = split_merged_id(layer_id)[:2]
    options = {
        "method": "POST",
        "params": {"sendNotifications": str(notify).lower()},
        "json": format_patch(patch),
    }
    try:
        google_res = await execute(ctx, GOOGLE, source.id, f"calendars/{quote(calendar_id, safe='')}/events", options)
    except ProviderHTTPError as err:
        _raise_typed(err)
        raise
    return format_event(layer_id, getattr(source, "colors", None), google_res)


async def patch_event(
    ctx: RequestContext,
    source: Source,
    event_id: str,
    patch: EventPatch,
    notify: bool = False,
) -> Event:
    source_id, calendar_id, google_event_id = split_merged_id(event_id)[:3]
    options = {
        "method": "PATCH",
        "params": {"sendNotifications": str(notify).lower()},
        "json": format_patch(patch),
    }
    path = f"calendars/{quote(calendar_id, safe='')}/events/{quote(google_event_id, safe='')}"
    try:
        google_res = await execute(ctx, GOOGLE, source.id, path, options)
    except ProviderHTTPError as err:
        _raise_typed(err)
        raise
    return format_event(merge_ids(source_id, calendar_id), getattr(source, "colors", None), google_res)


async def delete_event(ctx: RequestContext, source: Source, event_id: str, etag: Any = None) -> None:
    _, calendar_id, google_event_id = split_merged_id(event_id)[:3]
    path = f"calendars/{quote(calendar_id, safe='')}/events/{quote(google_event_id, safe='')}"
    await execute(ctx, GOOGLE, source.id, path, {"method": "DELETE"})


async def load_places(ctx: RequestContext, source: Source, query_input: str) -> List[Place]:
    if not query_input:
        return []
    options = {
        "headers": {"Referer": config.static_url},
        "params": {"key": config.google_maps_key, "input": query_input},
    }
    google_res = await execute(
        ctx, GOOGLE, source.id, "queryautocomplete/json", options, base_url=GPLACES_API_BASE_URL
    )
    return [Place(description=p.get("description")) for p in (google_res or {}).get("predictions", [])]


def parse_contacts_feed(feed: str) -> List[Contact]:
    """Contacts with an email address from a GData Atom feed."""
    root = etree.fromstring(feed.encode() if isinstance(feed, str) else feed)
    contacts = []
    for entry in root.iterfind("atom:entry", _ATOM_NS):
        email = entry.find("gd:email", _ATOM_NS)
        if email is None or not email.get("address"):
            continue
        contacts.append(
            Contact(
                id=entry.findtext("atom:id", namespaces=_ATOM_NS),
                display_name=entry.findtext("atom:title", namespaces=_ATOM_NS),
                email=email.get("address"),
            )
        )
    return contacts


async def load_contacts(ctx: RequestContext, source: Source, query_input: str) -> List[Contact]:
    if not query_input:
        return []
    options = {"headers": {"GData-Version": "3.0"}, "params": {"q": query_input}}
    feed = await execute(ctx, GOOGLE, source.id, "default/full", options, base_url=GCONTACTS_API_BASE_URL)
    if not feed:
        return []
    return parse_contacts_feed(feed)


async def load_colors(ctx: RequestContext, source: Source) -> None:
    """Store the account's event color palette on the source."""
    google_res = await execute(ctx, GOOGLE, source.id, "colors") or {}
    # The call may have refreshed the tokens: update the user's current copy
    current = ctx.user.get_source(source.id) or source
    current.colors = google_res.get("event")
    ctx.user.set_source(current)


async def revoke_token(ctx: RequestContext, source: Source) -> None:
    response = await ctx.client.get(
        GOOGLE_REVOKE_URL, params={"token": source.access_token}, timeout=GOOGLE_API_TIMEOUT
    )
    if response.is_error:
        raise ProviderHTTPError(response.status_code, response.text, GOOGLE_REVOKE_URL)


def is_configured() -> bool:
    return bool(config.google_client_id and config.google_client_secret)


CONNECTOR = Connector(
    name="google",
    display_name="Google",
    request=GOOGLE,
    is_configured=is_configured,
    load_layers=load_layers,
    load_events=load_events,
    create_event=create_event,
    patch_event=patch_event,
    delete_event=delete_event,
    load_places=load_places,
    load_contacts=load_contacts,
    revoke_token=revoke_token,
    after_link=load_colors,
)
