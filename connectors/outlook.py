"""
Outlook connector — read-only calendars through the Outlook REST API v2.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import quote

from config.settings import config
from connectors.base import Connector, ProviderSpec, is_unauthorized, merge_options
from connectors.request import RequestContext, execute
from connectors.token_manager import exchange_refresh_token
from database.models import Source
from utils.dates import load_window, provider_date, provider_date_time, to_iso_utc
from utils.ids import merge_ids, split_merged_id
from utils.schemas import Acl, Attendee, Event, EventsPage, EventTime, Layer, Reminder

OUTLOOK_API_BASE_URL = "https://outlook.office.com/api/v2.0/"
OUTLOOK_OAUTH_TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
OUTLOOK_API_TIMEOUT = 8.0
OUTLOOK_PAGE_SIZE = 50
OUTLOOK_DEFAULT_COLOR = "#EB3D01"

LAYER_COLORS = {
    "LightBlue": "#a6d1f5",
    "LightTeal": "#4adacc",
    "LightGreen": "#87d28e",
    "LightGray": "#c0c0c0",
    "LightRed": "#f88c9b",
    "LightPink": "#f08cc0",
    "LightBrown": "#cba287",
    "LightOrange": "#fcab73",
    "LightYellow": "#f4d07a",
}

_RESPONSE_STATUSES = {
    "None": "needs_action",
    "NotResponded": "needs_action",
    "Declined": "declined",
    "TentativelyAccepted": "tentative",
    "Accepted": "accepted",
}

_EVENT_FIELDS = (
    "Subject,Location,Start,End,WebLink,IsAllDay,"
    "Body,Attendees,IsReminderOn,ReminderMinutesBeforeStart"
)


def build_request_options(access_token: Optional[str], overrides: Dict[str, Any]) -> Dict[str, Any]:
    return merge_options(
        {
            "headers": {"Authorization": f"Bearer {access_token}"},
            "timeout": OUTLOOK_API_TIMEOUT,
        },
        overrides,
    )


async def refresh_token(ctx: RequestContext, source: Source) -> None:
    await exchange_refresh_token(
        ctx,
        source,
        OUTLOOK_OAUTH_TOKEN_URL,
        data={
            "client_id": config.outlook_client_id,
            "client_secret": config.outlook_client_secret,
            "grant_type": "refresh_token",
            "refresh_token": source.refresh_token,
        },
        timeout=OUTLOOK_API_TIMEOUT,
        rotates=True,
    )


OUTLOOK = ProviderSpec(
    name="outlook",
    base_url=OUTLOOK_API_BASE_URL,
    timeout=OUTLOOK_API_TIMEOUT,
    build_request_options=build_request_options,
    is_invalid_creds_error=is_unauthorized,
    refresh_token=refresh_token,
)


def format_layer(source_id: str, outlook_layer: Dict[str, Any]) -> Layer:
    return Layer(
        id=merge_ids(source_id, outlook_layer["Id"]),
        title=outlook_layer.get("Name"),
        color=LAYER_COLORS.get(outlook_layer.get("Color", "Auto"), OUTLOOK_DEFAULT_COLOR),
        text_color="#FFFFFF",
        acl=Acl(edit=False, create=False, delete=False),
        selected=False,
    )


def _format_time(prop: Dict[str, Any], all_day: bool) -> Optional[EventTime]:
    if not prop.get("DateTime"):
        return None
    tz_name = prop.get("TimeZone")
    if all_day:
        return EventTime(date=provider_date(prop["DateTime"], tz_name), timezone=tz_name)
    return EventTime(date_time=provider_date_time(prop["DateTime"], tz_name), timezone=tz_name)


def format_event(layer_id: str, event: Dict[str, Any]) -> Event:
    all_day = bool(event.get("IsAllDay", False))
    body = event.get("Body") or {}
    reminders = []
    if event.get("IsReminderOn", False):
        reminders.append(Reminder(minutes=event.get("ReminderMinutesBeforeStart", 0)))

    return Event(
        id=merge_ids(layer_id, event["Id"]),
        title=event.get("Subject"),
        kind="event#basic",
        link=event.get("WebLink"),
        location=(event.get("Location") or {}).get("DisplayName") or None,
        description=body.get("Content", "") if body.get("ContentType") == "Text" else None,
        start=_format_time(event.get("Start") or {}, all_day),
        end=_format_time(event.get("End") or {}, all_day),
        attendees=[
            Attendee(
                email=(attendee.get("EmailAddress") or {}).get("Address"),
                response_status=_RESPONSE_STATUSES.get(
                    (attendee.get("Status") or {}).get("Response"), "needs_action"
                ),
                is_self=False,
            )
            for attendee in event.get("Attendees", [])
        ],
        reminders=reminders,
    )


async def load_layers(ctx: RequestContext, source: Source) -> List[Layer]:
    outlook_res = await execute(
        ctx, OUTLOOK, source.id, "me/calendars",
        {"params": {"$select": "Name,Color", "$top": OUTLOOK_PAGE_SIZE}},
    ) or {}
    return [format_layer(source.id, item) for item in outlook_res.get("value", [])]


async def load_events(
    ctx: RequestContext,
    source: Source,
    layer_id: str,
    sync_token: Optional[str] = None,
) -> EventsPage:
    calendar_id = split_merged_id(layer_id)[1]
    min_date, max_date = load_window()
    params: Dict[str, Any] = {
        "startDateTime": to_iso_utc(min_date),
        "endDateTime": to_iso_utc(max_date),
        "$top": OUTLOOK_PAGE_SIZE,
        "$skip": 0,
        "$select": _EVENT_FIELDS,
    }
    path = f"me/calendars/{quote(calendar_id, safe='')}/calendarview"
    events: List[Event] = []
    while True:
        outlook_res = await execute(ctx, OUTLOOK, source.id, path, {"params": params}) or {}
        events.extend(format_event(layer_id, item) for item in outlook_res.get("value", []))
        if "@odata.nextLink" not in outlook_res:
            return EventsPage(events=events)
        params["$skip"] += params["$top"]


def is_configured() -> bool:
    return bool(config.outlook_client_id and config.outlook_client_secret)


CONNECTOR = Connector(
    name="outlook",
    display_name="Outlook",
    request=OUTLOOK,
    is_configured=is_configured,
    load_layers=load_layers,
    load_events=load_events,
)
