"""
Eventbrite connector — tickets bought and events organized, read-only.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from config.settings import config
from connectors.base import Connector, ProviderSpec, body_get, merge_options
from connectors.request import RequestContext, execute
from database.models import Source
from utils.dates import provider_date_time
from utils.errors import LayerNotFound
from utils.ids import merge_ids, split_merged_id
from utils.schemas import Acl, Event, EventsPage, EventTime, Layer

EVENTBRITE_API_BASE_URL = "https://www.eventbriteapi.com/v3/"
EVENTBRITE_API_TIMEOUT = 8.0
EVENTBRITE_COLOR = "#FF8400"

# https://www.eventbrite.com/developer/v3/formats/event/
_EVENT_STATUSES = {
    "canceled": "cancelled",
    "live": "confirmed",
    "started": "confirmed",
    "ended": "confirmed",
    "completed": "confirmed",
    "draft": "tentative",
}


def build_request_options(access_token: Optional[str], overrides: Dict[str, Any]) -> Dict[str, Any]:
    return merge_options(
        {
            "headers": {"Authorization": f"Bearer {access_token}"},
            "timeout": EVENTBRITE_API_TIMEOUT,
        },
        overrides,
    )


def is_invalid_creds_error(err: Exception) -> bool:
    return body_get(err, "status_code") == 401


EVENTBRITE = ProviderSpec(
    name="eventbrite",
    base_url=EVENTBRITE_API_BASE_URL,
    timeout=EVENTBRITE_API_TIMEOUT,
    build_request_options=build_request_options,
    is_invalid_creds_error=is_invalid_creds_error,
)


def _format_time(prop: Dict[str, Any]) -> EventTime:
    return EventTime(
        date_time=provider_date_time(prop["local"], prop.get("timezone")),
        timezone=prop.get("timezone"),
    )


def format_event(layer_id: str, event: Dict[str, Any]) -> Event:
    description = event.get("description")
    return Event(
        id=merge_ids(layer_id, event["id"]),
        title=(event.get("name") or {}).get("text"),
        link=event.get("url"),
        status=_EVENT_STATUSES.get(event.get("status")),
        kind="event#basic",
        description=description.get("text") if isinstance(description, dict) and description else None,
        start=_format_time(event["start"]),
        end=_format_time(event["end"]),
    )


async def load_layers(ctx: RequestContext, source: Source) -> List[Layer]:
    no_access = Acl(edit=False, create=False, delete=False)
    return [
        Layer(
            id=merge_ids(source.id, "events_attending"),
            title="Events I'm attending",
            color=EVENTBRITE_COLOR,
            text_color="#FFFFFF",
            acl=no_access,
            selected=True,
        ),
        Layer(
            id=merge_ids(source.id, "events_organizing"),
            title="Events I'm organizing",
            color=EVENTBRITE_COLOR,
            text_color="#FFFFFF",
            acl=no_access,
            selected=False,
        ),
    ]


async def load_events(
    ctx: RequestContext,
    source: Source,
    layer_id: str,
    sync_token: Optional[str] = None,
) -> EventsPage:
    short_layer_id = split_merged_id(layer_id)[1]
    if short_layer_id == "events_attending":
        ebrite_res = await execute(ctx, EVENTBRITE, source.id, "users/me/orders", {"params": {"expand": "event"}}) or {}
        events = [
            format_event(layer_id, order["event"])
            for order in ebrite_res.get("orders", [])
            if order.get("event") is not None
        ]
    elif short_layer_id == "events_organizing":
        ebrite_res = await execute(ctx, EVENTBRITE, source.id, "users/me/events") or {}
        events = [format_event(layer_id, event) for event in ebrite_res.get("events", [])]
    else:
        raise LayerNotFound(layer_id)
    return EventsPage(events=events)


def is_configured() -> bool:
    return bool(config.eventbrite_client_id and config.eventbrite_client_secret)


CONNECTOR = Connector(
    name="eventbrite",
    display_name="Eventbrite",
    request=EVENTBRITE,
    is_configured=is_configured,
    load_layers=load_layers,
    load_events=load_events,
)
