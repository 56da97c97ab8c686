"""
Facebook connector — RSVP'd events exposed as five static layers.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Any, Dict, List, Optional

from config.settings import config
from connectors.base import Connector, ProviderSpec, body_get, merge_options
from connectors.request import RequestContext, execute
from database.models import Source
from utils.dates import load_window, provider_date_time
from utils.errors import InvalidFormat, LayerNotFound
from utils.ids import merge_ids, split_merged_id, split_source_id
from utils.schemas import Acl, Event, EventPatch, EventsPage, EventTime, Layer

FACEBOOK_API_BASE_URL = "https://graph.facebook.com/v2.7/"
FACEBOOK_API_TIMEOUT = 4.0
FACEBOOK_COLOR = "#3B5998"

# error_subcode values meaning the token is gone for good
# 463: expired, 460: password changed, 458: app not authorized
INVALID_CREDS_SUBCODES = (463, 460, 458)

_EVENT_FIELDS = "description,end_time,name,place{name},start_time,timezone"

# layer -> Graph `type` filter of `me/events`
_LAYER_RSVP_TYPES = {
    "events_attending": "attending",
    "events_tentative": "maybe",
    "events_not_replied": "not_replied",
    "events_created": "created",
    "events_declined": "declined",
}

_STATIC_LAYERS = (
    ("events_attending", "Attending", True),
    ("events_tentative", "Maybe / Interested", True),
    ("events_not_replied", "Not Replied", False),
    ("events_created", "Created", False),
    ("events_declined", "Declined", False),
)

_RSVP_ACTIONS = {"accepted": "attending", "declined": "declined", "tentative": "maybe"}


def app_secret_proof(access_token: Optional[str]) -> str:
    return hmac.new(
        config.facebook_client_secret.encode(),
        (access_token or "").encode(),
        hashlib.sha256,
    ).hexdigest()


def build_request_options(access_token: Optional[str], overrides: Dict[str, Any]) -> Dict[str, Any]:
    return merge_options(
        {
            "params": {"access_token": access_token, "appsecret_proof": app_secret_proof(access_token)},
            "timeout": FACEBOOK_API_TIMEOUT,
        },
        overrides,
    )


def is_invalid_creds_error(err: Exception) -> bool:
    fb_error = body_get(err, "error")
    if not isinstance(fb_error, dict) or fb_error.get("type") != "OAuthException":
        return False
    if "error_subcode" in fb_error:
        return fb_error["error_subcode"] in INVALID_CREDS_SUBCODES
    return True


FACEBOOK = ProviderSpec(
    name="facebook",
    base_url=FACEBOOK_API_BASE_URL,
    timeout=FACEBOOK_API_TIMEOUT,
    build_request_options=build_request_options,
    is_invalid_creds_error=is_invalid_creds_error,
)


def format_event(layer_id: str, kind: str, event: Dict[str, Any]) -> Event:
    times = {}
    for prop in ("start", "end"):
        value = event.get(f"{prop}_time")
        if value:
            times[prop] = EventTime(date_time=provider_date_time(value, event.get("timezone")))

    return Event(
        id=merge_ids(layer_id, event["id"]),
        kind=kind,
        link=f"https://www.facebook.com/events/{event['id']}",
        title=event.get("name") or None,
        description=event.get("description") or None,
        location=(event.get("place") or {}).get("name") or None,
        **times,
    )


async def load_layers(ctx: RequestContext, source: Source) -> List[Layer]:
    no_access = Acl(edit=False, create=False, delete=False)
    return [
        Layer(
            id=merge_ids(source.id, short_id),
            title=title,
            color=FACEBOOK_COLOR,
            text_color="#FFFFFF",
            acl=no_access,
            selected=selected,
        )
        for short_id, title, selected in _STATIC_LAYERS
    ]


async def load_events(
    ctx: RequestContext,
    source: Source,
    layer_id: str,
    sync_token: Optional[str] = None,
) -> EventsPage:
    short_layer_id = split_merged_id(layer_id)[1]
    rsvp_type = _LAYER_RSVP_TYPES.get(short_layer_id)
    if rsvp_type is None:
        raise LayerNotFound(layer_id)

    min_date, max_date = load_window()
    params: Dict[str, Any] = {
        "fields": _EVENT_FIELDS,
        "limit": 250,
        "since": int(min_date.timestamp()),
        "until": int(max_date.timestamp()) + 1,
        "type": rsvp_type,
    }
    events: List[Event] = []
    while True:
        fb_res = await execute(ctx, FACEBOOK, source.id, "me/events", {"params": params}) or {}
        events.extend(format_event(layer_id, "event#basic", item) for item in fb_res.get("data", []))
        after = ((fb_res.get("paging") or {}).get("cursors") or {}).get("after")
        if not after:
            return EventsPage(events=events)
        params["after"] = after


async def patch_event(
    ctx: RequestContext,
    source: Source,
    event_id: str,
    patch: EventPatch,
    notify: bool = False,
) -> Event:
    """Only RSVPs can be changed: the first attendee's response is sent."""
    source_id, short_layer_id, fb_event_id = split_merged_id(event_id)[:3]
    if not patch.attendees:
        raise InvalidFormat(None, "attendees", "[{response_status}]")

    response_status = patch.attendees[0].response_status
    action = _RSVP_ACTIONS.get(response_status)
    if action is None:
        raise InvalidFormat(response_status, "attendees.response_status", str(list(_RSVP_ACTIONS)))

    await execute(ctx, FACEBOOK, source.id, f"{fb_event_id}/{action}", {"method": "POST"})
    fb_res = await execute(ctx, FACEBOOK, source.id, fb_event_id, {"params": {"fields": _EVENT_FIELDS}})
    return format_event(merge_ids(source_id, short_layer_id), "event#basic", fb_res)


async def revoke_token(ctx: RequestContext, source: Source) -> None:
    parts = split_source_id(source.id)
    if parts is None:
        return
    await execute(ctx, FACEBOOK, source.id, f"{parts[1]}/permissions", {"method": "DELETE"})


def is_configured() -> bool:
    return bool(config.facebook_client_id and config.facebook_client_secret)


CONNECTOR = Connector(
    name="facebook",
    display_name="Facebook",
    request=FACEBOOK,
    is_configured=is_configured,
    load_layers=load_layers,
    load_events=load_events,
    patch_event=patch_event,
    revoke_token=revoke_token,
)
