"""
Meetup connector — the events the member RSVP'd to, as one static layer.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from config.settings import config
from connectors.base import Connector, ProviderSpec, is_unauthorized, merge_options
from connectors.request import RequestContext, execute
from connectors.token_manager import exchange_refresh_token
from database.models import Source
from utils.dates import provider_date_time
from utils.errors import ProviderHTTPError
from utils.ids import merge_ids, split_source_id
from utils.schemas import Acl, Event, EventsPage, EventTime, Layer

MEETUP_API_BASE_URL = "https://api.meetup.com/"
MEETUP_OAUTH_TOKEN_URL = "https://secure.meetup.com/oauth2/access"
MEETUP_DEAUTH_URL = "http://www.meetup.com/api/"
MEETUP_API_TIMEOUT = 4.0
MEETUP_DEFAULT_EVENT_DURATION_MS = 3 * 60 * 60 * 1000
MEETUP_COLOR = "#ED1C40"

_HTML_TAG = re.compile(r"<(?:.|\n)*?>", re.MULTILINE)


def build_request_options(access_token: Optional[str], overrides: Dict[str, Any]) -> Dict[str, Any]:
    return merge_options(
        {"params": {"access_token": access_token}, "timeout": MEETUP_API_TIMEOUT},
        overrides,
    )


async def refresh_token(ctx: RequestContext, source: Source) -> None:
    # Meetup reads the grant from the query string
    await exchange_refresh_token(
        ctx,
        source,
        MEETUP_OAUTH_TOKEN_URL,
        params={
            "client_id": config.meetup_client_id,
            "client_secret": config.meetup_client_secret,
            "grant_type": "refresh_token",
            "refresh_token": source.refresh_token,
        },
        timeout=MEETUP_API_TIMEOUT,
        rotates=True,
    )


MEETUP = ProviderSpec(
    name="meetup",
    base_url=MEETUP_API_BASE_URL,
    timeout=MEETUP_API_TIMEOUT,
    build_request_options=build_request_options,
    is_invalid_creds_error=is_unauthorized,
    refresh_token=refresh_token,
)


def format_event(layer_id: str, event: Dict[str, Any]) -> Event:
    start_ms = event["time"]
    end_ms = start_ms + event.get("duration", MEETUP_DEFAULT_EVENT_DURATION_MS)
    return Event(
        id=merge_ids(layer_id, event["id"]),
        title=event.get("name"),
        location=(event.get("venue") or {}).get("name", ""),
        description=_HTML_TAG.sub("", event.get("description", "")),
        link=event.get("link"),
        kind="event#basic",
        start=EventTime(date_time=provider_date_time(start_ms, "UTC")),
        end=EventTime(date_time=provider_date_time(end_ms, "UTC")),
    )


async def load_layers(ctx: RequestContext, source: Source) -> List[Layer]:
    return [
        Layer(
            id=merge_ids(source.id, "events_attending"),
            title="Events I'm attending",
            color=MEETUP_COLOR,
            text_color="#FFFFFF",
            acl=Acl(edit=False, create=False, delete=False),
            selected=True,
        )
    ]


async def load_events(
    ctx: RequestContext,
    source: Source,
    layer_id: str,
    sync_token: Optional[str] = None,
) -> EventsPage:
    meetup_res = await execute(ctx, MEETUP, source.id, "self/events") or []
    return EventsPage(events=[format_event(layer_id, item) for item in meetup_res])


async def revoke_token(ctx: RequestContext, source: Source) -> None:
    parts = split_source_id(source.id)
    if parts is None:
        return
    response = await ctx.client.post(
        MEETUP_DEAUTH_URL,
        params={"method": "grantOauthAccess"},
        data={
            "arg_clientId": config.meetup_client_internal_id,
            "arg_member": parts[1],
            "arg_grant": "false",
        },
        timeout=MEETUP_API_TIMEOUT,
    )
    if response.is_error:
        raise ProviderHTTPError(response.status_code, response.text, MEETUP_DEAUTH_URL, "POST")


def is_configured() -> bool:
    return bool(config.meetup_client_id and config.meetup_client_secret)


CONNECTOR = Connector(
    name="meetup",
    display_name="Meetup",
    request=MEETUP,
    is_configured=is_configured,
    load_layers=load_layers,
    load_events=load_events,
    revoke_token=revoke_token,
)
