"""
Wunderlist connector — lists are layers, tasks with a due date are
all-day events.  Task ``revision`` travels as the event ``etag``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from config.settings import config
from connectors.base import Connector, ProviderSpec, body_get, merge_options
from connectors.request import RequestContext, execute
from database.models import Source
from utils.dates import provider_date
from utils.errors import LayerNotFound, ProviderHTTPError
from utils.ids import merge_ids, split_merged_id
from utils.schemas import Acl, Event, EventPatch, EventsPage, EventTime, Layer
from utils.validators import DATE_FORMAT, parse_date, parse_date_time

WUNDERLIST_API_BASE_URL = "https://a.wunderlist.com/api/v1/"
WUNDERLIST_API_TIMEOUT = 4.0
WUNDERLIST_COLOR = "#E84228"


def build_request_options(access_token: Optional[str], overrides: Dict[str, Any]) -> Dict[str, Any]:
    return merge_options(
        {
            "headers": {
                "X-Client-ID": config.wunderlist_client_id,
                "X-Access-Token": access_token or "",
            },
            "timeout": WUNDERLIST_API_TIMEOUT,
        },
        overrides,
    )


def is_invalid_creds_error(err: Exception) -> bool:
    return body_get(err, "error", "type") == "unauthorized"


WUNDERLIST = ProviderSpec(
    name="wunderlist",
    base_url=WUNDERLIST_API_BASE_URL,
    timeout=WUNDERLIST_API_TIMEOUT,
    build_request_options=build_request_options,
    is_invalid_creds_error=is_invalid_creds_error,
)


def format_layer(source_id: str, wd_list: Dict[str, Any]) -> Layer:
    return Layer(
        id=merge_ids(source_id, wd_list["id"]),
        title=wd_list.get("title"),
        color=WUNDERLIST_COLOR,
        text_color="#FFFFFF",
        acl=Acl(edit=True, create=True, delete=True),
        selected=True,
    )


def format_event(layer_id: str, task: Dict[str, Any]) -> Event:
    event = Event(
        id=merge_ids(layer_id, task["id"]),
        kind="event#basic",
        title=task.get("title") or None,
        etag=task.get("revision"),
    )
    if task.get("due_date"):
        event.start = EventTime(date=provider_date(task["due_date"]))
        event.end = EventTime(date=provider_date(task["due_date"], plus_days=1))
    return event


def format_patch(patch: EventPatch) -> Dict[str, Any]:
    output: Dict[str, Any] = {"title": patch.title}
    if patch.start is not None:
        if patch.start.date_time is not None:
            parsed = parse_date_time(patch.start.date_time, "start.date_time")
            output["due_date"] = parsed.strftime(DATE_FORMAT)
        elif patch.start.date is not None:
            output["due_date"] = parse_date(patch.start.date, "start.date").strftime(DATE_FORMAT)
    if patch.etag is not None:
        output["revision"] = patch.etag
    return output


async def load_layers(ctx: RequestContext, source: Source) -> List[Layer]:
    lists = await execute(ctx, WUNDERLIST, source.id, "lists") or []
    return [format_layer(source.id, wd_list) for wd_list in lists]


async def load_events(
    ctx: RequestContext,
    source: Source,
    layer_id: str,
    sync_token: Optional[str] = None,
) -> EventsPage:
    list_id = split_merged_id(layer_id)[1]
    try:
        tasks = await execute(ctx, WUNDERLIST, source.id, "tasks", {"params": {"list_id": list_id}}) or []
    except ProviderHTTPError as err:
        if err.status_code == 404:
            raise LayerNotFound(layer_id) from err
        raise
    return EventsPage(events=[format_event(layer_id, task) for task in tasks if task.get("due_date")])


async def create_event(
    ctx: RequestContext,
    source: Source,
    layer_id: str,
    patch: EventPatch,
    notify: bool = False,
) -> Event:
    list_id = split_merged_id(layer_id)[1]
    # Wunderlist wants the list id as a number
    body = {**format_patch(patch), "list_id": int(list_id)}
    task = await execute(ctx, WUNDERLIST, source.id, "tasks", {"method": "POST", "json": body})
    return format_event(layer_id, task)


async def patch_event(
    ctx: RequestContext,
    source: Source,
    event_id: str,
    patch: EventPatch,
    notify: bool = False,
) -> Event:
    source_id, list_id, task_id = split_merged_id(event_id)[:3]
    task = await execute(
        ctx, WUNDERLIST, source.id, f"tasks/{task_id}",
        {"method": "PATCH", "json": format_patch(patch)},
    )
    return format_event(merge_ids(source_id, list_id), task)


async def delete_event(ctx: RequestContext, source: Source, event_id: str, etag: Any = None) -> None:
    task_id = split_merged_id(event_id)[2]
    await execute(
        ctx, WUNDERLIST, source.id, f"tasks/{task_id}",
        {"method": "DELETE", "params": {"revision": etag}},
    )


def is_configured() -> bool:
    return bool(config.wunderlist_client_id and config.wunderlist_client_secret)


CONNECTOR = Connector(
    name="wunderlist",
    display_name="Wunderlist",
    request=WUNDERLIST,
    is_configured=is_configured,
    load_layers=load_layers,
    load_events=load_events,
    create_event=create_event,
    patch_event=patch_event,
    delete_event=delete_event,
)
