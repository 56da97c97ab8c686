"""
Todoist connector — projects are layers, dated items are events.

Everything goes through the v7 ``sync`` endpoint (form POST carrying the
token).  Writes are sent as sync ``commands`` and the updated items read
back from the same response.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from config.settings import config
from connectors.base import Connector, ProviderSpec, merge_options
from connectors.request import RequestContext, execute
from database.models import Source
from utils.errors import KinError, ProviderHTTPError
from utils.ids import merge_ids, split_merged_id
from utils.schemas import Acl, Event, EventPatch, EventsPage, EventTime, Layer
from utils.validators import DATE_FORMAT, DATE_TIME_FORMAT, parse_date, parse_date_time

TODOIST_API_BASE_URL = "https://todoist.com/API/v7/"
TODOIST_API_TIMEOUT = 4.0
# e.g. "Mon 07 Aug 2006 12:34:56 +0000"
TODOIST_DATE_TIME_FORMAT = "%a %d %b %Y %H:%M:%S %z"
TODOIST_FULL_SYNC_TOKEN = "*"

PROJECT_COLORS = [
    # free
    "#95ef63", "#ff8581", "#ffc471", "#f9ec75", "#a8c8e4",
    "#d2b8a3", "#e2a8e4", "#cccccc", "#fb886e", "#ffcc00",
    "#74e8d3", "#3bd5fb",
    # premium
    "#dc4fad", "#ac193d", "#d24726", "#82ba00", "#03b3b2",
    "#008299", "#5db2ff", "#0072c6", "#000000", "#777777",
]


def build_request_options(access_token: Optional[str], overrides: Dict[str, Any]) -> Dict[str, Any]:
    return merge_options(
        {"method": "POST", "data": {"token": access_token}, "timeout": TODOIST_API_TIMEOUT},
        overrides,
    )


def is_invalid_creds_error(err: Exception) -> bool:
    return isinstance(err, ProviderHTTPError) and err.status_code == 403


TODOIST = ProviderSpec(
    name="todoist",
    base_url=TODOIST_API_BASE_URL,
    timeout=TODOIST_API_TIMEOUT,
    build_request_options=build_request_options,
    is_invalid_creds_error=is_invalid_creds_error,
)


def format_layer(source_id: str, project: Dict[str, Any]) -> Layer:
    color_index = project.get("color", 0)
    if not isinstance(color_index, int) or not 0 <= color_index < len(PROJECT_COLORS):
        color_index = 0
    return Layer(
        id=merge_ids(source_id, project["id"]),
        title=project.get("name"),
        color=PROJECT_COLORS[color_index],
        text_color="#FFFFFF",
        acl=Acl(edit=True, create=True, delete=True),
        selected=False,
    )


def format_event(layer_id: str, item: Dict[str, Any]) -> Event:
    project_id = split_merged_id(layer_id)[1]
    due = datetime.strptime(item["due_date_utc"], TODOIST_DATE_TIME_FORMAT).astimezone(timezone.utc)

    # `all_day` is sent by Todoist on every item but is not documented
    if item.get("all_day", False):
        start = EventTime(date=due.strftime(DATE_FORMAT))
        end = EventTime(date=(due + timedelta(days=1)).strftime(DATE_FORMAT))
    else:
        start = EventTime(date_time=due.strftime(DATE_TIME_FORMAT))
        end = EventTime(date_time=(due + timedelta(hours=1)).strftime(DATE_TIME_FORMAT))

    return Event(
        id=merge_ids(layer_id, item["id"]),
        title=item.get("content"),
        kind="event#basic",
        # tasks have no page of their own: link to the project
        link=f"https://en.todoist.com/app#project%2F{project_id}",
        start=start,
        end=end,
        status="cancelled" if item.get("in_history") == 1 else "confirmed",
    )


def format_patch(patch: EventPatch) -> Dict[str, Any]:
    output: Dict[str, Any] = {"content": patch.title}
    if patch.start is None:
        return output

    if patch.start.date_time is not None:
        parsed = parse_date_time(patch.start.date_time, "start.date_time").astimezone(timezone.utc)
        output["due_date_utc"] = parsed.strftime("%Y-%m-%dT%H:%M")
    elif patch.start.date is not None:
        parsed_date = parse_date(patch.start.date, "start.date")
        output["due_date_utc"] = f"{parsed_date.strftime(DATE_FORMAT)}T23:59:59"
    else:
        return output

    # Todoist ignores the value as long as one is set: `due_date_utc` wins
    output["date_string"] = "today"
    return output


def _find_item(todoist_res: Dict[str, Any], item_id: Any) -> Dict[str, Any]:
    for item in todoist_res.get("items", []):
        if str(item.get("id")) == str(item_id):
            return item
    raise KinError(f"item `{item_id}` missing from todoist sync response")


def _sync_form(resource_types: List[str], sync_token: str = TODOIST_FULL_SYNC_TOKEN, commands=None) -> Dict[str, Any]:
    form = {"resource_types": json.dumps(resource_types), "sync_token": sync_token}
    if commands is not None:
        form["commands"] = json.dumps(commands)
    return {"data": form}


async def load_layers(ctx: RequestContext, source: Source) -> List[Layer]:
    todoist_res = await execute(ctx, TODOIST, source.id, "sync", _sync_form(["projects"])) or {}
    return [format_layer(source.id, project) for project in todoist_res.get("projects", [])]


async def load_events(
    ctx: RequestContext,
    source: Source,
    layer_id: str,
    sync_token: Optional[str] = None,
) -> EventsPage:
    sync_token = sync_token or TODOIST_FULL_SYNC_TOKEN
    project_id = split_merged_id(layer_id)[1]
    todoist_res = await execute(ctx, TODOIST, source.id, "sync", _sync_form(["items"], sync_token)) or {}
    return EventsPage(
        events=[
            format_event(layer_id, item)
            for item in todoist_res.get("items", [])
            if str(item.get("project_id")) == project_id and item.get("due_date_utc") is not None
        ],
        sync_type="full" if sync_token == TODOIST_FULL_SYNC_TOKEN else "incremental",
        next_sync_token=todoist_res.get("sync_token"),
    )


async def create_event(
    ctx: RequestContext,
    source: Source,
    layer_id: str,
    patch: EventPatch,
    notify: bool = False,
) -> Event:
    project_id = split_merged_id(layer_id)[1]
    temp_id = str(uuid.uuid4())
    command = {
        "type": "item_add",
        "temp_id": temp_id,
        "uuid": str(uuid.uuid4()),
        "args": {**format_patch(patch), "project_id": project_id},
    }
    todoist_res = await execute(ctx, TODOIST, source.id, "sync", _sync_form(["items"], commands=[command])) or {}
    item_id = (todoist_res.get("temp_id_mapping") or {}).get(temp_id)
    return format_event(layer_id, _find_item(todoist_res, item_id))


async def patch_event(
    ctx: RequestContext,
    source: Source,
    event_id: str,
    patch: EventPatch,
    notify: bool = False,
) -> Event:
    source_id, project_id, item_id = split_merged_id(event_id)[:3]
    command = {
        "type": "item_update",
        "uuid": str(uuid.uuid4()),
        "args": {**format_patch(patch), "id": item_id},
    }
    todoist_res = await execute(ctx, TODOIST, source.id, "sync", _sync_form(["items"], commands=[command])) or {}
    return format_event(merge_ids(source_id, project_id), _find_item(todoist_res, item_id))


async def delete_event(ctx: RequestContext, source: Source, event_id: str, etag: Any = None) -> None:
    item_id = split_merged_id(event_id)[2]
    command = {"type": "item_delete", "uuid": str(uuid.uuid4()), "args": {"ids": [item_id]}}
    await execute(ctx, TODOIST, source.id, "sync", {"data": {"commands": json.dumps([command])}})


def is_configured() -> bool:
    return bool(config.todoist_client_id and config.todoist_client_secret)


CONNECTOR = Connector(
    name="todoist",
    display_name="Todoist",
    request=TODOIST,
    is_configured=is_configured,
    load_layers=load_layers,
    load_events=load_events,
    create_event=create_event,
    patch_event=patch_event,
    delete_event=delete_event,
)
