"""
GitHub connector — repositories are layers, milestones are all-day events.

Repository full names contain a ``/`` which would break the route paths,
so it is swapped for a ``\\`` inside layer and event ids.
"""

from __future__ import annotations

from datetime import timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from config.settings import config
from connectors.base import Connector, ProviderSpec, is_unauthorized, merge_options
from connectors.request import RequestContext, execute
from database.models import Source
from utils.dates import provider_date
from utils.errors import LayerNotFound, ProviderHTTPError
from utils.ids import merge_ids, split_merged_id
from utils.schemas import Acl, Event, EventPatch, EventsPage, EventTime, Layer
from utils.validators import parse_date, parse_date_time

GITHUB_API_BASE_URL = "https://api.github.com/"
GITHUB_API_TIMEOUT = 4.0
GITHUB_COLOR = "#000000"


def build_request_options(access_token: Optional[str], overrides: Dict[str, Any]) -> Dict[str, Any]:
    return merge_options(
        {
            "headers": {
                "Authorization": f"token {access_token}",
                "User-Agent": "Kin Calendar",
            },
            "timeout": GITHUB_API_TIMEOUT,
        },
        overrides,
    )


GITHUB = ProviderSpec(
    name="github",
    base_url=GITHUB_API_BASE_URL,
    timeout=GITHUB_API_TIMEOUT,
    build_request_options=build_request_options,
    is_invalid_creds_error=is_unauthorized,
)


def normalize_repo_id(full_name: str) -> str:
    return full_name.replace("/", "\\")


def unnormalize_repo_id(repo_id: str) -> str:
    return repo_id.replace("\\", "/")


def format_layer(source_id: str, repo: Dict[str, Any]) -> Layer:
    return Layer(
        id=merge_ids(source_id, normalize_repo_id(repo["full_name"])),
        title=repo.get("name"),
        color=GITHUB_COLOR,
        text_color="#FFFFFF",
        acl=Acl(edit=True, create=True, delete=True),
        selected=False,
    )


def format_event(layer_id: str, milestone: Dict[str, Any]) -> Event:
    event = Event(
        id=merge_ids(layer_id, milestone["number"]),
        title=milestone.get("title"),
        description=milestone.get("description"),
        link=milestone.get("html_url"),
        kind="event#basic",
    )
    if milestone.get("due_on"):
        event.start = EventTime(date=provider_date(milestone["due_on"], "UTC"))
        event.end = EventTime(date=provider_date(milestone["due_on"], "UTC", plus_days=1))
    return event


def format_patch(patch: EventPatch) -> Dict[str, Any]:
    output: Dict[str, Any] = {}
    if patch.title is not None:
        output["title"] = patch.title
    if patch.description is not None:
        output["description"] = patch.description
    if patch.start is not None:
        if patch.start.date_time is not None:
            day = parse_date_time(patch.start.date_time, "start.date_time").astimezone(timezone.utc).date()
        elif patch.start.date is not None:
            day = parse_date(patch.start.date, "start.date")
        else:
            return output
        # GitHub shows milestones due the day before `due_on`
        output["due_on"] = f"{(day + timedelta(days=1)).isoformat()}T00:00:00Z"
    return output


def _milestones_path(repo_id: str, number: Optional[str] = None) -> str:
    path = f"repos/{unnormalize_repo_id(repo_id)}/milestones"
    if number is not None:
        path += f"/{quote(str(number), safe='')}"
    return path


async def load_layers(ctx: RequestContext, source: Source) -> List[Layer]:
    repos = await execute(ctx, GITHUB, source.id, "user/repos") or []
    return [format_layer(source.id, repo) for repo in repos]


async def load_events(
    ctx: RequestContext,
    source: Source,
    layer_id: str,
    sync_token: Optional[str] = None,
) -> EventsPage:
    repo_id = split_merged_id(layer_id)[1]
    try:
        milestones = await execute(ctx, GITHUB, source.id, _milestones_path(repo_id)) or []
    except ProviderHTTPError as err:
        if err.status_code == 404:
            raise LayerNotFound(layer_id) from err
        raise
    return EventsPage(events=[format_event(layer_id, milestone) for milestone in milestones])


async def create_event(
    ctx: RequestContext,
    source: Source,
    layer_id: str,
    patch: EventPatch,
    notify: bool = False,
) -> Event:
    repo_id = split_merged_id(layer_id)[1]
    milestone = await execute(
        ctx, GITHUB, source.id, _milestones_path(repo_id),
        {"method": "POST", "json": format_patch(patch)},
    )
    return format_event(layer_id, milestone)


async def patch_event(
    ctx: RequestContext,
    source: Source,
    event_id: str,
    patch: EventPatch,
    notify: bool = False,
) -> Event:
    source_id, repo_id, number = split_merged_id(event_id)[:3]
    milestone = await execute(
        ctx, GITHUB, source.id, _milestones_path(repo_id, number),
        {"method": "PATCH", "json": format_patch(patch)},
    )
    return format_event(merge_ids(source_id, repo_id), milestone)


async def delete_event(ctx: RequestContext, source: Source, event_id: str, etag: Any = None) -> None:
    repo_id, number = split_merged_id(event_id)[1:3]
    await execute(ctx, GITHUB, source.id, _milestones_path(repo_id, number), {"method": "DELETE"})


def is_configured() -> bool:
    return bool(config.github_client_id and config.github_client_secret)


CONNECTOR = Connector(
    name="github",
    display_name="GitHub",
    request=GITHUB,
    is_configured=is_configured,
    load_layers=load_layers,
    load_events=load_events,
    create_event=create_event,
    patch_event=patch_event,
    delete_event=delete_event,
)
