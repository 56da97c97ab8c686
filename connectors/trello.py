"""
Trello connector — boards are layers, cards with a pending due date are events.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import quote

from config.settings import config
from connectors.base import Connector, ProviderSpec, merge_options
from connectors.request import RequestContext, execute
from database.models import Source
from utils.dates import provider_date_time
from utils.errors import ProviderHTTPError
from utils.ids import merge_ids, split_merged_id
from utils.schemas import Acl, Event, EventPatch, EventsPage, EventTime, Layer

TRELLO_API_BASE_URL = "https://api.trello.com/1/"
TRELLO_API_TIMEOUT = 4.0
TRELLO_COLOR = "#026AA7"
MY_CARDS_LAYER_ID = "kin_my_cards"

_CARD_FIELDS = "id,name,desc,due,dueComplete,url"


def build_request_options(access_token: Optional[str], overrides: Dict[str, Any]) -> Dict[str, Any]:
    return merge_options(
        {
            "params": {"key": config.trello_key, "token": access_token, "filter": "open"},
            "timeout": TRELLO_API_TIMEOUT,
        },
        overrides,
    )


def is_invalid_creds_error(err: Exception) -> bool:
    """Trello answers 401 with a plain-text reason."""
    return (
        isinstance(err, ProviderHTTPError)
        and err.status_code == 401
        and isinstance(err.body, str)
        and err.body.strip() == "invalid token"
    )


TRELLO = ProviderSpec(
    name="trello",
    base_url=TRELLO_API_BASE_URL,
    timeout=TRELLO_API_TIMEOUT,
    build_request_options=build_request_options,
    is_invalid_creds_error=is_invalid_creds_error,
)

_CARD_ACL = Acl(edit=True, create=False, delete=True)


def format_layer(source_id: str, board: Dict[str, Any]) -> Layer:
    return Layer(
        id=merge_ids(source_id, board["id"]),
        title=board.get("name"),
        color=(board.get("prefs") or {}).get("backgroundColor") or TRELLO_COLOR,
        text_color="#FFFFFF",
        acl=_CARD_ACL,
        selected=False,
    )


def format_event(layer_id: str, card: Dict[str, Any]) -> Event:
    due = EventTime(date_time=provider_date_time(card["due"], "UTC"))
    return Event(
        id=merge_ids(layer_id, card["id"]),
        title=card.get("name"),
        description=card.get("desc"),
        link=card.get("url"),
        start=due,
        end=due,
        kind="event#basic",
    )


def format_patch(patch: EventPatch) -> Dict[str, Any]:
    output: Dict[str, Any] = {}
    if patch.title is not None:
        output["name"] = patch.title
    if patch.description is not None:
        output["desc"] = patch.description
    if patch.start is not None:
        output["due"] = patch.start.date_time or patch.start.date
    return output


def _pending_cards(layer_id: str, cards: List[Dict[str, Any]]) -> EventsPage:
    return EventsPage(
        events=[
            format_event(layer_id, card)
            for card in cards or []
            if card.get("due") and not card.get("dueComplete")
        ]
    )


async def load_layers(ctx: RequestContext, source: Source) -> List[Layer]:
    boards = await execute(ctx, TRELLO, source.id, "members/me/boards") or []
    my_cards = Layer(
        id=merge_ids(source.id, MY_CARDS_LAYER_ID),
        title="My Cards",
        color=TRELLO_COLOR,
        text_color="#FFFFFF",
        acl=_CARD_ACL,
        selected=True,
    )
    return [my_cards] + [format_layer(source.id, board) for board in boards]


async def load_events(
    ctx: RequestContext,
    source: Source,
    layer_id: str,
    sync_token: Optional[str] = None,
) -> EventsPage:
    board_id = split_merged_id(layer_id)[1]
    options = {"params": {"fields": _CARD_FIELDS}}
    if board_id == MY_CARDS_LAYER_ID:
        cards = await execute(ctx, TRELLO, source.id, "members/me/cards", options)
    else:
        cards = await execute(ctx, TRELLO, source.id, f"boards/{quote(board_id, safe='')}/cards", options)
    return _pending_cards(layer_id, cards)


async def patch_event(
    ctx: RequestContext,
    source: Source,
    event_id: str,
    patch: EventPatch,
    notify: bool = False,
) -> Event:
    source_id, board_id, card_id = split_merged_id(event_id)[:3]
    card = await execute(
        ctx, TRELLO, source.id, f"cards/{quote(card_id, safe='')}",
        {"method": "PUT", "json": format_patch(patch)},
    )
    return format_event(merge_ids(source_id, board_id), card)


async def delete_event(ctx: RequestContext, source: Source, event_id: str, etag: Any = None) -> None:
    card_id = split_merged_id(event_id)[2]
    await execute(ctx, TRELLO, source.id, f"cards/{quote(card_id, safe='')}", {"method": "DELETE"})


def is_configured() -> bool:
    return bool(config.trello_key and config.trello_secret)


CONNECTOR = Connector(
    name="trello",
    display_name="Trello",
    request=TRELLO,
    is_configured=is_configured,
    load_layers=load_layers,
    load_events=load_events,
    patch_event=patch_event,
    delete_event=delete_event,
)
