"""
REST API routes — user profile, layers and events.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from api.dependencies import get_context
from connectors.request import RequestContext
from connectors.sources import get_connector, validate_source
from database.session import ping as store_ping
from utils.ids import split_merged_id
from utils.schemas import DeleteEventBody, EventPatch, LayerPatch, UserPatch, dump

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/ping")
async def ping() -> JSONResponse:
    """Liveness of the API and of its store."""
    if await store_ping():
        return JSONResponse({"status": "ok"})
    return JSONResponse({"status": "down"}, status_code=503)


# ── User ───────────────────────────────────────────────────────────────


@router.get("/user")
async def get_user(ctx: RequestContext = Depends(get_context)) -> Dict[str, Any]:
    return ctx.user.to_public()


@router.patch("/user")
async def patch_user(
    patch: UserPatch,
    ctx: RequestContext = Depends(get_context),
) -> Dict[str, Any]:
    """Update the preferences present in the body; invalid values fail with ``InvalidFormat``."""
    user = ctx.user
    if patch.display_name:
        user.display_name = patch.display_name
    if patch.timezone is not None:
        user.timezone = patch.timezone
    if patch.first_day is not None:
        user.first_day = patch.first_day
    if patch.default_view is not None:
        user.default_view = patch.default_view
    if patch.default_calendar_id:
        user.default_calendar_id = patch.default_calendar_id
    logger.debug("%s patched user `%s`", ctx.id, user.id)
    return user.to_public()


# ── Layers ─────────────────────────────────────────────────────────────


@router.patch("/layers/{layer_id}")
async def patch_layer(
    layer_id: str,
    patch: LayerPatch,
    ctx: RequestContext = Depends(get_context),
) -> bool:
    source_id = split_merged_id(layer_id)[0]
    updated = False
    if ctx.user.get_source(source_id) is not None and isinstance(patch.selected, bool):
        updated = ctx.user.toggle_selected_layer(layer_id, patch.selected)
    logger.debug("%s patched layer `%s`: selected=%s", ctx.id, layer_id, patch.selected)
    return updated


@router.get("/layers/{layer_id}/events")
async def load_events(
    layer_id: str,
    sync_token: Optional[str] = None,
    ctx: RequestContext = Depends(get_context),
) -> Dict[str, Any]:
    source_id = split_merged_id(layer_id)[0]
    source = validate_source(ctx.user, source_id)
    connector = get_connector(source_id, "load_events")

    page = await connector.load_events(ctx, source, layer_id, sync_token)
    logger.debug(
        "%s loaded `%d` events in layer `%s` for user `%s`",
        ctx.id, len(page.events), layer_id, ctx.user.id,
    )
    return dump(page)


@router.post("/layers/{layer_id}/events")
async def create_event(
    layer_id: str,
    patch: EventPatch,
    notify: bool = False,
    ctx: RequestContext = Depends(get_context),
) -> Dict[str, Any]:
    source_id = split_merged_id(layer_id)[0]
    source = validate_source(ctx.user, source_id)
    connector = get_connector(source_id, "create_event")

    event = await connector.create_event(ctx, source, layer_id, patch, notify)
    logger.debug("%s created event `%s` for user `%s`", ctx.id, event.id, ctx.user.id)
    return {"event": dump(event)}


# ── Events ─────────────────────────────────────────────────────────────


@router.patch("/events/{event_id}")
async def patch_event(
    event_id: str,
    patch: EventPatch,
    notify: bool = False,
    ctx: RequestContext = Depends(get_context),
) -> Dict[str, Any]:
    source_id = split_merged_id(event_id)[0]
    source = validate_source(ctx.user, source_id)
    connector = get_connector(source_id, "patch_event")

    event = await connector.patch_event(ctx, source, event_id, patch, notify)
    logger.debug("%s updated event `%s` for user `%s`", ctx.id, event.id, ctx.user.id)
    return {"event": dump(event)}


@router.delete("/events/{event_id}")
async def delete_event(
    event_id: str,
    body: Optional[DeleteEventBody] = Body(default=None),
    ctx: RequestContext = Depends(get_context),
) -> bool:
    source_id = split_merged_id(event_id)[0]
    source = validate_source(ctx.user, source_id)
    connector = get_connector(source_id, "delete_event")

    await connector.delete_event(ctx, source, event_id, body.etag if body else None)
    logger.debug("%s deleted event `%s` for user `%s`", ctx.id, event_id, ctx.user.id)
    return True
