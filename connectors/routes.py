"""
Source API routes — list linked accounts, their layers, places, contacts,
and unlink.

Route prefix: /1.0/sources
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from api.dependencies import get_context
from connectors.request import RequestContext
from connectors.sources import deauth_source, get_connector, validate_source
from utils.errors import SourceNotFound
from utils.schemas import dump

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sources"])


@router.get("")
async def list_sources(ctx: RequestContext = Depends(get_context)) -> Dict[str, Any]:
    """All linked sources, credentials stripped."""
    return {"sources": {sid: source.to_public() for sid, source in ctx.user.sources.items()}}


@router.get("/{source_id}/layers")
async def load_layers(source_id: str, ctx: RequestContext = Depends(get_context)) -> Dict[str, Any]:
    source = validate_source(ctx.user, source_id)
    connector = get_connector(source_id, "load_layers")

    layers = await connector.load_layers(ctx, source)
    for layer in layers:
        # the user's own selection wins over the provider default
        layer.selected = ctx.user.is_layer_selected(layer.id)
    logger.debug(
        "%s loaded `%d` layers in source `%s` for user `%s`",
        ctx.id, len(layers), source_id, ctx.user.id,
    )
    return {"layers": [dump(layer) for layer in layers]}


@router.get("/{source_id}/places")
async def load_places(
    source_id: str,
    input: str = "",
    ctx: RequestContext = Depends(get_context),
) -> Dict[str, Any]:
    source = validate_source(ctx.user, source_id)
    connector = get_connector(source_id, "load_places")

    places = await connector.load_places(ctx, source, input)
    logger.debug(
        "%s loaded `%d` places in source `%s` for user `%s`",
        ctx.id, len(places), source_id, ctx.user.id,
    )
    return {"places": [dump(place) for place in places]}


@router.get("/{source_id}/contacts")
async def load_contacts(
    source_id: str,
    input: str = "",
    ctx: RequestContext = Depends(get_context),
) -> Dict[str, Any]:
    source = validate_source(ctx.user, source_id)
    connector = get_connector(source_id, "load_contacts")

    contacts = await connector.load_contacts(ctx, source, input)
    logger.debug(
        "%s loaded `%d` contacts in source `%s` for user `%s`",
        ctx.id, len(contacts), source_id, ctx.user.id,
    )
    return {"contacts": [dump(contact) for contact in contacts]}


@router.delete("/{source_id}")
async def delete_source(source_id: str, ctx: RequestContext = Depends(get_context)) -> bool:
    """Unlink a source; disconnected sources can be removed too."""
    source = ctx.user.get_source(source_id)
    if source is None:
        raise SourceNotFound(source_id)
    await deauth_source(ctx, source)
    return True
