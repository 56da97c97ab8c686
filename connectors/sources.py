"""
Source lifecycle — create, link, validate and de-authorize provider accounts.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel, Field

from connectors.registry import ConnectorRegistry
from connectors.request import RequestContext
from database.models import Source
from database.users import User
from utils.errors import ActionNotSupported, DisconnectedSource, ProviderHTTPError, SourceNotFound
from utils.ids import get_source_id

logger = logging.getLogger(__name__)


class OAuthProfile(BaseModel):
    """Identity returned by a provider at the end of an OAuth handshake."""

    provider: str
    id: str
    display_name: Optional[str] = None
    emails: List[str] = Field(default_factory=list)

    @property
    def source_id(self) -> str:
        return get_source_id(self.provider, self.id)


class OAuthTokens(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None


def create_source(profile: OAuthProfile, access_token: str, refresh_token: Optional[str] = None) -> Source:
    return Source.create(
        profile.source_id,
        access_token,
        refresh_token=refresh_token,
        display_name=profile.display_name,
        email=profile.emails[0] if profile.emails else None,
    )


def get_connector(source_id: str, action: Optional[str] = None):
    """Connector owning ``source_id``; ``ActionNotSupported`` when it lacks ``action``."""
    connector = ConnectorRegistry().get_for_source(source_id)
    if connector is None:
        raise SourceNotFound(source_id)
    if action is not None and not connector.supports(action):
        raise ActionNotSupported(action.replace("_", " "), connector.name)
    return connector


def validate_source(user: User, source_id: str) -> Source:
    """Pre-flight for every route acting on a source."""
    source = user.get_source(source_id)
    if source is None:
        raise SourceNotFound(source_id)
    if source.is_disconnected:
        raise DisconnectedSource(source_id)
    return source


async def autoload_all_selected_layers(ctx: RequestContext, source: Source) -> None:
    """Select the layers the provider flags as shown by default."""
    connector = get_connector(source.id)
    if connector.load_layers is None:
        return
    for layer in await connector.load_layers(ctx, source):
        if layer.selected:
            ctx.user.toggle_selected_layer(layer.id, True)


async def run_after_link(ctx: RequestContext, source: Source) -> None:
    """Defaults every freshly linked source gets, plus provider extras."""
    connector = get_connector(source.id)
    await autoload_all_selected_layers(ctx, source)
    if connector.after_link is not None:
        await connector.after_link(ctx, source)


async def link_source(ctx: RequestContext, source: Source) -> None:
    """
    Claim ``source`` for ``ctx.user`` and run the after-link defaults.

    When the defaults fail on a source the user did not have yet, the alias
    is released and the source forgotten before the error propagates.
    """
    is_new = ctx.user.get_source(source.id) is None
    await ctx.user.add_source(source, with_alias=True)
    try:
        await run_after_link(ctx, source)
    except Exception as err:
        if is_new:
            logger.warning("%s could not link source `%s`: %s", ctx.id, source.id, err)
            ctx.user.discard_source(source.id)
            await User.delete_alias(source.id)
        raise


async def save_source(ctx: RequestContext, profile: OAuthProfile, tokens: OAuthTokens) -> Source:
    """
    Link a new provider account to the current user.

    The account's alias is claimed first: ``SourceAlreadyUsed`` leaves the
    user untouched when another user already owns it.  The caller saves.
    """
    source = create_source(profile, tokens.access_token, tokens.refresh_token)
    await link_source(ctx, source)
    logger.debug("%s added source `%s` to user `%s`", ctx.id, source.id, ctx.user.id)
    return source


async def deauth_source(ctx: RequestContext, source: Source) -> None:
    """Revoke at the provider (best effort), then detach and persist."""
    connector = get_connector(source.id)
    if connector.revoke_token is not None and not source.is_disconnected:
        try:
            await connector.revoke_token(ctx, source)
        except (ProviderHTTPError, httpx.HTTPError, DisconnectedSource) as err:
            logger.warning("%s could not revoke source `%s`: %s", ctx.id, source.id, err)

    await ctx.user.delete_source(source)
    await ctx.user.save()
    logger.debug("%s removed source `%s` from user `%s`", ctx.id, source.id, ctx.user.id)
