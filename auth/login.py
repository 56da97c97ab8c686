"""
Login-or-link: turn the outcome of a provider OAuth handshake into a user.

The handshake itself (redirects, code exchange) belongs to the provider
SDKs; this module starts from the authenticated profile and its tokens.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from auth.jwt import create_session
from config.settings import config
from connectors.request import RequestContext
from connectors.sources import OAuthProfile, OAuthTokens, create_source, link_source
from database.users import User, lookup_user

logger = logging.getLogger(__name__)


async def save_token(ctx: RequestContext, profile: OAuthProfile, tokens: OAuthTokens) -> User:
    """
    Log in the owner of ``profile``'s account, creating the user on first login.

    A new user's id is the login source id.  For a returning user the
    stored source is refreshed with the new tokens, keeping any extra
    data attached to it.  The user is saved either way.
    """
    source = create_source(profile, tokens.access_token, tokens.refresh_token)
    user = await lookup_user(source.id)

    if user is None:
        user = User.new(source.id, display_name=profile.display_name)
        ctx.user = user
        await link_source(ctx, source)
        logger.info("%s created user `%s`", ctx.id, user.id)
    else:
        ctx.user = user
        previous = user.get_source(source.id)
        if previous is not None:
            merged = previous.model_dump()
            merged.update(source.model_dump(exclude_none=True, exclude={"created_at"}))
            source = type(source).model_validate(merged)
        user.set_source(source)

    await ctx.user.save()
    logger.debug("%s saved dirty user `%s`", ctx.id, ctx.user.id)
    return ctx.user


async def end_authentication(user: User) -> Dict[str, Any]:
    """Open a session for ``user`` and tell the client where to go next."""
    token = await create_session(user.id)
    return {
        "redirect": f"{config.static_url}#token={token}",
        "token": token,
    }
