"""
Token manager — single-flight refresh of a source's OAuth tokens.

Only one worker may refresh a given (user, source) pair at a time.  The
claim is taken in the store by ``User.should_refresh`` (server-side
check-and-set on the source's ``status``); whoever loses the claim backs
off and reloads the user to pick up the winner's tokens.

A failed refresh puts the source back to ``connected`` before the error
propagates, otherwise every later call would see "already refreshing"
forever.
"""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Dict, Optional

from database.models import Source, SourceStatus
from database.users import User
from utils.errors import ProviderHTTPError

if TYPE_CHECKING:
    from connectors.base import ProviderSpec
    from connectors.request import RequestContext

logger = logging.getLogger(__name__)


class RefreshSignal(IntEnum):
    CAN_REFRESH = 0
    ALREADY_REFRESHING = 1


async def claim_refresh(user: User, source_id: str) -> RefreshSignal:
    return RefreshSignal(await user.should_refresh(source_id))


async def refresh_source(ctx: "RequestContext", spec: "ProviderSpec", source_id: str) -> None:
    """
    Run the provider's refresh grant for a source this worker has claimed,
    then persist the outcome.
    """
    source = ctx.user.get_source(source_id)
    logger.debug("%s refreshing token for user `%s` and source `%s`", ctx.id, ctx.user.id, source_id)
    try:
        await spec.refresh_token(ctx, source)
    except Exception:
        logger.warning("%s failed to refresh token for source `%s`", ctx.id, source_id)
        source.status = SourceStatus.CONNECTED
        ctx.user.set_source(source)
        await ctx.user.save()
        raise

    source.status = SourceStatus.CONNECTED
    ctx.user.set_source(source)
    await ctx.user.save()
    logger.debug("%s token refreshed for source `%s`", ctx.id, source_id)


async def exchange_refresh_token(
    ctx: "RequestContext",
    source: Source,
    token_url: str,
    *,
    data: Optional[Dict[str, Any]] = None,
    params: Optional[Dict[str, Any]] = None,
    timeout: float = 4.0,
    rotates: bool = False,
) -> Dict[str, Any]:
    """
    POST an OAuth ``refresh_token`` grant and store the new tokens on ``source``.

    ``rotates`` marks providers that hand out a new refresh token with
    every access token.
    """
    ctx.nb_reqs_out += 1
    logger.debug("%s OUT `%d` POST %s", ctx.id, ctx.nb_reqs_out, token_url)
    response = await ctx.client.post(
        token_url,
        data=data,
        params=params,
        headers={"Accept": "application/json"},
        timeout=timeout,
    )
    try:
        body = response.json()
    except ValueError:
        body = response.text
    if response.is_error:
        raise ProviderHTTPError(response.status_code, body, token_url, "POST")

    source.access_token = body["access_token"]
    if rotates and body.get("refresh_token"):
        source.refresh_token = body["refresh_token"]
    source.status = SourceStatus.CONNECTED
    return body
