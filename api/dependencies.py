"""
FastAPI dependencies (shared across routes).
"""

from __future__ import annotations

import logging
from typing import Any, AsyncGenerator, Dict

from fastapi import Depends, Request

from auth.dependencies import get_current_session
from connectors.request import RequestContext, new_request_id
from database.users import User

logger = logging.getLogger(__name__)


def get_request_id(request: Request) -> str:
    """Correlation id set by the middleware (a fresh one outside of it)."""
    return getattr(request.state, "request_id", None) or new_request_id()


async def get_context(
    request: Request,
    session: Dict[str, Any] = Depends(get_current_session),
) -> AsyncGenerator[RequestContext, None]:
    """
    Load the session's user into a fresh request context.

    Whatever the handler (or the provider engine) changed on the user is
    saved once the handler returns successfully.
    """
    ctx = RequestContext(user=await User.load(session["user_id"]), id=get_request_id(request))
    request.state.ctx = ctx
    yield ctx

    if ctx.user is not None and ctx.user.dirty:
        await ctx.user.save()
        logger.debug("%s saved dirty user `%s`", ctx.id, ctx.user.id)
