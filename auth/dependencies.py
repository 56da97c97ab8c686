"""
FastAPI dependencies for authentication.

Provides ``get_current_session`` which every protected route depends on,
directly or through the request context.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auth.jwt import verify_session
from utils.errors import Unauthenticated

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> Dict[str, Any]:
    """
    Extract and verify the Bearer token, returning the session payload
    (``user_id``, ``sid``, ``exp``).
    """
    if credentials is None:
        raise Unauthenticated()
    return await verify_session(credentials.credentials)
