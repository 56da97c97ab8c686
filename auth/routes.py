"""
Auth API routes — logout.

Route prefix: /1.0/authentication
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from auth.dependencies import get_current_session
from auth.jwt import revoke_session
from config.settings import config

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


@router.post("/logout")
async def logout(session: Dict[str, Any] = Depends(get_current_session)) -> Dict[str, Any]:
    """Revoke the current session token."""
    await revoke_session(session["sid"])
    logger.info("Logout: %s", session["user_id"])
    return {"redirect": config.static_url}
