"""
Session token creation and verification.

Tokens are base64-encoded JSON payloads ``{user_id, sid, exp}`` signed
with HMAC-SHA256.  The session id is also registered in the store
(``session:{sid}`` → user id, with a TTL) so a logout can revoke a token
before it expires.  Secret key is loaded from ``config.jwt_secret``
(env var: ``JWT_SECRET``).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
import uuid
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Any, Dict

from config.settings import config
from database.models import session_key
from database.session import get_redis
from utils.errors import Unauthenticated

logger = logging.getLogger(__name__)


def _sign(raw: bytes) -> str:
    return hmac.new(config.jwt_secret.encode(), raw, hashlib.sha256).hexdigest()


def _decode(token: str) -> Dict[str, Any]:
    """Check the signature and expiry of ``token`` and return its payload."""
    try:
        encoded, sig = token.split(".", 1)
        raw = urlsafe_b64decode(encoded.encode())
    except (ValueError, AttributeError):
        raise Unauthenticated() from None
    if not hmac.compare_digest(sig, _sign(raw)):
        raise Unauthenticated()
    try:
        payload = json.loads(raw)
    except ValueError:
        raise Unauthenticated() from None
    if not isinstance(payload, dict) or payload.get("exp", 0) < time.time():
        raise Unauthenticated()
    if not payload.get("user_id") or not payload.get("sid"):
        raise Unauthenticated()
    return payload


async def create_session(user_id: str) -> str:
    """Register a new session for ``user_id`` and return its signed token."""
    sid = uuid.uuid4().hex
    ttl = config.session_ttl_seconds
    payload = {"user_id": user_id, "sid": sid, "exp": int(time.time()) + ttl}
    await get_redis().set(session_key(sid), user_id, ex=ttl)

    raw = json.dumps(payload).encode()
    return urlsafe_b64encode(raw).decode() + "." + _sign(raw)


async def verify_session(token: str) -> Dict[str, Any]:
    """
    Verify ``token`` and return its payload.

    Raises ``Unauthenticated`` on a bad signature, an expired token or a
    revoked session.
    """
    payload = _decode(token)
    owner = await get_redis().get(session_key(payload["sid"]))
    if owner != payload["user_id"]:
        raise Unauthenticated()
    return payload


async def revoke_session(sid: str) -> None:
    await get_redis().delete(session_key(sid))
    logger.debug("Revoked session %s", sid)
