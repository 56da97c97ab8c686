"""
Stored shapes and key layout of the user / source store.

    {user_id}:misc             hash of scalar user fields (strings)
    {user_id}:sources          hash source_id -> Source JSON
    {user_id}:selected_layers  hash layer_id -> "true" / "false"
    alias:{source_id}          owning user id
    session:{sid}              user id of a login session (expires)
"""

from __future__ import annotations

import json
import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel

from connectors.encryption import decrypt_token, encrypt_token


def misc_key(user_id: str) -> str:
    return f"{user_id}:misc"


def sources_key(user_id: str) -> str:
    return f"{user_id}:sources"


def selected_layers_key(user_id: str) -> str:
    return f"{user_id}:selected_layers"


def alias_key(source_id: str) -> str:
    return f"alias:{source_id}"


def session_key(sid: str) -> str:
    return f"session:{sid}"


class SourceStatus(str, Enum):
    CONNECTED = "connected"
    REFRESHING = "refreshing"
    DISCONNECTED = "disconnected"


class Source(BaseModel):
    """A linked provider account, tokens included."""

    # Providers attach their own extras (e.g. google `colors`)
    model_config = {"extra": "allow"}

    id: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    status: SourceStatus = SourceStatus.CONNECTED
    created_at: int = 0
    display_name: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def create(
        cls,
        source_id: str,
        access_token: Optional[str],
        refresh_token: Optional[str] = None,
        display_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> "Source":
        return cls(
            id=source_id,
            access_token=access_token,
            refresh_token=refresh_token,
            status=SourceStatus.CONNECTED,
            created_at=int(time.time()),
            display_name=display_name,
            email=email,
        )

    @property
    def is_disconnected(self) -> bool:
        return self.status == SourceStatus.DISCONNECTED

    def to_store(self) -> str:
        data = self.model_dump(mode="json", exclude_none=True)
        for field in ("access_token", "refresh_token"):
            if data.get(field):
                data[field] = encrypt_token(data[field])
        return json.dumps(data)

    @classmethod
    def from_store(cls, raw: str) -> "Source":
        data = json.loads(raw)
        for field in ("access_token", "refresh_token"):
            if data.get(field):
                data[field] = decrypt_token(data[field])
        return cls.model_validate(data)

    def to_public(self) -> Dict[str, Any]:
        """Client view: everything but the credentials."""
        return self.model_dump(mode="json", exclude_none=True, exclude={"access_token", "refresh_token"})
