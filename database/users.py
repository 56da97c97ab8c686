"""
User aggregate — profile fields, linked sources and layer selection.

A ``User`` is loaded once per request, mutated in place by route handlers
and by the provider request engine, then persisted with ``save()``.
``save()`` only writes the sub-structures that changed since the last
load / save:

  • misc fields        → one HSET on ``{id}:misc``
  • toggled layers     → one HSET on ``{id}:selected_layers``
  • added sources      → one HSET on ``{id}:sources``
  • deleted sources    → one HDEL on ``{id}:sources``

The writes are independent (no multi-key transaction).
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional, Set

from database.models import (
    Source,
    alias_key,
    misc_key,
    selected_layers_key,
    sources_key,
)
from database.session import get_redis, get_should_refresh_script
from utils.errors import InvalidFormat, SourceAlreadyUsed, SourceNotFound, Unauthenticated
from utils.validators import ACCEPTED_DEFAULT_VIEWS, ACCEPTED_FIRST_DAYS, is_valid_timezone

logger = logging.getLogger(__name__)

DEFAULT_MISC: Dict[str, Any] = {
    "display_name": "John Doe",
    "timezone": "",
    "first_day": 0,
    "default_view": "month",
    "default_calendar_id": "",
    "plan": None,
    "plan_expiration": -1,
    "created_at": 0,
    "updated_at": 0,
}

_INT_FIELDS = ("first_day", "plan_expiration", "created_at", "updated_at")


def _decode_misc(raw: Dict[str, str]) -> Dict[str, Any]:
    """Store hashes only hold strings: restore the typed values."""
    misc = dict(DEFAULT_MISC)
    for key in DEFAULT_MISC:
        if key in raw:
            misc[key] = raw[key]
    for key in _INT_FIELDS:
        try:
            misc[key] = int(misc[key])
        except (TypeError, ValueError):
            misc[key] = DEFAULT_MISC[key]
    if misc["plan"] == "":
        misc["plan"] = None
    return misc


def _encode_misc(misc: Dict[str, Any]) -> Dict[str, str]:
    return {key: "" if value is None else str(value) for key, value in misc.items()}


class User:
    def __init__(
        self,
        user_id: str,
        misc: Optional[Dict[str, Any]] = None,
        sources: Optional[Dict[str, Source]] = None,
        selected_layers: Optional[Dict[str, bool]] = None,
    ):
        self._id = user_id
        self._misc = dict(DEFAULT_MISC)
        self._misc.update(misc or {})
        self._sources: Dict[str, Source] = sources or {}
        self._selected_layers: Dict[str, bool] = selected_layers or {}

        self._misc_dirty = False
        self._changed_layers: Set[str] = set()
        self._added_sources_id: Set[str] = set()
        self._deleted_sources_id: Set[str] = set()

    # ── Loading ─────────────────────────────────────────────────────────

    @classmethod
    def new(cls, user_id: str, display_name: Optional[str] = None) -> "User":
        """A user that does not exist in the store yet; its misc is dirty."""
        user = cls(user_id)
        if display_name:
            user._misc["display_name"] = display_name
        user._misc_dirty = True
        return user

    @classmethod
    async def find(cls, user_id: Optional[str]) -> Optional["User"]:
        """Load a user, or ``None`` when no profile is stored for ``user_id``."""
        if not user_id:
            return None

        client = get_redis()
        raw_misc, raw_sources, raw_layers = await asyncio.gather(
            client.hgetall(misc_key(user_id)),
            client.hgetall(sources_key(user_id)),
            client.hgetall(selected_layers_key(user_id)),
        )
        if not raw_misc:
            return None

        sources = {sid: Source.from_store(raw) for sid, raw in raw_sources.items()}
        selected_layers = {lid: bool(json.loads(raw)) for lid, raw in raw_layers.items()}
        return cls(user_id, _decode_misc(raw_misc), sources, selected_layers)

    @classmethod
    async def load(cls, user_id: Optional[str]) -> "User":
        """Load a user, failing with ``Unauthenticated`` when it is not stored."""
        user = await cls.find(user_id)
        if user is None:
            raise Unauthenticated()
        return user

    async def reload(self) -> "User":
        return await User.load(self._id)

    # ── Aliases ─────────────────────────────────────────────────────────

    @staticmethod
    async def get_alias(source_id: str) -> Optional[str]:
        """Id of the user owning ``source_id``, if any."""
        return await get_redis().get(alias_key(source_id))

    @staticmethod
    async def create_alias(source_id: str, user_id: str) -> bool:
        """Claim ``source_id`` for ``user_id``; False when it is already claimed."""
        return bool(await get_redis().set(alias_key(source_id), user_id, nx=True))

    @staticmethod
    async def delete_alias(source_id: str) -> None:
        await get_redis().delete(alias_key(source_id))

    # ── Profile fields ──────────────────────────────────────────────────

    @property
    def id(self) -> str:
        return self._id

    @property
    def dirty(self) -> bool:
        return bool(
            self._misc_dirty
            or self._changed_layers
            or self._added_sources_id
            or self._deleted_sources_id
        )

    @property
    def created_at(self) -> int:
        return self._misc["created_at"]

    @property
    def updated_at(self) -> int:
        return self._misc["updated_at"]

    def _set_misc(self, key: str, value: Any) -> None:
        if self._misc.get(key) == value:
            return
        self._misc[key] = value
        self._misc_dirty = True

    @property
    def display_name(self) -> str:
        return self._misc["display_name"]

    @display_name.setter
    def display_name(self, value: str) -> None:
        self._set_misc("display_name", value)

    @property
    def timezone(self) -> str:
        return self._misc["timezone"]

    @timezone.setter
    def timezone(self, value: str) -> None:
        if value == self.timezone:
            return
        if not isinstance(value, str) or not is_valid_timezone(value):
            raise InvalidFormat(value, "timezone", "not in tz database")
        self._set_misc("timezone", value)

    @property
    def first_day(self) -> int:
        return self._misc["first_day"]

    @first_day.setter
    def first_day(self, value: int) -> None:
        if value == self.first_day and not isinstance(value, bool):
            return
        if isinstance(value, bool) or value not in ACCEPTED_FIRST_DAYS:
            raise InvalidFormat(value, "first_day", f"one of {list(ACCEPTED_FIRST_DAYS)}")
        self._set_misc("first_day", value)

    @property
    def default_view(self) -> str:
        return self._misc["default_view"]

    @default_view.setter
    def default_view(self, value: str) -> None:
        if value == self.default_view:
            return
        if value not in ACCEPTED_DEFAULT_VIEWS:
            raise InvalidFormat(value, "default_view", f"not in {list(ACCEPTED_DEFAULT_VIEWS)}")
        self._set_misc("default_view", value)

    @property
    def default_calendar_id(self) -> str:
        return self._misc["default_calendar_id"]

    @default_calendar_id.setter
    def default_calendar_id(self, value: str) -> None:
        self._set_misc("default_calendar_id", value)

    @property
    def plan(self) -> Optional[str]:
        return self._misc["plan"]

    @plan.setter
    def plan(self, value: Optional[str]) -> None:
        self._set_misc("plan", value)

    @property
    def plan_expiration(self) -> int:
        return self._misc["plan_expiration"]

    @plan_expiration.setter
    def plan_expiration(self, value: int) -> None:
        self._set_misc("plan_expiration", value)

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self._id,
            "display_name": self.display_name,
            "timezone": self.timezone,
            "first_day": self.first_day,
            "default_view": self.default_view,
            "default_calendar_id": self.default_calendar_id,
            "plan": self.plan,
            "plan_expiration": self.plan_expiration,
        }

    # ── Sources ─────────────────────────────────────────────────────────

    @property
    def sources(self) -> Dict[str, Source]:
        return self._sources

    def get_source(self, source_id: str) -> Optional[Source]:
        return self._sources.get(source_id)

    async def add_source(self, source: Source, with_alias: bool = False) -> None:
        """
        Attach (or overwrite) ``source``.

        With ``with_alias`` the source's global identity is claimed for this
        user first; ``SourceAlreadyUsed`` is raised, and nothing is mutated,
        when another user already owns it.
        """
        if with_alias:
            owner = await User.get_alias(source.id)
            if owner is None and not await User.create_alias(source.id, self._id):
                # Someone claimed it between our read and our write
                owner = await User.get_alias(source.id)
            if owner is not None and owner != self._id:
                raise SourceAlreadyUsed(source.id)
        self.set_source(source)

    def set_source(self, source: Source) -> None:
        """Attach ``source`` in memory, scheduling it for the next save."""
        self._sources[source.id] = source
        self._added_sources_id.add(source.id)
        self._deleted_sources_id.discard(source.id)

    async def delete_source(self, source: Source) -> None:
        if source.id not in self._sources:
            raise SourceNotFound(source.id)

        # The login source owns the user itself: its alias stays
        if source.id != self._id:
            await User.delete_alias(source.id)

        del self._sources[source.id]
        self._added_sources_id.discard(source.id)
        self._deleted_sources_id.add(source.id)

    def discard_source(self, source_id: str) -> None:
        """Forget an unsaved source and its layer selections; nothing is deleted from the store."""
        self._sources.pop(source_id, None)
        self._added_sources_id.discard(source_id)
        prefix = source_id + ":"
        for layer_id in [lid for lid in self._changed_layers if lid.startswith(prefix)]:
            self._changed_layers.discard(layer_id)
            self._selected_layers.pop(layer_id, None)

    async def should_refresh(self, source_id: str) -> int:
        """
        Atomically move ``source_id`` to ``refreshing`` if it is connected.

        Returns 0 when this caller may refresh, 1 when another one already is.
        A source that is not stored yet (still being linked) returns 0.
        """
        script = get_should_refresh_script()
        return int(await script(keys=[sources_key(self._id), source_id]))

    # ── Layers ──────────────────────────────────────────────────────────

    @property
    def selected_layers(self) -> Dict[str, bool]:
        return self._selected_layers

    def is_layer_selected(self, layer_id: str) -> bool:
        return self._selected_layers.get(layer_id, False)

    def toggle_selected_layer(self, layer_id: str, selected: bool = False) -> bool:
        if not isinstance(selected, bool):
            return False
        if self._selected_layers.get(layer_id) != selected:
            self._selected_layers[layer_id] = selected
            self._changed_layers.add(layer_id)
        return True

    # ── Persistence ─────────────────────────────────────────────────────

    async def save(self) -> None:
        """Write the changed sub-structures; no-op when nothing changed."""
        if not self.dirty:
            return

        client = get_redis()
        now = int(time.time())
        writes = []

        misc = dict(self._misc)
        misc["updated_at"] = now
        if not misc["created_at"]:
            misc["created_at"] = now
        if self._misc_dirty:
            writes.append(client.hset(misc_key(self._id), mapping=_encode_misc(misc)))

        if self._changed_layers:
            layers = {lid: json.dumps(self._selected_layers[lid]) for lid in self._changed_layers}
            writes.append(client.hset(selected_layers_key(self._id), mapping=layers))

        if self._added_sources_id:
            added = {sid: self._sources[sid].to_store() for sid in self._added_sources_id}
            writes.append(client.hset(sources_key(self._id), mapping=added))

        if self._deleted_sources_id:
            writes.append(client.hdel(sources_key(self._id), *self._deleted_sources_id))

        await asyncio.gather(*writes)

        self._misc = misc
        self._misc_dirty = False
        self._changed_layers = set()
        self._added_sources_id = set()
        self._deleted_sources_id = set()
        logger.debug("Saved user %s (%d writes)", self._id, len(writes))


async def lookup_user(source_id: str) -> Optional[User]:
    """Resolve the owner of ``source_id`` through its alias, then load it."""
    owner = await User.get_alias(source_id)
    if owner is None:
        return None
    return await User.find(owner)
