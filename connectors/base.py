"""
Provider capability records.

A provider is described by data, not by a subclass: ``ProviderSpec`` holds
what the request engine needs (base URL, timeout, auth injection,
credential-error classification, optional token refresh) and ``Connector``
bundles it with the adapter actions the routes can dispatch to.  Any
action left to ``None`` is reported as not supported for that provider.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from config.settings import config
from utils.errors import ProviderHTTPError

if TYPE_CHECKING:
    from connectors.request import RequestContext
    from database.models import Source
    from utils.schemas import Contact, Event, EventPatch, EventsPage, Layer, Place

# options: {method, params, data, json, headers, timeout}
RequestOptions = Dict[str, Any]
BuildRequestOptions = Callable[[Optional[str], RequestOptions], RequestOptions]
InvalidCredsPredicate = Callable[[Exception], bool]
RefreshToken = Callable[["RequestContext", "Source"], Awaitable[None]]


def merge_options(base: RequestOptions, overrides: Optional[RequestOptions]) -> RequestOptions:
    """Deep-merge request options; ``overrides`` wins on conflicts."""
    merged = copy.deepcopy(base)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_options(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def is_unauthorized(err: Exception) -> bool:
    """Default credential check: a plain HTTP 401."""
    return isinstance(err, ProviderHTTPError) and err.status_code == 401


def body_get(err: Exception, *path: str) -> Any:
    """Walk a decoded provider error body, ``None`` on any miss."""
    value = getattr(err, "body", None)
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


@dataclass(frozen=True)
class ProviderSpec:
    """Everything the request engine needs to talk to one provider."""

    name: str
    base_url: str
    timeout: float
    build_request_options: BuildRequestOptions
    is_invalid_creds_error: InvalidCredsPredicate = is_unauthorized
    refresh_token: Optional[RefreshToken] = None
    backoff_delay_ms: int = field(default_factory=lambda: config.default_backoff_delay_ms)
    max_attempts: int = field(default_factory=lambda: config.default_max_attempts)

    @property
    def use_refresh_token(self) -> bool:
        return self.refresh_token is not None


# ── Adapter action signatures ────────────────────────────────────────────
LoadLayers = Callable[["RequestContext", "Source"], Awaitable[List["Layer"]]]
LoadEvents = Callable[["RequestContext", "Source", str, Optional[str]], Awaitable["EventsPage"]]
CreateEvent = Callable[["RequestContext", "Source", str, "EventPatch", bool], Awaitable["Event"]]
PatchEvent = Callable[["RequestContext", "Source", str, "EventPatch", bool], Awaitable["Event"]]
DeleteEvent = Callable[["RequestContext", "Source", str, Optional[Any]], Awaitable[None]]
LoadPlaces = Callable[["RequestContext", "Source", str], Awaitable[List["Place"]]]
LoadContacts = Callable[["RequestContext", "Source", str], Awaitable[List["Contact"]]]
SourceHook = Callable[["RequestContext", "Source"], Awaitable[None]]


@dataclass(frozen=True)
class Connector:
    """A provider's ``ProviderSpec`` plus the adapter actions it implements."""

    name: str
    display_name: str
    request: ProviderSpec
    is_configured: Callable[[], bool]
    load_layers: Optional[LoadLayers] = None
    load_events: Optional[LoadEvents] = None
    create_event: Optional[CreateEvent] = None
    patch_event: Optional[PatchEvent] = None
    delete_event: Optional[DeleteEvent] = None
    load_places: Optional[LoadPlaces] = None
    load_contacts: Optional[LoadContacts] = None
    # Best-effort de-authorization at the provider when a source is removed
    revoke_token: Optional[SourceHook] = None
    # Extra loading right after a source is linked (e.g. google colors)
    after_link: Optional[SourceHook] = None

    def supports(self, action: str) -> bool:
        return getattr(self, action, None) is not None
