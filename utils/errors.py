"""
Typed errors surfaced to routes and clients.

Every ``KinError`` carries a stable numeric ``code`` and machine-readable
``params`` on top of the human message, so clients can branch without
string matching.  ``ProviderHTTPError`` is different: it wraps a raw
provider failure and is what the per-provider credential predicates look at.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class KinError(Exception):
    """Base class for all errors with a client-facing representation."""

    status_code = 500
    code = 10

    def __init__(self, message: str = "unexpected error", params: Optional[Dict[str, Any]] = None):
        self.message = message
        self.params = params or {}
        super().__init__(message)

    def to_json(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "error": self.message,
            "params": self.params,
        }


class DisconnectedSource(KinError):
    status_code = 400
    code = 20

    def __init__(self, source_id: str):
        super().__init__(f"disconnected source `{source_id}`", {"source_id": source_id})
        self.source_id = source_id


class ActionNotSupported(KinError):
    status_code = 400
    code = 30

    def __init__(self, action: str, provider_name: str):
        super().__init__(
            f"action `{action}` not supported for provider `{provider_name}`",
            {"action": action, "provider": provider_name},
        )


class SourceNotFound(KinError):
    status_code = 404
    code = 40

    def __init__(self, source_id: str):
        super().__init__(f"source `{source_id}` not found", {"source_id": source_id})
        self.source_id = source_id


class Unauthenticated(KinError):
    status_code = 401
    code = 50

    def __init__(self):
        super().__init__("user not authenticated")


class InvalidFormat(KinError):
    status_code = 400
    code = 60

    def __init__(self, value: Any = None, field: str = "", expected_format: str = ""):
        super().__init__(
            f"{field} (`{value}`) is in the wrong format `{expected_format}`",
            {"field": field, "value": value, "format": expected_format},
        )


class TimeRangeEmpty(KinError):
    status_code = 400
    code = 70

    def __init__(self, start: Any = None, end: Any = None):
        super().__init__(
            f"time range between `{start}` and `{end}` is empty",
            {"start": start, "end": end},
        )


class LimitExceeded(KinError):
    status_code = 400
    code = 80

    def __init__(self, field: str, limit: int):
        super().__init__(f"`{field}` reach the limit `{limit}`", {"field": field, "limit": limit})


class LayerNotFound(KinError):
    status_code = 404
    code = 90

    def __init__(self, layer_id: str = ""):
        super().__init__(f"layer `{layer_id}` not found", {"layer_id": layer_id})


class SourceAlreadyUsed(KinError):
    status_code = 409
    code = 110

    def __init__(self, source_id: str):
        super().__init__(
            f"source `{source_id}` is already linked to another user",
            {"source_id": source_id},
        )
        self.source_id = source_id


class ProviderHTTPError(Exception):
    """A provider answered with a non-2xx status."""

    def __init__(self, status_code: int, body: Any, url: str, method: str = "GET"):
        self.status_code = status_code
        self.body = body
        self.url = url
        self.method = method
        super().__init__(f"{method} {url} returned {status_code}")

    def first_error_reason(self) -> Optional[str]:
        """``error.errors[0].reason`` of a Google-style error envelope, if any."""
        error = self.body.get("error") if isinstance(self.body, dict) else None
        if not isinstance(error, dict):
            return None
        errors = error.get("errors") or []
        if errors and isinstance(errors[0], dict):
            return errors[0].get("reason")
        return None
