"""
Pydantic schemas for the unified calendar model and the API bodies.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════════════════════
# Normalized provider data
# ═══════════════════════════════════════════════════════════════════════════════


class Acl(BaseModel):
    edit: bool = False
    create: bool = False
    delete: bool = False


class Layer(BaseModel):
    """A provider calendar / list / board."""

    id: str
    title: Optional[str] = None
    color: Optional[str] = None
    text_color: Optional[str] = None
    acl: Acl = Field(default_factory=Acl)

    # Provider default; overridden by the user's own selection when listed
    selected: Optional[bool] = None


class EventTime(BaseModel):
    date_time: Optional[str] = None
    date: Optional[str] = None
    timezone: Optional[str] = None


class Attendee(BaseModel):
    model_config = {"populate_by_name": True}

    email: Optional[str] = None
    response_status: str = "needs_action"  # "needs_action" | "accepted" | "declined" | "tentative"
    is_self: Optional[bool] = Field(default=None, alias="self")


class Reminder(BaseModel):
    minutes: int


class Event(BaseModel):
    id: str
    title: Optional[str] = None
    status: Optional[str] = None  # "confirmed" | "tentative" | "cancelled"
    kind: Optional[str] = None    # "event#basic" | "event#invitation"
    description: Optional[str] = None
    location: Optional[str] = None
    link: Optional[str] = None
    start: Optional[EventTime] = None
    end: Optional[EventTime] = None
    attendees: Optional[List[Attendee]] = None
    reminders: Optional[List[Reminder]] = None
    color: Optional[str] = None
    etag: Optional[Any] = None


class EventsPage(BaseModel):
    events: List[Event] = Field(default_factory=list)
    sync_type: Optional[str] = None  # "full" | "incremental"
    next_sync_token: Optional[str] = None


class Place(BaseModel):
    description: Optional[str] = None


class Contact(BaseModel):
    id: Optional[str] = None
    display_name: Optional[str] = None
    email: str


# ═══════════════════════════════════════════════════════════════════════════════
# Request bodies
# ═══════════════════════════════════════════════════════════════════════════════


class EventPatch(BaseModel):
    """Partial event sent by clients on create / patch."""

    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    start: Optional[EventTime] = None
    end: Optional[EventTime] = None
    attendees: Optional[List[Attendee]] = None
    reminders: Optional[List[Reminder]] = None
    color_id: Optional[str] = None
    etag: Optional[Any] = None


class LayerPatch(BaseModel):
    selected: Optional[bool] = None


class UserPatch(BaseModel):
    display_name: Optional[str] = None
    timezone: Optional[str] = None
    first_day: Optional[int] = None
    default_view: Optional[str] = None
    default_calendar_id: Optional[str] = None


class DeleteEventBody(BaseModel):
    etag: Optional[Any] = None


def dump(model: BaseModel) -> Dict[str, Any]:
    """Serialize a normalized model, omitting unset optional props."""
    return model.model_dump(exclude_none=True, by_alias=True)
