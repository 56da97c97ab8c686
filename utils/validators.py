"""
Client-side validators run before any outbound provider call.

Invalid input fails fast with ``InvalidFormat``: no network call is made.
"""

from __future__ import annotations

import functools
from datetime import date, datetime
from typing import FrozenSet
from zoneinfo import available_timezones

from utils.errors import InvalidFormat

# Wire formats shared by all providers' normalized events
DATE_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
DATE_FORMAT = "%Y-%m-%d"

# Human-readable versions, used in error params
DATE_TIME_FORMAT_LABEL = "YYYY-MM-DDTHH:mm:ssZZ"
DATE_FORMAT_LABEL = "YYYY-MM-DD"

ACCEPTED_DEFAULT_VIEWS = ("month", "week")
ACCEPTED_FIRST_DAYS = (0, 1, 6)


@functools.lru_cache(maxsize=1)
def _timezones() -> FrozenSet[str]:
    return frozenset(available_timezones())


def is_valid_timezone(name: str) -> bool:
    return name in _timezones()


def parse_date_time(value: str, field: str) -> datetime:
    """Strictly parse a timezone-aware ``YYYY-MM-DDTHH:mm:ss±hhmm`` string."""
    try:
        return datetime.strptime(value, DATE_TIME_FORMAT)
    except (TypeError, ValueError):
        raise InvalidFormat(value, field, DATE_TIME_FORMAT_LABEL) from None


def parse_date(value: str, field: str) -> date:
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except (TypeError, ValueError):
        raise InvalidFormat(value, field, DATE_FORMAT_LABEL) from None


def format_date_time(value: datetime) -> str:
    """``YYYY-MM-DDTHH:mm:ss±hhmm``, the format ``parse_date_time`` accepts."""
    return value.strftime(DATE_TIME_FORMAT)


def format_date(value) -> str:
    return value.strftime(DATE_FORMAT)
