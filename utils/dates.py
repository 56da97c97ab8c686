"""
Date helpers shared by the provider adapters.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from config.settings import config
from utils.validators import format_date, format_date_time


def load_window(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Time range of a full events load: N months back, M months ahead."""
    now = now or datetime.now(timezone.utc)
    return (
        now - relativedelta(months=config.provider_nb_months_past),
        now + relativedelta(months=config.provider_nb_months_future),
    )


def to_zone(name: Optional[str]):
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def parse_provider_date_time(value: Union[str, int, float], tz_name: Optional[str] = None) -> datetime:
    """
    Parse whatever a provider sends (ISO string, naive local time or epoch
    milliseconds) into an aware datetime.  Naive values are read in
    ``tz_name`` (UTC when missing).
    """
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    parsed = date_parser.parse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=to_zone(tz_name))
    return parsed


def provider_date_time(value: Union[str, int, float], tz_name: Optional[str] = None) -> str:
    """Normalized ``date_time`` string, expressed in ``tz_name`` when given."""
    parsed = parse_provider_date_time(value, tz_name)
    if tz_name:
        parsed = parsed.astimezone(to_zone(tz_name))
    return format_date_time(parsed)


def provider_date(value: Union[str, int, float], tz_name: Optional[str] = None, plus_days: int = 0) -> str:
    day: date = parse_provider_date_time(value, tz_name).date()
    return format_date(day + timedelta(days=plus_days))


def to_iso_utc(value: datetime) -> str:
    """``2017-01-01T00:00:00.000Z`` style timestamps for provider queries."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
