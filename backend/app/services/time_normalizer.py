"""
services/time_normalizer.py

Converts an attorney's locally entered trial date/time into an absolute UTC instant.

The submitter's browser sends its signed UTC offset in minutes at submission time
(India = +330, US Pacific winter = -480). The offset is used as-is; no timezone-name
lookup happens here, and the result is persisted once. Stored local fields are never
re-normalized later, so a retroactive DST rule change cannot move a trial.

    normalize("2025-12-23", "06:30", 330)   -> 2025-12-23 01:00:00+00:00
    normalize("2025-12-23", "06:30", -480)  -> 2025-12-23 14:30:00+00:00
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union

from app.utils.exceptions import InvalidScheduleError, MissingTimezoneError

logger = logging.getLogger(__name__)

# UTC-12:00 .. UTC+14:00
MIN_OFFSET_MINUTES = -12 * 60
MAX_OFFSET_MINUTES = 14 * 60

_TIME_FORMATS = ("%H:%M", "%H:%M:%S")


@dataclass(frozen=True)
class NormalizedSchedule:
    local_date: date
    local_time: time
    offset_minutes: int
    instant_utc: datetime  # aware, UTC

    @property
    def instant_utc_naive(self) -> datetime:
        """Storage representation (naive UTC)."""
        return self.instant_utc.replace(tzinfo=None)


def parse_local_date(value: Union[str, date]) -> date:
    if isinstance(value, datetime):
        raise InvalidScheduleError("scheduled date must not carry a time component")
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), "%Y-%m-%d").date()
    except ValueError:
        raise InvalidScheduleError(f"Invalid scheduled date '{value}', expected YYYY-MM-DD")


def parse_local_time(value: Union[str, time]) -> time:
    if isinstance(value, time):
        if value.tzinfo is not None:
            raise InvalidScheduleError("scheduled time must be a wall-clock value without timezone")
        return value
    text = str(value).strip()
    for fmt in _TIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    raise InvalidScheduleError(f"Invalid scheduled time '{value}', expected HH:MM")


def normalize(
    local_date: Union[str, date],
    local_time: Union[str, time],
    offset_minutes: Optional[int],
) -> datetime:
    """
    Return the absolute (aware, UTC) instant for a local wall-clock date/time
    entered at the given UTC offset: instant = local - offset.

    Raises MissingTimezoneError when offset_minutes is absent.
    """
    return normalize_schedule(local_date, local_time, offset_minutes).instant_utc


def normalize_schedule(
    local_date: Union[str, date],
    local_time: Union[str, time],
    offset_minutes: Optional[int],
    require_timezone: bool = True,
) -> NormalizedSchedule:
    if offset_minutes is None:
        if require_timezone:
            raise MissingTimezoneError()
        # Explicitly UTC, never the server's local zone
        logger.warning("Schedule submitted without timezone offset; treating as UTC")
        offset_minutes = 0

    if isinstance(offset_minutes, bool) or not isinstance(offset_minutes, int):
        raise InvalidScheduleError("timezone_offset_minutes must be an integer")
    if not MIN_OFFSET_MINUTES <= offset_minutes <= MAX_OFFSET_MINUTES:
        raise InvalidScheduleError(
            f"timezone_offset_minutes must be between {MIN_OFFSET_MINUTES} and {MAX_OFFSET_MINUTES}"
        )

    d = parse_local_date(local_date)
    t = parse_local_time(local_time)
    wall_clock = datetime.combine(d, t)
    instant = (wall_clock - timedelta(minutes=offset_minutes)).replace(tzinfo=timezone.utc)

    return NormalizedSchedule(
        local_date=d,
        local_time=t,
        offset_minutes=offset_minutes,
        instant_utc=instant,
    )
