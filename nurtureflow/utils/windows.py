"""Weekly time-window evaluation in the operational timezone."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional, Sequence, Tuple, Union
from zoneinfo import ZoneInfo

from ..constants import OPERATIONAL_TIMEZONE, WEEKDAY_TAGS, WINDOW_SCAN_DAYS
from ..contracts import TimeWindow
from ..errors import TimeWindowError

ZoneLike = Union[str, ZoneInfo]


@lru_cache(maxsize=None)
def _load_zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def get_zone(tz: ZoneLike = OPERATIONAL_TIMEZONE) -> ZoneInfo:
    """Return a ``ZoneInfo`` for ``tz``."""
    if isinstance(tz, ZoneInfo):
        return tz
    return _load_zone(tz)


def as_utc(instant: datetime) -> datetime:
    """Normalize ``instant`` to aware UTC. Naive values are taken as UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def is_allowed(
    instant: datetime,
    windows: Sequence[TimeWindow],
    tz: ZoneLike = OPERATIONAL_TIMEZONE,
) -> bool:
    """Return ``True`` if ``instant`` falls inside one of ``windows``.

    An empty window list means unrestricted. Bounds are inclusive and compared
    at minute resolution in the operational timezone.
    """
    if not windows:
        return True
    local = as_utc(instant).astimezone(get_zone(tz))
    day = WEEKDAY_TAGS[local.weekday()]
    clock = local.strftime("%H:%M")
    return any(day in w.days and w.start <= clock <= w.end for w in windows)


def next_allowed(
    instant: datetime,
    windows: Sequence[TimeWindow],
    tz: ZoneLike = OPERATIONAL_TIMEZONE,
) -> datetime:
    """Return the earliest allowed instant at or after ``instant``.

    ``instant`` itself is returned when it is already allowed. Otherwise the
    window start times of the next eight calendar days are scanned.

    Raises:
        TimeWindowError: If no window start is reachable, e.g. every window
            has an empty day set.
    """
    instant = as_utc(instant)
    if is_allowed(instant, windows, tz):
        return instant

    zone = get_zone(tz)
    local = instant.astimezone(zone)
    best: Optional[datetime] = None
    for offset in range(WINDOW_SCAN_DAYS):
        day = local.date() + timedelta(days=offset)
        tag = WEEKDAY_TAGS[day.weekday()]
        for window in windows:
            if tag not in window.days:
                continue
            slot = _window_start(day, window, zone)
            if slot is None or slot < instant:
                continue
            if best is None or slot < best:
                best = slot

    if best is None:
        raise TimeWindowError(
            f"No allowed time within {WINDOW_SCAN_DAYS} days for windows {list(windows)}"
        )
    return best.astimezone(timezone.utc)


def _window_start(day, window: TimeWindow, zone: ZoneInfo) -> Optional[datetime]:
    """First existing instant of ``window`` on ``day``, in UTC.

    A start inside a DST gap resolves past the gap; the result is then walked
    back to the gap end, or dropped when the whole window falls in the gap.
    """
    slot = datetime.combine(day, window.start_time, tzinfo=zone).astimezone(timezone.utc)
    if slot.astimezone(zone).time() == window.start_time:
        return slot
    if not is_allowed(slot, [window], zone):
        return None
    step = timedelta(minutes=1)
    while is_allowed(slot - step, [window], zone):
        slot -= step
    return slot


def window_occurrence(
    instant: datetime,
    windows: Sequence[TimeWindow],
    tz: ZoneLike = OPERATIONAL_TIMEZONE,
) -> Optional[Tuple[datetime, datetime]]:
    """Return ``(start, end)`` of the window occurrence containing ``instant``.

    ``end`` is exclusive (one minute past the window's HH:MM end). Returns
    ``None`` when ``instant`` is outside every window.
    """
    zone = get_zone(tz)
    local = as_utc(instant).astimezone(zone)
    day = WEEKDAY_TAGS[local.weekday()]
    clock = local.strftime("%H:%M")
    for window in windows:
        if day in window.days and window.start <= clock <= window.end:
            start = datetime.combine(local.date(), window.start_time, tzinfo=zone)
            end = datetime.combine(local.date(), window.end_time, tzinfo=zone)
            return (
                start.astimezone(timezone.utc),
                (end + timedelta(minutes=1)).astimezone(timezone.utc),
            )
    return None
