from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Optional, Sequence

from pydantic import BaseModel

from ..constants import (
    OPERATIONAL_TIMEZONE,
    SMART_EVENING_HOUR,
    SMART_MORNING_HOUR,
)
from ..contracts import BackoffStrategy, Intervention, RetryPolicy, TimeWindow
from .windows import ZoneLike, as_utc, get_zone, next_allowed, window_occurrence


class RetryPlan(BaseModel):
    """Decision taken after a direct-contact attempt has failed."""

    should_retry: bool
    attempt: int
    next_attempt_at: Optional[datetime] = None
    intervention: Optional[Intervention] = None


def smart_daypart_slot(now: datetime, tz: ZoneLike = OPERATIONAL_TIMEZONE) -> datetime:
    """Next morning/evening slot: at most two attempts per local day.

    Before 09:00 -> today 09:00, before 16:00 -> today 16:00, otherwise
    tomorrow 09:00.
    """
    zone = get_zone(tz)
    local = as_utc(now).astimezone(zone)
    day = local.date()
    if local.hour < SMART_MORNING_HOUR:
        hour = SMART_MORNING_HOUR
    elif local.hour < SMART_EVENING_HOUR:
        hour = SMART_EVENING_HOUR
    else:
        # evening window and later
        day = day + timedelta(days=1)
        hour = SMART_MORNING_HOUR
    slot = datetime.combine(day, time(hour), tzinfo=zone)
    return slot.astimezone(timezone.utc)


def compute_backoff(
    policy: RetryPolicy, now: datetime, tz: ZoneLike = OPERATIONAL_TIMEZONE
) -> datetime:
    """Compute the raw retry instant for ``policy`` before window constraints."""
    if policy.backoff is BackoffStrategy.SMART_DAYPART:
        return smart_daypart_slot(now, tz)
    return as_utc(now) + timedelta(hours=policy.interval_hours)


def plan_retry(
    policy: Optional[RetryPolicy],
    retry_count: int,
    now: datetime,
    windows: Sequence[TimeWindow] = (),
    tz: ZoneLike = OPERATIONAL_TIMEZONE,
) -> RetryPlan:
    """Plan what follows a failed attempt.

    ``retry_count`` is the number of retries already scheduled for the node,
    so the attempt that just failed is ``retry_count + 1``. ``max_attempts``
    counts every attempt, the first one included.
    """
    attempt = retry_count + 1
    if policy is None:
        return RetryPlan(should_retry=False, attempt=attempt)

    intervention = policy.intervention_for(attempt)
    if policy.max_attempts <= 1 or attempt >= policy.max_attempts:
        return RetryPlan(should_retry=False, attempt=attempt, intervention=intervention)

    candidate = compute_backoff(policy, now, tz)
    if windows:
        # the window evaluator only ever moves the instant later
        candidate = next_allowed(candidate, windows, tz)
        if policy.one_attempt_per_window:
            occurrence = window_occurrence(now, windows, tz)
            if occurrence is not None and candidate < occurrence[1]:
                candidate = next_allowed(occurrence[1], windows, tz)

    return RetryPlan(
        should_retry=True,
        attempt=attempt,
        next_attempt_at=candidate,
        intervention=intervention,
    )
