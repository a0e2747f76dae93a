"""Pure scheduling helpers: time windows and retry planning."""

from .retry import RetryPlan, compute_backoff, plan_retry, smart_daypart_slot
from .windows import as_utc, get_zone, is_allowed, next_allowed, window_occurrence

__all__ = [
    "RetryPlan",
    "as_utc",
    "compute_backoff",
    "get_zone",
    "is_allowed",
    "next_allowed",
    "plan_retry",
    "smart_daypart_slot",
    "window_occurrence",
]
