"""Shared constants for nurtureflow."""

OPERATIONAL_TIMEZONE = "Europe/Madrid"

# A time-window reschedule closer than this is executed right away.
WINDOW_GRACE_SECONDS = 60

# Scan horizon for the next allowed window start.
WINDOW_SCAN_DAYS = 8

DEFAULT_BATCH_SIZE = 10
DEFAULT_INTERVAL_SECONDS = 60.0
DEFAULT_MAX_LEAD_CAPACITY = 20
DEFAULT_RETRY_INTERVAL_HOURS = 24.0

SMART_MORNING_HOUR = 9
SMART_EVENING_HOUR = 16

WEEKDAY_TAGS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

POSITIVE_HANDLES = frozenset({"positive", "next", "replied"})
NEGATIVE_HANDLES = frozenset({"negative", "no_reply"})
DEFAULT_ROUTE = "default"

# Keys of the persisted context map that are not node ids.
RETRY_COUNT_KEY = "retry_count"
ERROR_KEY = "error"
