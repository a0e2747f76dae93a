"""Action dispatch for workflow nodes."""

from .dispatcher import ActionDispatcher
from .handlers import HANDLERS, ActionHandler, ActionRequest, nurture_schedule

__all__ = [
    "ActionDispatcher",
    "ActionHandler",
    "ActionRequest",
    "HANDLERS",
    "nurture_schedule",
]
