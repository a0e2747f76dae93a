"""nurtureflow: Resumable workflow execution for lead nurturing."""

from .config import NurtureflowConfig, load_config
from .contracts import (
    ActionKind,
    Contact,
    RunStatus,
    WorkflowGraph,
    WorkflowRun,
)
from .collaborators import get_collaborators
from .dispatch import WorkflowDispatcher
from .execute import RunExecutor
from .persistence import get_repository
from .scheduler import WorkflowScheduler, build_scheduler

__version__ = "0.1.0"
__all__ = [
    "ActionKind",
    "Contact",
    "NurtureflowConfig",
    "RunExecutor",
    "RunStatus",
    "WorkflowDispatcher",
    "WorkflowGraph",
    "WorkflowRun",
    "WorkflowScheduler",
    "build_scheduler",
    "get_collaborators",
    "get_repository",
    "load_config",
]
