"""Exceptions raised by the nurtureflow engine."""

from __future__ import annotations


class NurtureflowError(Exception):
    """Base class for engine errors."""


class WorkflowConfigurationError(NurtureflowError):
    """Unrecoverable problem with a workflow definition or its referents.

    Runs hitting this error are marked failed and never retried.
    """


class TimeWindowError(WorkflowConfigurationError):
    """No allowed instant exists within the scan horizon."""


class NoAgentCapacityError(NurtureflowError):
    """Every candidate agent is at capacity."""

    code = "no_capacity"

    def __init__(self, message: str = "All agents at capacity") -> None:
        super().__init__(message)
