from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_INTERVAL_SECONDS,
    OPERATIONAL_TIMEZONE,
    WINDOW_GRACE_SECONDS,
)


class SchedulerConfig(BaseModel):
    """Settings for the scheduler loop."""

    batch_size: int = DEFAULT_BATCH_SIZE
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    timezone: str = OPERATIONAL_TIMEZONE
    window_grace_seconds: int = WINDOW_GRACE_SECONDS


class CollaboratorConfig(BaseModel):
    """Where side-effecting actions are sent."""

    backend: Literal["inmemory", "http"] = "inmemory"
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout_seconds: float = 10.0


class MatcherConfig(BaseModel):
    """Collaborator used by the ``heuristic`` assignment strategy."""

    backend: Literal["none", "scoring", "llm"] = "scoring"
    model: str = "openai:gpt-4o-mini"


class NurtureflowConfig(BaseModel):
    """Top-level configuration model."""

    scheduler: SchedulerConfig = SchedulerConfig()
    collaborators: CollaboratorConfig = CollaboratorConfig()
    matcher: MatcherConfig = MatcherConfig()
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> NurtureflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to NURTUREFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("NURTUREFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = NurtureflowConfig(**data)
    else:
        config = NurtureflowConfig()

    env_db_url = os.getenv("NURTUREFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_tz = os.getenv("NURTUREFLOW_TIMEZONE")
    if env_tz:
        config.scheduler.timezone = env_tz
    return config
