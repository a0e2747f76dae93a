"""Run, graph and step-history storage for nurtureflow.

Every backend claims runs with a single conditional update (``claim_run``)
and guards scheduler writes with ``save_run(..., expected_status=...)``, so
several scheduler processes and webhook receivers can share one store.
"""

from __future__ import annotations

import os
from typing import Optional

from ..config import NurtureflowConfig, load_config
from .inmemory import InMemoryRunRepository
from .models import StepRecord
from .repository import RunRepository
from .sqlite import SQLiteRunRepository

try:  # pragma: no cover - asyncpg is the optional ``postgres`` extra
    from .postgres import PostgresRunRepository
except ImportError:  # pragma: no cover
    PostgresRunRepository = None  # type: ignore

_repository_instance: RunRepository | None = None

SQLITE_SCHEME = "sqlite://"
POSTGRES_SCHEMES = ("postgres://", "postgresql://")


def _resolve_url(database_url: Optional[str], config: Optional[NurtureflowConfig]) -> str | None:
    if database_url:
        return database_url
    env_url = os.getenv("NURTUREFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_url:
        return env_url
    return (config or load_config()).database_url


def _open(database_url: str | None) -> RunRepository:
    if not database_url:
        # process-local; runs do not survive a restart
        return InMemoryRunRepository()
    if database_url.startswith(SQLITE_SCHEME):
        return SQLiteRunRepository(database_url[len(SQLITE_SCHEME):])
    if database_url.startswith(POSTGRES_SCHEMES):
        if PostgresRunRepository is None:
            raise RuntimeError("Postgres support not available, install nurtureflow[postgres]")
        return PostgresRunRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[NurtureflowConfig] = None
) -> RunRepository:
    """Return the shared run repository, opening it on first use.

    The URL comes from ``database_url``, then ``NURTUREFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, then ``config.database_url``. ``sqlite://<path>`` and
    ``postgres(ql)://`` URLs select the durable backends; no URL at all gives
    an in-memory repository. Passing either argument reopens the repository.
    """
    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance
    _repository_instance = _open(_resolve_url(database_url, config))
    return _repository_instance


__all__ = [
    "StepRecord",
    "RunRepository",
    "SQLiteRunRepository",
    "PostgresRunRepository",
    "InMemoryRunRepository",
    "get_repository",
]
