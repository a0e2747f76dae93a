"""Data models for persisted step history."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class StepRecord(BaseModel):
    """Record of one execution of a node within a run."""

    id: Optional[int] = None
    run_id: str
    node_id: str
    action: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    status: Optional[str] = None
    output: Optional[dict[str, Any]] = None
