from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from stackvault.domain.enums import RunOperation, RunStatus


class TaskRun(BaseModel):
    """Per-project or per-container outcome within a Run."""

    id: Optional[int] = None
    kind: str
    name: str
    status: str
    message: Optional[str] = None
    attempts: Optional[int] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class Run(BaseModel):
    """Schema for Run responses."""

    id: Optional[int] = Field(None, description="Unique identifier (absent when history is disabled)")
    operation: RunOperation
    trigger: str
    status: RunStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    message: Optional[str] = None
    backup_timestamp: Optional[str] = Field(None, description="YYYYMMDD_HHMMSS of the backup set involved")
    backup_kind: Optional[str] = None
    archive_path: Optional[str] = None
    archive_bytes: Optional[int] = None
    succeeded_count: int = 0
    failed_count: int = 0
    log_path: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RunWithTasks(Run):
    task_runs: List[TaskRun] = Field(default_factory=list)
