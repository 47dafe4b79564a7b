"""Pydantic schemas package."""

from .backups import BackupRunRequest, BackupSetOut, ChainOut, MarkerOut, RestoreRequest  # noqa: F401
from .records import ContainerRecord, ContainerRecordSummary  # noqa: F401
from .runs import Run, RunWithTasks, TaskRun  # noqa: F401
