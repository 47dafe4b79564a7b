from __future__ import annotations

from enum import Enum


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


class RunOperation(str, Enum):
    BACKUP = "backup"
    RESTORE = "restore"
    STOP = "stop"
    START = "start"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class BackupKind(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    UNKNOWN = "unknown"


class HealthKind(str, Enum):
    NONE = "none"
    PROBED = "probed"


class HealthOutcome(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    TIMED_OUT = "timed_out"
    STOPPED = "stopped"


class StopOutcome(str, Enum):
    GRACEFUL = "graceful"
    SIGTERM = "sigterm"
    SIGKILL = "sigkill"
    ALREADY_STOPPED = "already_stopped"
