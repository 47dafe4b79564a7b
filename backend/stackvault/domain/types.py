"""In-memory value types shared by the backup and restore services."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional

from stackvault.domain.enums import BackupKind, HealthOutcome, TaskStatus
from stackvault.domain.errors import PartialFailure
from stackvault.domain.timestamps import format_timestamp


@dataclass(frozen=True)
class BackupSet:
    """One archive produced at a point in time. Never mutated once committed."""

    timestamp: datetime
    kind: BackupKind
    archive_path: str
    source_root: Optional[str] = None
    marker_version: Optional[str] = None
    parent_timestamp: Optional[datetime] = None

    @property
    def name(self) -> str:
        return os.path.basename(self.archive_path)

    @property
    def stamp(self) -> str:
        return format_timestamp(self.timestamp)

    @property
    def sort_key(self) -> tuple:
        return (self.timestamp, self.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.stamp,
            "kind": self.kind.value,
            "archive_path": self.archive_path,
            "source_root": self.source_root,
            "marker_version": self.marker_version,
            "parent_timestamp": (
                format_timestamp(self.parent_timestamp) if self.parent_timestamp else None
            ),
        }


@dataclass(frozen=True)
class SnapshotMarker:
    """Change-tracking state consumed and advanced by incremental archiving.

    `created_at` is the time of the Full backup that reset the marker;
    `last_timestamp` is the newest set built against this marker version.
    """

    path: str
    version: str
    created_at: datetime
    last_timestamp: Optional[datetime] = None

    def is_stale(self, now: datetime, window: timedelta) -> bool:
        return now - self.created_at > window


@dataclass(frozen=True)
class BackupChain:
    """Ordered Full-then-Incrementals sequence reconstructing `target`."""

    members: List[BackupSet]
    target: datetime

    def __post_init__(self) -> None:
        if not self.members:
            raise ValueError("a backup chain needs at least one member")
        if self.members[0].kind != BackupKind.FULL:
            raise ValueError("a backup chain must be rooted in a Full backup")
        stamps = [m.timestamp for m in self.members]
        if any(b <= a for a, b in zip(stamps, stamps[1:])):
            raise ValueError("backup chain timestamps must strictly increase")

    def __iter__(self) -> Iterator[BackupSet]:
        return iter(self.members)

    def __len__(self) -> int:
        return len(self.members)

    @property
    def root(self) -> BackupSet:
        return self.members[0]

    @property
    def final_timestamp(self) -> datetime:
        return self.members[-1].timestamp


@dataclass
class ContainerState:
    """Subset of a container inspection payload the services reason about."""

    id: str
    name: str
    running: bool
    status: str
    health: Optional[str] = None
    image: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)
    networks: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_probe(self) -> bool:
        return self.health is not None

    @classmethod
    def from_inspect(cls, payload: Dict[str, Any]) -> "ContainerState":
        state = payload.get("State") or {}
        config = payload.get("Config") or {}
        host_config = payload.get("HostConfig") or {}
        network_settings = payload.get("NetworkSettings") or {}
        health = state.get("Health")
        return cls(
            id=str(payload.get("Id", "")),
            name=str(payload.get("Name", "")).lstrip("/"),
            running=bool(state.get("Running")),
            status=str(state.get("Status", "unknown")),
            health=health.get("Status") if isinstance(health, dict) else None,
            image=config.get("Image"),
            labels=dict(config.get("Labels") or {}),
            networks=sorted((network_settings.get("Networks") or {}).keys()),
            links=list(host_config.get("Links") or []),
            raw=payload,
        )


@dataclass
class ProjectStopResult:
    directory: str
    stopped: Dict[str, str] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)
    still_running: List[str] = field(default_factory=list)

    @property
    def quiesced(self) -> bool:
        return not self.failed and not self.still_running

    def raise_for_quiesce(self) -> None:
        if not self.quiesced:
            raise PartialFailure(
                f"{os.path.basename(self.directory)} not safely stopped",
                failed=[*self.failed, *self.still_running],
            )


@dataclass
class ProjectStartResult:
    directory: str
    healthy: List[str] = field(default_factory=list)
    unhealthy: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.unhealthy


@dataclass
class RestoreTask:
    """One container restore. Written only by the worker that runs it."""

    record: Any
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    outcome: Optional[HealthOutcome] = None
    error: Optional[str] = None

    @property
    def name(self) -> str:
        return self.record.name

    def succeed(self) -> None:
        self.status = TaskStatus.SUCCEEDED
        self.error = None

    def fail(self, error: str) -> None:
        self.status = TaskStatus.FAILED
        self.error = error

    @property
    def terminal(self) -> bool:
        return self.status in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)


@dataclass
class RestoreResult:
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    batches: List[List[str]] = field(default_factory=list)
    elapsed_sec: float = 0.0

    @property
    def processed(self) -> int:
        return len(self.succeeded) + len(self.failed)
