from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from stackvault.domain.enums import BackupKind
from stackvault.domain.timestamps import format_timestamp, parse_timestamp
from stackvault.domain.types import BackupChain, BackupSet, SnapshotMarker


class BackupSetOut(BaseModel):
    timestamp: str = Field(..., description="YYYYMMDD_HHMMSS")
    kind: BackupKind
    name: str
    archive_path: str
    size_bytes: Optional[int] = None
    marker_version: Optional[str] = None
    parent_timestamp: Optional[str] = None
    source_root: Optional[str] = None

    @classmethod
    def from_set(cls, backup_set: BackupSet, size_bytes: Optional[int] = None) -> "BackupSetOut":
        return cls(
            timestamp=backup_set.stamp,
            kind=backup_set.kind,
            name=backup_set.name,
            archive_path=backup_set.archive_path,
            size_bytes=size_bytes,
            marker_version=backup_set.marker_version,
            parent_timestamp=format_timestamp(backup_set.parent_timestamp) if backup_set.parent_timestamp else None,
            source_root=backup_set.source_root,
        )


class MarkerOut(BaseModel):
    version: str
    created_at: str
    last_timestamp: Optional[str] = None
    stale: bool

    @classmethod
    def from_marker(cls, marker: SnapshotMarker, *, stale: bool) -> "MarkerOut":
        return cls(
            version=marker.version,
            created_at=format_timestamp(marker.created_at),
            last_timestamp=format_timestamp(marker.last_timestamp) if marker.last_timestamp else None,
            stale=stale,
        )


class ChainOut(BaseModel):
    target: str
    final_timestamp: str
    members: List[BackupSetOut]

    @classmethod
    def from_chain(cls, chain: BackupChain) -> "ChainOut":
        return cls(
            target=format_timestamp(chain.target),
            final_timestamp=format_timestamp(chain.final_timestamp),
            members=[BackupSetOut.from_set(m) for m in chain],
        )


class BackupRunRequest(BaseModel):
    restart: Optional[bool] = Field(None, description="Override RESTART_AFTER_BACKUP for this run")


class RestoreRequest(BaseModel):
    timestamp: Optional[str] = Field(
        None, pattern=r"^\d{8}_\d{6}$", description="Target YYYYMMDD_HHMMSS; newest backup when omitted"
    )
    concurrency: Optional[int] = Field(None, ge=1, le=32)

    def target(self) -> Optional[datetime]:
        if not self.timestamp:
            return None
        return parse_timestamp(self.timestamp)
