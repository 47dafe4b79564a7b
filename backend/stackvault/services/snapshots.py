"""Snapshot store: backup archives, their sidecars, and the snapshot marker.

Layout inside the store root:

- `<prefix>_<YYYYMMDD_HHMMSS>.tar.zst` + `.meta.json` sidecar per BackupSet
- `.snapshot` (GNU tar listed-incremental state) + `.snapshot.meta.json`
  carrying the marker version, the Full it was reset by, and the newest set
  built against it
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from stackvault.core.sidecar import SIDECAR_SUFFIX, read_sidecar, remove_sidecar, write_sidecar
from stackvault.domain.enums import BackupKind
from stackvault.domain.timestamps import format_timestamp, parse_timestamp
from stackvault.domain.types import BackupSet, SnapshotMarker

logger = logging.getLogger(__name__)

MARKER_NAME = ".snapshot"
CHECKPOINT_SUFFIX = ".prev"


class SnapshotStore:
    """Persists BackupSets and the mutable snapshot marker under one directory."""

    def __init__(self, root: str, *, prefix: str = "appdata", extension: str = "tar.zst") -> None:
        self.root = root
        self.prefix = prefix
        self.extension = extension
        self._name_re = re.compile(rf"^{re.escape(prefix)}_(\d{{8}}_\d{{6}})\.tar(\.[A-Za-z0-9]+)?$")

    @property
    def marker_path(self) -> str:
        return os.path.join(self.root, MARKER_NAME)

    def ensure_root(self) -> None:
        os.makedirs(self.root, exist_ok=True)

    def archive_path_for(self, timestamp: datetime) -> str:
        return os.path.join(self.root, f"{self.prefix}_{format_timestamp(timestamp)}.{self.extension}")

    # ---- backup sets -------------------------------------------------

    def list_sets(self) -> List[BackupSet]:
        """All sets in ascending timestamp order, one per timestamp.

        Two archives sharing a timestamp are resolved in favour of the
        lexicographically later file name.
        """
        if not os.path.isdir(self.root):
            return []

        by_timestamp: Dict[datetime, BackupSet] = {}
        for name in sorted(os.listdir(self.root)):
            if name.startswith(".") or name.endswith(SIDECAR_SUFFIX):
                continue
            match = self._name_re.match(name)
            if match is None:
                continue
            path = os.path.join(self.root, name)
            if not os.path.isfile(path):
                continue
            try:
                timestamp = parse_timestamp(match.group(1))
            except ValueError:
                continue

            backup_set = self._load_set(path, timestamp)
            previous = by_timestamp.get(timestamp)
            if previous is not None:
                logger.warning(
                    "snapshot_timestamp_tie | timestamp=%s kept=%s dropped=%s",
                    backup_set.stamp,
                    max(previous.name, backup_set.name),
                    min(previous.name, backup_set.name),
                )
                if backup_set.name < previous.name:
                    continue
            by_timestamp[timestamp] = backup_set

        return sorted(by_timestamp.values(), key=lambda s: s.sort_key)

    def _load_set(self, path: str, timestamp: datetime) -> BackupSet:
        meta = read_sidecar(path, required=("kind",))
        if meta is None:
            logger.warning("snapshot_sidecar_missing | archive=%s", path)
            return BackupSet(timestamp=timestamp, kind=BackupKind.UNKNOWN, archive_path=path)
        try:
            kind = BackupKind(meta["kind"])
        except ValueError:
            kind = BackupKind.UNKNOWN
        parent: Optional[datetime] = None
        raw_parent = meta.get("parent_timestamp")
        if raw_parent:
            try:
                parent = parse_timestamp(str(raw_parent))
            except ValueError:
                logger.warning("snapshot_sidecar_bad_parent | archive=%s parent=%s", path, raw_parent)
                kind = BackupKind.UNKNOWN
        return BackupSet(
            timestamp=timestamp,
            kind=kind,
            archive_path=path,
            source_root=meta.get("source_root"),
            marker_version=meta.get("marker_version"),
            parent_timestamp=parent,
        )

    def get(self, timestamp: datetime) -> Optional[BackupSet]:
        for backup_set in self.list_sets():
            if backup_set.timestamp == timestamp:
                return backup_set
        return None

    def latest(self) -> Optional[BackupSet]:
        sets = self.list_sets()
        return sets[-1] if sets else None

    def latest_full(self, marker_version: Optional[str] = None) -> Optional[BackupSet]:
        fulls = [
            s
            for s in self.list_sets()
            if s.kind == BackupKind.FULL and (marker_version is None or s.marker_version == marker_version)
        ]
        return fulls[-1] if fulls else None

    def commit(self, backup_set: BackupSet, **extra: object) -> None:
        """Record a verified archive as a member of the store."""
        write_sidecar(backup_set.archive_path, {**backup_set.to_dict(), **extra})
        logger.info(
            "snapshot_committed | archive=%s kind=%s marker_version=%s",
            backup_set.archive_path,
            backup_set.kind.value,
            backup_set.marker_version,
        )

    def delete_set(self, backup_set: BackupSet) -> None:
        if os.path.exists(backup_set.archive_path):
            os.remove(backup_set.archive_path)
        remove_sidecar(backup_set.archive_path)
        logger.info("snapshot_deleted | archive=%s kind=%s", backup_set.archive_path, backup_set.kind.value)

    # ---- snapshot marker ---------------------------------------------

    def read_marker(self) -> Optional[SnapshotMarker]:
        """Current marker, or None when absent or corrupted."""
        path = self.marker_path
        if not os.path.isfile(path):
            return None
        if os.path.getsize(path) == 0:
            logger.warning("snapshot_marker_empty | path=%s", path)
            return None
        meta = read_sidecar(path, required=("version", "created_at"))
        if meta is None:
            logger.warning("snapshot_marker_metadata_invalid | path=%s", path)
            return None
        try:
            created_at = parse_timestamp(str(meta["created_at"]))
            last_raw = meta.get("last_timestamp")
            last_timestamp = parse_timestamp(str(last_raw)) if last_raw else None
        except ValueError:
            logger.warning("snapshot_marker_metadata_invalid | path=%s", path)
            return None
        return SnapshotMarker(
            path=path,
            version=str(meta["version"]),
            created_at=created_at,
            last_timestamp=last_timestamp,
        )

    def reset_marker(self, timestamp: datetime) -> SnapshotMarker:
        """Truncate the marker so the next archive is a Full, under a new version."""
        self.ensure_root()
        with open(self.marker_path, "w", encoding="utf-8"):
            pass
        marker = SnapshotMarker(path=self.marker_path, version=uuid.uuid4().hex, created_at=timestamp)
        self._write_marker_meta(marker)
        logger.info("snapshot_marker_reset | version=%s created_at=%s", marker.version, format_timestamp(timestamp))
        return marker

    def advance_marker(self, marker: SnapshotMarker, timestamp: datetime) -> SnapshotMarker:
        advanced = SnapshotMarker(
            path=marker.path,
            version=marker.version,
            created_at=marker.created_at,
            last_timestamp=timestamp,
        )
        self._write_marker_meta(advanced)
        return advanced

    def _write_marker_meta(self, marker: SnapshotMarker) -> None:
        write_sidecar(
            marker.path,
            {
                "version": marker.version,
                "created_at": format_timestamp(marker.created_at),
                "last_timestamp": format_timestamp(marker.last_timestamp) if marker.last_timestamp else None,
            },
        )

    def invalidate_marker(self) -> None:
        """Drop the marker entirely; the next backup is forced to be Full."""
        for path in (self.marker_path, self.marker_path + CHECKPOINT_SUFFIX):
            if os.path.exists(path):
                os.remove(path)
        remove_sidecar(self.marker_path)
        logger.warning("snapshot_marker_invalidated | path=%s", self.marker_path)

    def checkpoint_marker(self) -> None:
        """Keep a copy of the marker so a failed incremental can be rolled back."""
        shutil.copy2(self.marker_path, self.marker_path + CHECKPOINT_SUFFIX)

    def restore_marker_checkpoint(self) -> None:
        checkpoint = self.marker_path + CHECKPOINT_SUFFIX
        if os.path.exists(checkpoint):
            os.replace(checkpoint, self.marker_path)
            logger.info("snapshot_marker_rolled_back | path=%s", self.marker_path)
        else:
            self.invalidate_marker()

    def discard_marker_checkpoint(self) -> None:
        checkpoint = self.marker_path + CHECKPOINT_SUFFIX
        if os.path.exists(checkpoint):
            os.remove(checkpoint)
