"""Backup chain builder: decides Full vs Incremental and produces the archive."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from stackvault.core.logging import log_event
from stackvault.core.runtime.archive import ArchiveCodec
from stackvault.core.runtime.discovery import check_directory
from stackvault.core.sidecar import remove_sidecar
from stackvault.domain.enums import BackupKind
from stackvault.domain.errors import ArchiveCorrupt, BackupFailed, StackVaultError
from stackvault.domain.timestamps import format_timestamp, now_local
from stackvault.domain.types import BackupSet, SnapshotMarker
from stackvault.services.retention import BackupRetention
from stackvault.services.snapshots import SnapshotStore

logger = logging.getLogger(__name__)


class BackupChainBuilder:
    """Appends one BackupSet per call to a SnapshotStore."""

    def __init__(
        self,
        store: SnapshotStore,
        codec: ArchiveCodec,
        *,
        stale_window: timedelta = timedelta(days=7),
        retention: Optional[BackupRetention] = None,
        clock: Callable[[], datetime] = now_local,
    ) -> None:
        self.store = store
        self.codec = codec
        self.stale_window = stale_window
        self.retention = retention
        self.clock = clock

    def decide_kind(self, now: datetime) -> Tuple[BackupKind, Optional[SnapshotMarker], str]:
        """Return the kind of the next backup, the marker to build on, and why.

        An Incremental is only chosen when the current marker is fresh, its
        Full is inside the window, and the set the marker last advanced to is
        still in the store. Anything else forces a Full.
        """
        marker = self.store.read_marker()
        if marker is None:
            return BackupKind.FULL, None, "marker_absent"
        if marker.is_stale(now, self.stale_window):
            return BackupKind.FULL, marker, "marker_stale"

        anchor = self.store.latest_full(marker.version)
        if anchor is None or now - anchor.timestamp > self.stale_window:
            return BackupKind.FULL, marker, "no_full_in_window"

        if marker.last_timestamp is None:
            return BackupKind.FULL, marker, "lineage_gap"
        previous = self.store.get(marker.last_timestamp)
        if previous is None or previous.marker_version != marker.version:
            return BackupKind.FULL, marker, "lineage_gap"

        return BackupKind.INCREMENTAL, marker, "within_window"

    async def create_backup(self, source_root: str, *, timestamp: Optional[datetime] = None) -> BackupSet:
        """Archive `source_root` and commit the result as the next BackupSet.

        The archive is self-tested before it is committed. An archive that
        fails its self-test or cannot be committed is removed with its sidecar
        and the marker is rolled back, so the next attempt sees the same state
        this one did.
        """
        source_root = check_directory(source_root)
        ts = timestamp or self.clock()
        self.store.ensure_root()

        newest = self.store.latest()
        if newest is not None and ts <= newest.timestamp:
            raise BackupFailed(
                f"backup timestamp {format_timestamp(ts)} is not after the newest set {newest.stamp}"
            )

        kind, marker, reason = self.decide_kind(ts)
        log_event(logger, "backup_kind_decided", kind=kind.value, reason=reason, timestamp=format_timestamp(ts))

        parent: Optional[datetime] = None
        if kind == BackupKind.FULL or marker is None:
            kind = BackupKind.FULL
            marker = self.store.reset_marker(ts)
        else:
            self.store.checkpoint_marker()
            parent = marker.last_timestamp

        archive_path = self.store.archive_path_for(ts)
        backup_set = BackupSet(
            timestamp=ts,
            kind=kind,
            archive_path=archive_path,
            source_root=source_root,
            marker_version=marker.version,
            parent_timestamp=parent,
        )
        try:
            await self.codec.create(source_root, archive_path, marker.path)
            if not self.codec.test(archive_path):
                raise ArchiveCorrupt(f"{os.path.basename(archive_path)} failed its integrity self-test")
            self.store.commit(backup_set, codec=self.codec.extension)
            self.store.advance_marker(marker, ts)
            self.store.discard_marker_checkpoint()
            size = os.path.getsize(archive_path)
        except Exception as exc:
            self._discard_failed(archive_path, kind)
            log_event(
                logger,
                "backup_failed",
                level=logging.ERROR,
                archive=archive_path,
                kind=kind.value,
                error=str(exc),
            )
            if isinstance(exc, StackVaultError):
                raise
            raise BackupFailed(f"backup of {source_root} failed: {exc}") from exc

        log_event(
            logger,
            "backup_committed",
            archive=archive_path,
            kind=kind.value,
            bytes=size,
            parent=format_timestamp(parent) if parent else None,
        )

        if self.retention is not None:
            try:
                self.retention.apply(now=ts)
            except OSError as exc:
                logger.error("backup_retention_failed | error=%s", exc)

        return backup_set

    def _discard_failed(self, archive_path: str, kind: BackupKind) -> None:
        # A half-committed set must leave neither archive nor sidecar behind.
        try:
            if os.path.exists(archive_path):
                os.remove(archive_path)
            remove_sidecar(archive_path)
        except OSError as exc:
            logger.error("backup_cleanup_failed | archive=%s error=%s", archive_path, exc)
        try:
            if kind == BackupKind.FULL:
                self.store.invalidate_marker()
            else:
                self.store.restore_marker_checkpoint()
        except OSError as exc:
            logger.error("backup_marker_rollback_failed | kind=%s error=%s", kind.value, exc)
