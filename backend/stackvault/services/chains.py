"""Restore chain resolution: root Full plus ordered Incrementals up to a target."""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import List, Optional

from stackvault.core.runtime.archive import ArchiveCodec
from stackvault.domain.enums import BackupKind
from stackvault.domain.errors import ArchiveCorrupt, ChainBroken, NoFullBackup
from stackvault.domain.timestamps import format_timestamp
from stackvault.domain.types import BackupChain, BackupSet
from stackvault.services.snapshots import SnapshotStore

logger = logging.getLogger(__name__)


class RestoreChainResolver:
    """Reads the store and returns a verified BackupChain, or raises.

    Resolution never returns a partial chain: a missing, unlinked or corrupt
    member fails the whole call.
    """

    def __init__(self, store: SnapshotStore, codec: ArchiveCodec) -> None:
        self.store = store
        self.codec = codec

    def latest_timestamp(self) -> Optional[datetime]:
        latest = self.store.latest()
        return latest.timestamp if latest is not None else None

    def resolve(self, target: Optional[datetime] = None, *, verify: bool = True) -> BackupChain:
        if target is None:
            target = self.latest_timestamp()
            if target is None:
                raise NoFullBackup(f"no backup sets in {self.store.root}")

        candidates = [s for s in self.store.list_sets() if s.timestamp <= target]
        root_index: Optional[int] = None
        for index, backup_set in enumerate(candidates):
            if backup_set.kind == BackupKind.FULL:
                root_index = index
        if root_index is None:
            raise NoFullBackup(f"no Full backup at or before {format_timestamp(target)}")

        root = candidates[root_index]
        members: List[BackupSet] = [root]
        for backup_set in candidates[root_index + 1 :]:
            previous = members[-1]
            if backup_set.kind != BackupKind.INCREMENTAL:
                raise ChainBroken(f"{backup_set.name} has no usable metadata")
            if backup_set.marker_version != root.marker_version:
                raise ChainBroken(
                    f"{backup_set.name} belongs to marker {backup_set.marker_version}, "
                    f"not {root.marker_version} of {root.name}"
                )
            if backup_set.parent_timestamp != previous.timestamp:
                expected = format_timestamp(backup_set.parent_timestamp) if backup_set.parent_timestamp else "none"
                raise ChainBroken(
                    f"{backup_set.name} was built on {expected} but the preceding set is {previous.stamp}"
                )
            members.append(backup_set)

        chain = BackupChain(members=members, target=target)
        if verify:
            self.verify(chain)
        logger.info(
            "chain_resolved | target=%s root=%s members=%s",
            format_timestamp(target),
            root.stamp,
            len(chain),
        )
        return chain

    def verify(self, chain: BackupChain) -> None:
        """Self-test every member in replay order."""
        for member in chain:
            if not os.path.isfile(member.archive_path):
                raise ChainBroken(f"{member.name} is missing from {self.store.root}")
            if not self.codec.test(member.archive_path):
                raise ArchiveCorrupt(f"{member.name} failed its integrity self-test")
