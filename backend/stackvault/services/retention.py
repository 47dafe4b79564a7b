"""Age-based pruning of backup sets.

Sets are pruned per marker lineage (one Full plus the Incrementals built on
its marker version). A lineage goes only when its newest member is past the
cutoff, so an Incremental inside the window never loses its ancestors. The
lineage of the most recent Full is never pruned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from stackvault.domain.enums import BackupKind
from stackvault.domain.timestamps import format_timestamp, now_local
from stackvault.domain.types import BackupSet
from stackvault.services.snapshots import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass
class RetentionPlan:
    cutoff: datetime
    delete: List[BackupSet] = field(default_factory=list)
    keep: List[BackupSet] = field(default_factory=list)


def _lineage_key(backup_set: BackupSet) -> Tuple[str, str]:
    if backup_set.marker_version:
        return ("version", backup_set.marker_version)
    # sets without metadata can't join a lineage; each stands alone
    return ("orphan", backup_set.name)


class BackupRetention:
    def __init__(self, store: SnapshotStore, *, window: timedelta = timedelta(days=30)) -> None:
        self.store = store
        self.window = window

    def plan(self, now: Optional[datetime] = None) -> RetentionPlan:
        now = now or now_local()
        cutoff = now - self.window
        sets = self.store.list_sets()
        anchor = self.store.latest_full()
        protected_key = _lineage_key(anchor) if anchor is not None else None

        lineages: Dict[Tuple[str, str], List[BackupSet]] = {}
        for backup_set in sets:
            lineages.setdefault(_lineage_key(backup_set), []).append(backup_set)

        plan = RetentionPlan(cutoff=cutoff)
        incrementals: List[BackupSet] = []
        fulls: List[BackupSet] = []
        for key, members in lineages.items():
            newest = max(m.timestamp for m in members)
            expired = newest < cutoff and key != protected_key
            if key[0] == "orphan" and anchor is not None and newest >= anchor.timestamp:
                expired = False
            if not expired:
                plan.keep.extend(members)
                continue
            for member in members:
                (fulls if member.kind == BackupKind.FULL else incrementals).append(member)

        # dependents go before their anchors
        incrementals.sort(key=lambda s: s.sort_key, reverse=True)
        fulls.sort(key=lambda s: s.sort_key, reverse=True)
        plan.delete = incrementals + fulls
        plan.keep.sort(key=lambda s: s.sort_key)
        return plan

    def apply(self, now: Optional[datetime] = None) -> List[BackupSet]:
        """Delete everything the plan marks; returns the sets actually removed."""
        plan = self.plan(now)
        deleted: List[BackupSet] = []
        for backup_set in plan.delete:
            try:
                self.store.delete_set(backup_set)
            except OSError as exc:
                logger.error("retention_delete_failed | archive=%s error=%s", backup_set.archive_path, exc)
                continue
            deleted.append(backup_set)
        logger.info(
            "retention_applied | cutoff=%s deleted=%s kept=%s",
            format_timestamp(plan.cutoff),
            len(deleted),
            len(plan.keep),
        )
        return deleted
