"""Container State Recorder.

Writes one `<container>_<timestamp>.json` per container and one
`projects/<project>_<timestamp>.tar.gz` per compose project directory into
the state backup directory, and reads them back at restore time.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tarfile
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import ValidationError

from stackvault.domain.timestamps import extract_timestamp, format_timestamp, now_local, parse_timestamp
from stackvault.domain.types import ContainerState
from stackvault.schemas.records import ContainerRecord

logger = logging.getLogger(__name__)

RECORD_NAME_RE = re.compile(r"^(?P<name>.+)_(?P<ts>\d{8}_\d{6})\.json$")
PROJECTS_SUBDIR = "projects"


class ContainerStateRecorder:
    def __init__(self, root: str) -> None:
        self.root = root

    @property
    def projects_dir(self) -> str:
        return os.path.join(self.root, PROJECTS_SUBDIR)

    def record_path(self, name: str, timestamp: datetime) -> str:
        return os.path.join(self.root, f"{name}_{format_timestamp(timestamp)}.json")

    def record_container(self, state: ContainerState, timestamp: datetime) -> ContainerRecord:
        record = ContainerRecord.from_state(state, timestamp)
        os.makedirs(self.root, exist_ok=True)
        path = self.record_path(record.name, timestamp)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(record.model_dump_json(indent=2))
        os.replace(tmp_path, path)
        logger.info(
            "container_recorded | name=%s project_dir=%s health_kind=%s path=%s",
            record.name,
            record.project_directory,
            record.health_kind.value,
            path,
        )
        return record

    def record_project(self, project_dir: str, timestamp: datetime) -> str:
        """Archive a compose project directory (manifests, env files) as tar.gz."""
        os.makedirs(self.projects_dir, exist_ok=True)
        base = os.path.basename(os.path.normpath(project_dir))
        archive_path = os.path.join(self.projects_dir, f"{base}_{format_timestamp(timestamp)}.tar.gz")
        with tarfile.open(archive_path, "w:gz") as tar:
            tar.add(project_dir, arcname=base)
        logger.info("project_recorded | project_dir=%s archive=%s", project_dir, archive_path)
        return archive_path

    def load_record(self, path: str) -> Optional[ContainerRecord]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                payload = json.load(f)
            return ContainerRecord.model_validate(payload)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("container_record_unreadable | path=%s error=%s", path, exc)
            return None

    def list_records(self, timestamp: datetime) -> List[ContainerRecord]:
        """Records captured at exactly `timestamp`, sorted by container name."""
        stamp = format_timestamp(timestamp)
        records: List[ContainerRecord] = []
        for name in self._record_files():
            match = RECORD_NAME_RE.match(name)
            if match is None or match.group("ts") != stamp:
                continue
            record = self.load_record(os.path.join(self.root, name))
            if record is not None:
                records.append(record)
        records.sort(key=lambda r: r.name)
        return records

    def list_timestamps(self) -> List[datetime]:
        stamps = set()
        for name in self._record_files():
            match = RECORD_NAME_RE.match(name)
            if match is None:
                continue
            try:
                stamps.add(parse_timestamp(match.group("ts")))
            except ValueError:
                continue
        return sorted(stamps)

    def prune(self, *, window: timedelta, now: Optional[datetime] = None) -> int:
        """Delete record files and project archives older than the window."""
        cutoff = (now or now_local()) - window
        removed = 0
        for directory in (self.root, self.projects_dir):
            if not os.path.isdir(directory):
                continue
            for name in os.listdir(directory):
                path = os.path.join(directory, name)
                if not os.path.isfile(path) or not name.endswith((".json", ".tar.gz")):
                    continue
                captured = extract_timestamp(name)
                if captured is None or captured >= cutoff:
                    continue
                try:
                    os.remove(path)
                    removed += 1
                except OSError as exc:
                    logger.error("record_prune_failed | path=%s error=%s", path, exc)
        logger.info("records_pruned | cutoff=%s removed=%s", format_timestamp(cutoff), removed)
        return removed

    def _record_files(self) -> List[str]:
        if not os.path.isdir(self.root):
            return []
        return sorted(n for n in os.listdir(self.root) if n.endswith(".json"))
