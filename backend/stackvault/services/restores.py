"""Restore Scheduler.

Two phases:

1. `apply_chain`: every chain member is self-tested, replayed in order into a
   private staging directory, and the assembled tree is mirrored onto the
   destination. Nothing touches the destination until the whole chain has
   been extracted.
2. `restore_containers`: recorded containers are brought back in batches of
   `concurrency`. Each task runs on its own thread with its own event loop;
   a batch finishes completely before the next one starts.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import tempfile
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence

import httpx

from stackvault.core.runtime.archive import ArchiveCodec
from stackvault.core.runtime.compose import ComposeCLI
from stackvault.core.runtime.discovery import find_compose_file, locate_project_directories
from stackvault.core.runtime.docker import DockerEngine
from stackvault.core.runtime.sync import mirror_tree
from stackvault.domain.enums import HealthOutcome, TaskStatus
from stackvault.domain.errors import ArchiveCorrupt, ChainBroken, DirectoryUnavailable, UnresolvableProject
from stackvault.domain.types import BackupChain, RestoreResult, RestoreTask
from stackvault.schemas.records import ContainerRecord
from stackvault.services.health import HealthVerifier, Sleep

logger = logging.getLogger(__name__)

Locator = Callable[[str, str], List[str]]

STAGING_PREFIX = "stackvault_restore_"
ERROR_LOG_TAIL = 50


def _format_duration(seconds: float) -> str:
    seconds = max(0, int(seconds))
    minutes, secs = divmod(seconds, 60)
    return f"{minutes}m{secs:02d}s"


class RestoreScheduler:
    def __init__(
        self,
        runtime: DockerEngine,
        compose: ComposeCLI,
        verifier: HealthVerifier,
        codec: ArchiveCodec,
        *,
        staging_dir: str,
        base_dir: Optional[str] = None,
        attempts: int = 3,
        retry_delay: float = 5.0,
        health_timeout: float = 30.0,
        health_interval: float = 2.0,
        replace_timeout: int = 10,
        error_dir: Optional[str] = None,
        locator: Locator = locate_project_directories,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.runtime = runtime
        self.compose = compose
        self.verifier = verifier
        self.codec = codec
        self.staging_dir = staging_dir
        self.base_dir = base_dir
        self.attempts = max(1, attempts)
        self.retry_delay = retry_delay
        self.health_timeout = health_timeout
        self.health_interval = health_interval
        self.replace_timeout = replace_timeout
        self.error_dir = error_dir
        self.locator = locator
        self.sleep = sleep

    # ---- apply phase -------------------------------------------------

    async def apply_chain(self, chain: BackupChain, destination_root: str) -> Dict[str, int]:
        """Replay `chain` and converge `destination_root` to the replayed tree."""
        for member in chain:
            if not os.path.isfile(member.archive_path):
                raise ChainBroken(f"{member.name} is missing")
            if not self.codec.test(member.archive_path):
                raise ArchiveCorrupt(f"{member.name} failed its integrity self-test")

        os.makedirs(self.staging_dir, exist_ok=True)
        staging = tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=self.staging_dir)
        try:
            for index, member in enumerate(chain, start=1):
                logger.info(
                    "chain_member_extracting | index=%s total=%s archive=%s kind=%s",
                    index,
                    len(chain),
                    member.name,
                    member.kind.value,
                )
                await self.codec.extract(member.archive_path, staging)

            source_root = chain.root.source_root or destination_root
            tree = os.path.join(staging, os.path.basename(os.path.normpath(source_root)))
            if not os.path.isdir(tree):
                raise ArchiveCorrupt(f"replayed chain holds no '{os.path.basename(tree)}' tree")

            os.makedirs(destination_root, exist_ok=True)
            stats = mirror_tree(tree, destination_root)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        logger.info(
            "chain_applied | destination=%s members=%s copied=%s deleted=%s unchanged=%s",
            destination_root,
            len(chain),
            stats.get("copied", 0),
            stats.get("deleted", 0),
            stats.get("unchanged", 0),
        )
        return stats

    # ---- container phase ---------------------------------------------

    def restore_containers(self, records: Sequence[ContainerRecord], *, concurrency: int = 3) -> RestoreResult:
        tasks = [RestoreTask(record=record) for record in records]
        concurrency = max(1, concurrency)
        result = RestoreResult()
        started = time.monotonic()

        for offset in range(0, len(tasks), concurrency):
            batch = tasks[offset : offset + concurrency]
            result.batches.append([task.name for task in batch])
            threads = [
                threading.Thread(target=self._run_task, args=(task,), name=f"restore-{task.name}", daemon=True)
                for task in batch
            ]
            for th in threads:
                th.start()
            for th in threads:
                th.join()

            for task in batch:
                if task.status == TaskStatus.SUCCEEDED:
                    result.succeeded.append(task.name)
                else:
                    result.failed[task.name] = task.error or "restore did not complete"
            self._log_progress(result.processed, len(tasks), started)

        result.elapsed_sec = time.monotonic() - started
        logger.info(
            "containers_restored | total=%s succeeded=%s failed=%s elapsed=%s",
            len(tasks),
            len(result.succeeded),
            len(result.failed),
            _format_duration(result.elapsed_sec),
        )
        return result

    def _run_task(self, task: RestoreTask) -> None:
        try:
            asyncio.run(self.restore_container(task))
        except Exception as exc:  # noqa: BLE001
            logger.exception("restore_task_crashed | name=%s", task.name)
            task.fail(f"unexpected error: {exc}")

    def _log_progress(self, done: int, total: int, started: float) -> None:
        elapsed = time.monotonic() - started
        percent = (done * 100 // total) if total else 100
        eta = (elapsed / done) * (total - done) if done else 0.0
        logger.info(
            "restore_progress | done=%s total=%s percent=%s elapsed=%s eta=%s",
            done,
            total,
            percent,
            _format_duration(elapsed),
            _format_duration(eta),
        )

    async def restore_container(self, task: RestoreTask) -> RestoreTask:
        record: ContainerRecord = task.record
        task.status = TaskStatus.RUNNING

        try:
            project_dir = self.resolve_project_directory(record)
        except UnresolvableProject as exc:
            logger.error("restore_unresolvable | name=%s error=%s", record.name, exc)
            task.fail(str(exc))
            return task

        try:
            await self._replace_existing(record.name)
        except httpx.HTTPError as exc:
            logger.warning("restore_replace_failed | name=%s error=%s", record.name, exc)

        services = [record.service_name] if record.service_name else []
        for attempt in range(1, self.attempts + 1):
            task.attempts = attempt
            if await self.compose.up(project_dir, services):
                break
            logger.warning(
                "restore_up_failed | name=%s project_dir=%s attempt=%s/%s",
                record.name,
                project_dir,
                attempt,
                self.attempts,
            )
            if attempt < self.attempts:
                await self.sleep(self.retry_delay)
        else:
            task.fail(f"compose up failed after {self.attempts} attempts")
            await self._write_error_report(record.name, project_dir)
            return task

        outcome = await self.verifier.verify(
            record.name, timeout=self.health_timeout, interval=self.health_interval
        )
        task.outcome = outcome
        if outcome == HealthOutcome.HEALTHY:
            task.succeed()
            logger.info("restore_task_succeeded | name=%s attempts=%s", record.name, task.attempts)
        else:
            task.fail(f"container started but health is {outcome.value}")
            logger.warning("restore_task_unhealthy | name=%s outcome=%s", record.name, outcome.value)
            await self._write_error_report(record.name, project_dir)
        return task

    def resolve_project_directory(self, record: ContainerRecord) -> str:
        """Recorded working directory first; else exactly one matching service directory."""
        if record.project_directory and os.path.isdir(record.project_directory):
            return record.project_directory

        if record.project_name and self.base_dir:
            try:
                candidates = self.locator(self.base_dir, record.project_name)
            except DirectoryUnavailable as exc:
                raise UnresolvableProject(f"{record.name}: {exc}") from exc
            if len(candidates) == 1:
                logger.info(
                    "project_dir_located | name=%s project=%s dir=%s",
                    record.name,
                    record.project_name,
                    candidates[0],
                )
                return candidates[0]
            if len(candidates) > 1:
                raise UnresolvableProject(
                    f"{record.name}: {len(candidates)} directories match project '{record.project_name}'"
                )

        raise UnresolvableProject(
            f"{record.name}: no project directory recorded ({record.project_directory or 'none'}) "
            "and none could be located"
        )

    async def _replace_existing(self, name: str) -> None:
        state = await self.runtime.inspect(name)
        if state is None:
            return
        if state.running:
            await self.runtime.stop(name, self.replace_timeout)
        await self.runtime.remove(name, force=True)
        logger.info("restore_replaced_existing | name=%s", name)

    async def _write_error_report(self, name: str, project_dir: str) -> Optional[str]:
        """Save inspect output, recent logs and the compose file of a failed container."""
        if not self.error_dir:
            return None
        try:
            state = await self.runtime.inspect(name)
            inspect_text = json.dumps(state.raw, indent=2) if state is not None else "container not found"
        except httpx.HTTPError as exc:
            inspect_text = f"inspect failed: {exc}"
        try:
            logs_text = await self.runtime.logs(name, tail=ERROR_LOG_TAIL)
        except httpx.HTTPError as exc:
            logs_text = f"logs unavailable: {exc}"
        compose_file = find_compose_file(project_dir)
        compose_text = "no compose file found"
        if compose_file is not None:
            try:
                with open(compose_file, "r", encoding="utf-8") as fh:
                    compose_text = fh.read()
            except OSError as exc:
                compose_text = f"cannot read {compose_file}: {exc}"

        path = os.path.join(self.error_dir, f"{name}_error.log")
        try:
            os.makedirs(self.error_dir, exist_ok=True)
            with open(path, "w", encoding="utf-8") as fh:
                fh.write("===== container inspect =====\n")
                fh.write(inspect_text + "\n")
                fh.write(f"\n===== container logs (last {ERROR_LOG_TAIL} lines) =====\n")
                fh.write((logs_text if logs_text is not None else "container not found") + "\n")
                fh.write(f"\n===== {compose_file or 'compose file'} =====\n")
                fh.write(compose_text)
        except OSError as exc:
            logger.error("restore_error_report_failed | name=%s error=%s", name, exc)
            return None
        logger.info("restore_error_report_saved | name=%s path=%s", name, path)
        return path

    def remove_stale_staging(self) -> List[str]:
        """Delete staging trees an interrupted apply phase left behind."""
        if not os.path.isdir(self.staging_dir):
            return []
        removed: List[str] = []
        for entry in sorted(os.listdir(self.staging_dir)):
            path = os.path.join(self.staging_dir, entry)
            if entry.startswith(STAGING_PREFIX) and os.path.isdir(path):
                shutil.rmtree(path, ignore_errors=True)
                removed.append(path)
        if removed:
            logger.info("staging_removed | count=%s", len(removed))
        return removed

    async def cleanup_orphans(self) -> List[str]:
        """Remove containers left in `created` state (never started)."""
        removed: List[str] = []
        entries = await self.runtime.list_containers({"status": ["created"]}, include_stopped=True)
        for entry in entries:
            ref = str(entry.get("Id", ""))
            names = entry.get("Names") or []
            label = str(names[0]).lstrip("/") if names else ref[:12]
            if ref and await self.runtime.remove(ref, force=True):
                removed.append(label)
        if removed:
            logger.info("orphans_removed | count=%s names=%s", len(removed), ",".join(removed))
        return removed
