"""Fleet orchestration: backup cycle, restore and start across all compose projects.

`FleetService` wires the collaborators together from `FleetSettings` and
records every invocation as a `Run` with one `TaskRun` per project or
container. A database session is optional; without one the Run rows are
built in memory only.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

import httpx
from sqlalchemy.orm import Session

from stackvault.core.config import FleetSettings
from stackvault.core.logging import log_event, run_log
from stackvault.core.notifier import send_failure_email
from stackvault.core.runtime.archive import ArchiveCodec, TarZstdCodec
from stackvault.core.runtime.compose import ComposeCLI
from stackvault.core.runtime.discovery import discover_service_directories, resolve_base_dir
from stackvault.core.runtime.docker import DockerEngine
from stackvault.core.threads import run_in_worker_thread
from stackvault.domain.enums import RunOperation, RunStatus, TaskStatus
from stackvault.domain.errors import (
    FATAL_ERRORS,
    ArchiveCorrupt,
    ChainBroken,
    DirectoryUnavailable,
    NoServiceDirectories,
    PartialFailure,
    StackVaultError,
    ToolMissing,
)
from stackvault.domain.timestamps import format_timestamp, now_local
from stackvault.domain.types import BackupChain, BackupSet, ProjectStartResult, ProjectStopResult, SnapshotMarker
from stackvault.models import Run as RunModel, TaskRun as TaskRunModel
from stackvault.services.backups import BackupChainBuilder
from stackvault.services.chains import RestoreChainResolver
from stackvault.services.health import HealthVerifier, Sleep
from stackvault.services.records import ContainerStateRecorder
from stackvault.services.restores import RestoreScheduler
from stackvault.services.retention import BackupRetention
from stackvault.services.shutdown import ShutdownCoordinator
from stackvault.services.snapshots import SnapshotStore
from stackvault.services.startup import ProjectStarter

logger = logging.getLogger(__name__)

# Errors that abort a restore before any container is touched
RESTORE_ABORTING_ERRORS = FATAL_ERRORS + (ChainBroken, ArchiveCorrupt)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def aggregate_status(succeeded: int, failed: int) -> RunStatus:
    if failed == 0:
        return RunStatus.SUCCESS
    if succeeded == 0:
        return RunStatus.FAILED
    return RunStatus.PARTIAL


class FleetService:
    def __init__(
        self,
        db: Optional[Session] = None,
        settings: Optional[FleetSettings] = None,
        *,
        runtime: Optional[DockerEngine] = None,
        compose: Optional[ComposeCLI] = None,
        codec: Optional[ArchiveCodec] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = now_local,
        notifier: Callable[[str, str], object] = send_failure_email,
        which: Callable[[str], Optional[str]] = shutil.which,
    ) -> None:
        self.db = db
        self.settings = settings or FleetSettings.from_env()
        s = self.settings
        self.runtime = runtime or DockerEngine(s.docker_socket_path)
        self.compose = compose or ComposeCLI(s.compose_command)
        self.codec = codec or TarZstdCodec(
            level=s.compression_level,
            cpu_fraction=s.compression_cpu_fraction,
            excludes=s.backup_excludes,
        )
        self.clock = clock
        self.notifier = notifier
        self.which = which

        self.store = SnapshotStore(s.config_backup_dir, prefix=s.archive_prefix, extension=self.codec.extension)
        self.recorder = ContainerStateRecorder(s.state_backup_dir)
        self.verifier = HealthVerifier(self.runtime, sleep=sleep)
        self.retention = BackupRetention(self.store, window=s.retention_window)
        self.builder = BackupChainBuilder(
            self.store,
            self.codec,
            stale_window=s.marker_stale_window,
            retention=self.retention,
            clock=clock,
        )
        self.resolver = RestoreChainResolver(self.store, self.codec)
        self.shutdown = ShutdownCoordinator(
            self.runtime,
            self.compose,
            self.verifier,
            recorder=self.recorder,
            stop_timeout=s.stop_timeout,
            sigterm_wait=s.sigterm_wait,
            final_wait=s.final_wait,
            sleep=sleep,
        )
        self.restorer = RestoreScheduler(
            self.runtime,
            self.compose,
            self.verifier,
            self.codec,
            staging_dir=s.staging_dir,
            base_dir=s.appdata_dir,
            attempts=s.restore_attempts,
            retry_delay=s.restore_retry_delay,
            health_timeout=s.restore_health_timeout,
            health_interval=s.health_interval,
            error_dir=s.log_dir,
            sleep=sleep,
        )
        self.starter = ProjectStarter(
            self.runtime,
            self.compose,
            self.verifier,
            health_timeout=s.start_health_timeout,
            health_interval=s.health_interval,
        )

    # ---- read-only views ---------------------------------------------

    def list_backups(self) -> List[BackupSet]:
        return self.store.list_sets()

    def marker(self) -> Optional[SnapshotMarker]:
        return self.store.read_marker()

    def describe_chain(self, timestamp: Optional[datetime] = None, *, verify: bool = True) -> BackupChain:
        return self.resolver.resolve(timestamp, verify=verify)

    # ---- preflight ---------------------------------------------------

    def preflight(self, *, need_tar: bool = True) -> None:
        tools = [self.compose.executable]
        tar_bin = getattr(self.codec, "tar_bin", None)
        if need_tar and tar_bin:
            tools.append(tar_bin)
        missing = [tool for tool in tools if not self.which(tool)]
        if missing:
            raise ToolMissing(f"required tools not found on PATH: {', '.join(missing)}")
        if not run_in_worker_thread(self.runtime.ping, name="stackvault-ping"):
            raise ToolMissing(f"docker daemon not reachable at {self.settings.docker_socket_path}")

    def _service_directories(self) -> tuple[str, List[str]]:
        base_dir = resolve_base_dir(self.settings.appdata_dir, self.settings.appdata_fallback_dir)
        dirs = discover_service_directories(base_dir)
        if not dirs:
            raise NoServiceDirectories(f"no compose projects found under {base_dir}")
        return base_dir, dirs

    # ---- operations --------------------------------------------------

    def backup_cycle(self, trigger: str = "manual", *, restart: Optional[bool] = None) -> RunModel:
        """Stop every project, archive the appdata tree, then bring the fleet back.

        The archive is skipped when any project failed to quiesce. The fleet
        is restarted and the Run closed however the archive phase ends.
        """
        restart = self.settings.restart_after_backup if restart is None else restart
        ts = self.clock()
        run = self._start_run(RunOperation.BACKUP, trigger)
        run.backup_timestamp = format_timestamp(ts)

        with run_log(self.settings.log_dir, RunOperation.BACKUP.value, ts) as log_path:
            run.log_path = log_path
            try:
                self.preflight()
                base_dir, dirs = self._service_directories()
                for directory in (self.settings.state_backup_dir, self.settings.config_backup_dir):
                    try:
                        os.makedirs(directory, exist_ok=True)
                    except OSError as exc:
                        raise DirectoryUnavailable(f"cannot create {directory}: {exc}") from exc
            except FATAL_ERRORS as exc:
                self._abort_run(run, exc)
                raise

            try:
                self._archive_fleet(run, base_dir, dirs, ts)
            except BaseException as exc:
                run.status = RunStatus.FAILED.value
                run.message = f"backup cycle aborted: {type(exc).__name__}: {exc}"
                log_event(logger, "backup_cycle_aborted", level=logging.ERROR, error=repr(exc))
                raise
            finally:
                try:
                    if restart:
                        self._restart_projects(run, dirs)
                finally:
                    self._finish_run(run)
        return run

    def _archive_fleet(self, run: RunModel, base_dir: str, dirs: Sequence[str], ts: datetime) -> None:
        stop_results = run_in_worker_thread(lambda: self._stop_projects(dirs, ts), name="stackvault-stop")
        not_quiesced: List[str] = []
        for result in stop_results:
            self._add_project_stop_task(run, result)
            try:
                result.raise_for_quiesce()
            except PartialFailure as exc:
                logger.error("project_not_quiesced | %s failed=%s", exc, ",".join(exc.failed))
                not_quiesced.append(result.directory)

        if not_quiesced:
            run.status = RunStatus.FAILED.value
            run.message = (
                f"backup suppressed: {len(not_quiesced)} project(s) not safely stopped "
                f"({', '.join(os.path.basename(d) for d in not_quiesced)})"
            )
            log_event(logger, "backup_suppressed", level=logging.ERROR, projects=",".join(not_quiesced))
            return

        try:
            backup_set = run_in_worker_thread(
                lambda: self.builder.create_backup(base_dir, timestamp=ts), name="stackvault-backup"
            )
        except StackVaultError as exc:
            run.status = RunStatus.FAILED.value
            run.message = f"backup failed: {exc}"
            return

        run.status = RunStatus.SUCCESS.value
        run.backup_kind = backup_set.kind.value
        run.archive_path = backup_set.archive_path
        run.archive_bytes = _file_size(backup_set.archive_path)
        run.message = f"{backup_set.kind.value} backup {backup_set.name} committed"
        try:
            self.recorder.prune(window=self.settings.retention_window, now=ts)
        except OSError as exc:
            logger.error("state_prune_failed | error=%s", exc)

    def _restart_projects(self, run: RunModel, dirs: Sequence[str]) -> None:
        try:
            start_results = run_in_worker_thread(
                lambda: self.starter.start_projects(dirs, refresh=False), name="stackvault-restart"
            )
        except Exception as exc:
            logger.error("fleet_restart_failed | error=%s", exc)
            if run.status == RunStatus.SUCCESS.value:
                run.status = RunStatus.PARTIAL.value
            run.message = f"{run.message}; restart failed: {exc}"
            return
        for start_result in start_results:
            self._add_project_start_task(run, start_result)
        failed_starts = [r for r in start_results if not r.ok]
        if failed_starts and run.status == RunStatus.SUCCESS.value:
            run.status = RunStatus.PARTIAL.value
            run.message = f"{run.message}; {len(failed_starts)} project(s) did not come back healthy"

    def restore(
        self,
        trigger: str = "manual",
        *,
        timestamp: Optional[datetime] = None,
        concurrency: Optional[int] = None,
    ) -> RunModel:
        """Replay the chain ending at `timestamp` (newest when None) and restart its containers.

        Orphaned containers and staging trees are cleaned up however the
        run ends, including on interruption.
        """
        concurrency = concurrency or self.settings.restore_concurrency
        started = self.clock()
        run = self._start_run(RunOperation.RESTORE, trigger)

        with run_log(self.settings.log_dir, RunOperation.RESTORE.value, started) as log_path:
            run.log_path = log_path
            try:
                try:
                    self._replay_and_restart(run, timestamp, concurrency)
                finally:
                    self._cleanup_restore_leftovers()
            except RESTORE_ABORTING_ERRORS as exc:
                self._abort_run(run, exc)
                raise
            except BaseException as exc:
                run.status = RunStatus.FAILED.value
                run.message = f"restore aborted: {type(exc).__name__}: {exc}"
                log_event(logger, "restore_aborted", level=logging.ERROR, error=repr(exc))
                self._finish_run(run)
                raise
            self._finish_run(run)
        return run

    def _replay_and_restart(self, run: RunModel, timestamp: Optional[datetime], concurrency: int) -> None:
        self.preflight()
        chain = self.resolver.resolve(timestamp)
        run.backup_timestamp = format_timestamp(chain.final_timestamp)
        run.archive_path = chain.members[-1].archive_path
        destination = self._restore_destination()
        run_in_worker_thread(lambda: self.restorer.apply_chain(chain, destination), name="stackvault-apply")

        records = self.recorder.list_records(chain.final_timestamp)
        if not records:
            logger.warning("restore_no_records | timestamp=%s", run.backup_timestamp)
        result = self.restorer.restore_containers(records, concurrency=concurrency)
        for name in result.succeeded:
            self._add_task(run, "container", name, TaskStatus.SUCCEEDED)
        for name, error in result.failed.items():
            self._add_task(run, "container", name, TaskStatus.FAILED, error)

        run.status = aggregate_status(len(result.succeeded), len(result.failed)).value
        run.message = (
            f"restored {len(chain)} set(s) up to {run.backup_timestamp}; "
            f"containers succeeded={len(result.succeeded)} failed={len(result.failed)}"
        )

    def _cleanup_restore_leftovers(self) -> None:
        try:
            run_in_worker_thread(self.restorer.cleanup_orphans, name="stackvault-orphans")
        except httpx.HTTPError as exc:
            logger.warning("orphan_cleanup_failed | error=%s", exc)
        self.restorer.remove_stale_staging()

    def start_all(self, trigger: str = "manual") -> RunModel:
        """Down, pull and up every project, then verify container health."""
        started = self.clock()
        run = self._start_run(RunOperation.START, trigger)
        with run_log(self.settings.log_dir, RunOperation.START.value, started) as log_path:
            run.log_path = log_path
            try:
                self.preflight(need_tar=False)
                _, dirs = self._service_directories()
            except FATAL_ERRORS as exc:
                self._abort_run(run, exc)
                raise

            results = run_in_worker_thread(lambda: self.starter.start_projects(dirs), name="stackvault-start")
            for result in results:
                self._add_project_start_task(run, result)
            ok = sum(1 for r in results if r.ok)
            run.status = aggregate_status(ok, len(results) - ok).value
            run.message = f"projects started={ok} failed={len(results) - ok}"
            self._finish_run(run)
        return run

    # ---- helpers -----------------------------------------------------

    async def _stop_projects(self, dirs: Sequence[str], ts: datetime) -> List[ProjectStopResult]:
        results: List[ProjectStopResult] = []
        for directory in dirs:
            try:
                results.append(await self.shutdown.stop_project(directory, timestamp=ts))
            except httpx.HTTPError as exc:
                logger.error("project_stop_error | project_dir=%s error=%s", directory, exc)
                results.append(ProjectStopResult(directory=directory, failed={"*": f"runtime error: {exc}"}))
        return results

    def _restore_destination(self) -> str:
        try:
            return resolve_base_dir(self.settings.appdata_dir, self.settings.appdata_fallback_dir)
        except DirectoryUnavailable:
            # restoring onto a fresh host: the tree is created by the apply phase
            return self.settings.appdata_dir

    def _start_run(self, operation: RunOperation, trigger: str) -> RunModel:
        run = RunModel(
            operation=operation.value,
            trigger=trigger,
            started_at=_utcnow(),
            status=RunStatus.RUNNING.value,
            succeeded_count=0,
            failed_count=0,
        )
        self._save(run)
        log_event(logger, "run_started", operation=operation.value, trigger=trigger, run_id=run.id)
        return run

    def _add_task(
        self,
        run: RunModel,
        kind: str,
        name: str,
        status: TaskStatus,
        message: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> None:
        now = _utcnow()
        run.task_runs.append(
            TaskRunModel(
                kind=kind,
                name=name,
                status=status.value,
                message=message,
                attempts=attempts,
                started_at=now,
                finished_at=now,
            )
        )

    def _add_project_stop_task(self, run: RunModel, result: ProjectStopResult) -> None:
        name = os.path.basename(result.directory)
        if result.quiesced:
            self._add_task(run, "project", name, TaskStatus.SUCCEEDED, f"stopped {len(result.stopped)} container(s)")
            return
        details = [f"{k}: {v}" for k, v in result.failed.items()]
        details.extend(f"{n}: still running" for n in result.still_running)
        self._add_task(run, "project", name, TaskStatus.FAILED, "; ".join(details))

    def _add_project_start_task(self, run: RunModel, result: ProjectStartResult) -> None:
        name = os.path.basename(result.directory)
        if result.ok:
            self._add_task(run, "project", name, TaskStatus.SUCCEEDED, f"healthy={len(result.healthy)}")
            return
        message = result.error or "; ".join(f"{k}: {v}" for k, v in result.unhealthy.items())
        self._add_task(run, "project", name, TaskStatus.FAILED, message)

    def _abort_run(self, run: RunModel, exc: StackVaultError) -> None:
        run.status = RunStatus.FAILED.value
        run.message = f"{exc.code}: {exc}"
        log_event(logger, "run_aborted", level=logging.ERROR, error=str(exc), error_type=type(exc).__name__)
        self._finish_run(run)

    def _finish_run(self, run: RunModel) -> None:
        run.finished_at = _utcnow()
        run.succeeded_count = sum(1 for t in run.task_runs if t.status == TaskStatus.SUCCEEDED.value)
        run.failed_count = sum(1 for t in run.task_runs if t.status == TaskStatus.FAILED.value)
        self._save(run)
        log_event(
            logger,
            "run_finished",
            operation=run.operation,
            run_id=run.id,
            status=run.status,
            succeeded=run.succeeded_count,
            failed=run.failed_count,
            message=run.message,
        )
        if run.status in (RunStatus.FAILED.value, RunStatus.PARTIAL.value):
            self._notify(run)

    def _notify(self, run: RunModel) -> None:
        failed_tasks = [f"- {t.kind} {t.name}: {t.message}" for t in run.task_runs if t.status == TaskStatus.FAILED.value]
        body = (
            f"Operation: {run.operation}\n"
            f"Trigger: {run.trigger}\n"
            f"Status: {run.status}\n"
            f"Started: {run.started_at}\n"
            f"Finished: {run.finished_at}\n"
            f"Backup timestamp: {run.backup_timestamp}\n"
            f"Message: {run.message}\n"
            f"Log file: {run.log_path}\n"
        )
        if failed_tasks:
            body += "\nFailures:\n" + "\n".join(failed_tasks) + "\n"
        self.notifier(f"[stackvault] {run.operation} {run.status}", body)

    def _save(self, run: RunModel) -> None:
        if self.db is None:
            return
        self.db.add(run)
        self.db.commit()
        self.db.refresh(run)


def _file_size(path: str) -> Optional[int]:
    try:
        return os.path.getsize(path)
    except OSError:
        return None
