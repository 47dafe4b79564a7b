"""Shutdown Coordinator: records and stops every container of a compose project.

Each container goes through graceful stop, then SIGTERM, then SIGKILL; the
project counts as quiesced only if nothing is still running afterwards.
"""

from __future__ import annotations

import asyncio
import logging
import tarfile
from datetime import datetime
from typing import List, Optional

import httpx

from stackvault.core.runtime.compose import ComposeCLI
from stackvault.core.runtime.docker import DockerEngine
from stackvault.domain.enums import StopOutcome
from stackvault.domain.errors import ContainerUnkillable
from stackvault.domain.types import ContainerState, ProjectStopResult
from stackvault.services.health import HealthVerifier, Sleep
from stackvault.services.records import ContainerStateRecorder

logger = logging.getLogger(__name__)


def order_for_shutdown(states: List[ContainerState]) -> List[ContainerState]:
    """Best-effort dependency order: containers without links go first."""
    return sorted(states, key=lambda s: (1 if s.links else 0, s.name))


class ShutdownCoordinator:
    def __init__(
        self,
        runtime: DockerEngine,
        compose: ComposeCLI,
        verifier: HealthVerifier,
        *,
        recorder: Optional[ContainerStateRecorder] = None,
        stop_timeout: int = 3,
        sigterm_wait: float = 10.0,
        final_wait: float = 3.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.runtime = runtime
        self.compose = compose
        self.verifier = verifier
        self.recorder = recorder
        self.stop_timeout = stop_timeout
        self.sigterm_wait = sigterm_wait
        self.final_wait = final_wait
        self.sleep = sleep

    async def stop_container(self, ref: str) -> StopOutcome:
        """Escalate until the container is down; raises ContainerUnkillable otherwise."""
        if await self.runtime.stop(ref, self.stop_timeout):
            state = await self.runtime.inspect(ref)
            if state is None or not state.running:
                return StopOutcome.GRACEFUL

        logger.warning("container_stop_escalating | ref=%s signal=SIGTERM", ref)
        await self.runtime.kill(ref, "SIGTERM")
        if await self.verifier.await_stopped(ref, timeout=self.sigterm_wait):
            return StopOutcome.SIGTERM

        logger.warning("container_stop_escalating | ref=%s signal=SIGKILL", ref)
        await self.runtime.kill(ref, "SIGKILL")
        if await self.verifier.await_stopped(ref, timeout=self.final_wait):
            return StopOutcome.SIGKILL

        raise ContainerUnkillable(f"{ref} is still running after SIGKILL")

    async def stop_project(self, project_dir: str, *, timestamp: Optional[datetime] = None) -> ProjectStopResult:
        result = ProjectStopResult(directory=project_dir)
        refs = await self.compose.ps(project_dir)
        if refs is None:
            # an unknown container list can never count as quiesced
            result.failed["*"] = "compose ps failed; running containers unknown"
            logger.error("project_listing_failed | project_dir=%s", project_dir)
            return result

        states: List[ContainerState] = []
        for ref in refs:
            state = await self.runtime.inspect(ref)
            if state is not None:
                states.append(state)

        if self.recorder is not None and timestamp is not None:
            self._record(self.recorder, project_dir, states, timestamp, result)

        for state in order_for_shutdown(states):
            if not state.running:
                result.stopped[state.name] = StopOutcome.ALREADY_STOPPED.value
                continue
            try:
                outcome = await self.stop_container(state.name)
            except (ContainerUnkillable, httpx.HTTPError) as exc:
                logger.error("container_stop_failed | project_dir=%s name=%s error=%s", project_dir, state.name, exc)
                result.failed[state.name] = str(exc)
                continue
            result.stopped[state.name] = outcome.value
            logger.info("container_stopped | name=%s outcome=%s", state.name, outcome.value)

        if states:
            await self.sleep(self.final_wait)
            remaining = await self.compose.ps(project_dir)
            if remaining is None:
                result.failed["*"] = "compose ps failed while confirming shutdown"
                logger.error("project_listing_failed | project_dir=%s phase=confirm", project_dir)
            for ref in remaining or []:
                state = await self.runtime.inspect(ref)
                if state is not None and state.running:
                    result.still_running.append(state.name)

        logger.info(
            "project_stopped | project_dir=%s stopped=%s failed=%s still_running=%s quiesced=%s",
            project_dir,
            len(result.stopped),
            len(result.failed),
            len(result.still_running),
            result.quiesced,
        )
        return result

    def _record(
        self,
        recorder: ContainerStateRecorder,
        project_dir: str,
        states: List[ContainerState],
        timestamp: datetime,
        result: ProjectStopResult,
    ) -> None:
        for state in states:
            try:
                recorder.record_container(state, timestamp)
            except OSError as exc:
                logger.error("container_record_failed | name=%s error=%s", state.name, exc)
                result.failed[state.name] = f"state not recorded: {exc}"
        try:
            recorder.record_project(project_dir, timestamp)
        except (OSError, tarfile.TarError) as exc:
            # the data backup still proceeds without the manifest archive
            logger.error("project_record_failed | project_dir=%s error=%s", project_dir, exc)
