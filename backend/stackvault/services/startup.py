"""Project starter: bring compose projects up and confirm their containers are healthy."""

from __future__ import annotations

import logging
from typing import List, Sequence

import httpx

from stackvault.core.runtime.compose import ComposeCLI
from stackvault.core.runtime.docker import DockerEngine
from stackvault.domain.enums import HealthOutcome
from stackvault.domain.types import ProjectStartResult
from stackvault.services.health import HealthVerifier

logger = logging.getLogger(__name__)


class ProjectStarter:
    def __init__(
        self,
        runtime: DockerEngine,
        compose: ComposeCLI,
        verifier: HealthVerifier,
        *,
        health_timeout: float = 60.0,
        health_interval: float = 2.0,
    ) -> None:
        self.runtime = runtime
        self.compose = compose
        self.verifier = verifier
        self.health_timeout = health_timeout
        self.health_interval = health_interval

    async def start_project(self, project_dir: str, *, refresh: bool = True) -> ProjectStartResult:
        """Start one project.

        With `refresh`, the project is first taken down (removing orphans)
        and its images pulled; a failed pull only logs a warning.
        """
        result = ProjectStartResult(directory=project_dir)
        if refresh:
            if not await self.compose.down(project_dir, remove_orphans=True):
                logger.warning("project_down_failed | project_dir=%s", project_dir)
            if not await self.compose.pull(project_dir):
                logger.warning("project_pull_failed | project_dir=%s", project_dir)

        if not await self.compose.up(project_dir):
            result.error = "compose up failed"
            logger.error("project_up_failed | project_dir=%s", project_dir)
            return result

        refs = await self.compose.ps(project_dir)
        if refs is None:
            result.error = "compose ps failed"
            logger.error("project_listing_failed | project_dir=%s", project_dir)
            return result

        for ref in refs:
            state = await self.runtime.inspect(ref)
            name = state.name if state is not None else ref
            outcome = await self.verifier.verify(name, timeout=self.health_timeout, interval=self.health_interval)
            if outcome == HealthOutcome.HEALTHY:
                result.healthy.append(name)
            else:
                result.unhealthy[name] = outcome.value

        logger.info(
            "project_started | project_dir=%s healthy=%s unhealthy=%s",
            project_dir,
            len(result.healthy),
            len(result.unhealthy),
        )
        return result

    async def start_projects(self, project_dirs: Sequence[str], *, refresh: bool = True) -> List[ProjectStartResult]:
        results: List[ProjectStartResult] = []
        for project_dir in project_dirs:
            try:
                results.append(await self.start_project(project_dir, refresh=refresh))
            except httpx.HTTPError as exc:
                logger.error("project_start_error | project_dir=%s error=%s", project_dir, exc)
                results.append(ProjectStartResult(directory=project_dir, error=f"runtime error: {exc}"))
        return results
