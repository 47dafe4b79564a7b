"""Compose CLI wrapper (`docker compose` or legacy `docker-compose`)."""

from __future__ import annotations

import asyncio
import logging
import shlex
from dataclasses import dataclass
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ComposeCLI:
    """Compose runtime: every call runs inside the project directory."""

    def __init__(self, command: str = "docker compose", *, timeout: float = 900.0) -> None:
        self.argv = shlex.split(command)
        self.timeout = timeout

    @property
    def executable(self) -> str:
        return self.argv[0]

    async def _run(self, project_dir: str, *args: str) -> CommandResult:
        cmd = [*self.argv, *args]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=project_dir,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error("compose_exec_error | dir=%s cmd=%s error=%s", project_dir, " ".join(cmd), exc)
            return CommandResult(returncode=127, stdout="", stderr=str(exc))

        try:
            stdout_data, stderr_data = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.error("compose_timeout | dir=%s cmd=%s timeout=%s", project_dir, " ".join(cmd), self.timeout)
            return CommandResult(returncode=124, stdout="", stderr="timeout")

        result = CommandResult(
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout_data.decode("utf-8", errors="replace"),
            stderr=stderr_data.decode("utf-8", errors="replace"),
        )
        if not result.ok:
            logger.warning(
                "compose_command_failed | dir=%s args=%s rc=%s stderr=%s",
                project_dir,
                " ".join(args),
                result.returncode,
                result.stderr.strip()[-500:],
            )
        return result

    async def up(self, project_dir: str, services: Sequence[str] = ()) -> bool:
        return (await self._run(project_dir, "up", "-d", *services)).ok

    async def down(self, project_dir: str, *, remove_orphans: bool = True) -> bool:
        args = ["down"]
        if remove_orphans:
            args.append("--remove-orphans")
        return (await self._run(project_dir, *args)).ok

    async def pull(self, project_dir: str) -> bool:
        return (await self._run(project_dir, "pull")).ok

    async def ps(self, project_dir: str) -> Optional[List[str]]:
        """IDs of the project's running containers; None when the listing itself failed."""
        result = await self._run(project_dir, "ps", "-q")
        if not result.ok:
            return None
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]
