"""Health Verifier: polls a container until it reaches a terminal health state."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from stackvault.core.runtime.docker import DockerEngine
from stackvault.domain.enums import HealthOutcome

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def _poll_attempts(timeout: float, interval: float) -> int:
    """Observations needed so the sleeps between them add up to `timeout`."""
    if interval <= 0 or timeout <= 0:
        return 1
    return int(timeout // interval) + 1


class HealthVerifier:
    def __init__(self, runtime: DockerEngine, *, sleep: Sleep = asyncio.sleep) -> None:
        self.runtime = runtime
        self.sleep = sleep

    async def check(self, ref: str) -> Optional[HealthOutcome]:
        """One observation. None means "not converged yet, ask again"."""
        state = await self.runtime.inspect(ref)
        if state is None or not state.running:
            return HealthOutcome.STOPPED
        if state.has_probe:
            if state.health == "healthy":
                return HealthOutcome.HEALTHY
            if state.health == "unhealthy":
                return HealthOutcome.UNHEALTHY
            # "starting": the probe has not decided yet
            return None
        # No probe declared: a running container with live processes counts as up
        processes = await self.runtime.top(ref)
        return HealthOutcome.HEALTHY if processes else None

    async def verify(self, ref: str, *, timeout: float = 30.0, interval: float = 2.0) -> HealthOutcome:
        """Poll until a terminal outcome, or until `timeout` seconds of waiting have passed."""
        attempts = _poll_attempts(timeout, interval)
        for attempt in range(1, attempts + 1):
            outcome = await self.check(ref)
            if outcome is not None:
                logger.info("health_outcome | ref=%s outcome=%s attempt=%s", ref, outcome.value, attempt)
                return outcome
            if attempt < attempts:
                await self.sleep(interval)
        logger.warning("health_timed_out | ref=%s timeout=%s", ref, timeout)
        return HealthOutcome.TIMED_OUT

    async def await_stopped(self, ref: str, *, timeout: float, interval: float = 1.0) -> bool:
        """True once the container is gone or no longer running."""
        attempts = _poll_attempts(timeout, interval)
        for attempt in range(1, attempts + 1):
            state = await self.runtime.inspect(ref)
            if state is None or not state.running:
                return True
            if attempt < attempts:
                await self.sleep(interval)
        return False
