"""Run coroutines from synchronous code on a dedicated thread and loop."""

from __future__ import annotations

import asyncio
import threading
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


def run_in_worker_thread(factory: Callable[[], Awaitable[T]], *, name: str = "stackvault-worker") -> T:
    """Execute `factory()` with `asyncio.run` on a fresh thread and return its result.

    Safe to call from inside a running event loop (FastAPI handlers, the
    APScheduler loop) because the coroutine never shares that loop.
    """
    result_container: dict[str, object] = {}

    def _runner() -> None:
        try:
            result_container["result"] = asyncio.run(factory())  # type: ignore[arg-type]
        except Exception as exc:  # noqa: BLE001
            result_container["error"] = exc

    th = threading.Thread(target=_runner, name=name, daemon=True)
    th.start()
    th.join()
    if "error" in result_container:
        raise result_container["error"]  # type: ignore[misc]
    return result_container.get("result")  # type: ignore[return-value]
