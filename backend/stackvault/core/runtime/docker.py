"""Docker Engine API client over the unix socket.

Only the container lifecycle calls the services need: inspect, stop, kill,
remove, list, top, logs and ping. No docker CLI is required.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from stackvault.core.config import DOCKER_SOCKET_PATH
from stackvault.domain.types import ContainerState

logger = logging.getLogger(__name__)


class DockerEngine:
    """Container runtime backed by the Docker Engine REST API."""

    def __init__(self, socket_path: str = DOCKER_SOCKET_PATH, *, request_timeout: float = 30.0) -> None:
        self.socket_path = socket_path
        self.request_timeout = request_timeout

    def _docker_client(self, *, extra_timeout: float = 0.0) -> httpx.AsyncClient:
        transport = httpx.AsyncHTTPTransport(uds=self.socket_path)
        return httpx.AsyncClient(
            transport=transport,
            base_url="http://docker",
            timeout=httpx.Timeout(self.request_timeout + extra_timeout, connect=10.0),
        )

    async def ping(self) -> bool:
        try:
            async with self._docker_client() as client:
                resp = await client.get("/_ping")
        except httpx.HTTPError as exc:
            logger.warning("docker_ping_failed | socket=%s error=%s", self.socket_path, exc)
            return False
        return resp.status_code == 200

    async def inspect(self, ref: str) -> Optional[ContainerState]:
        """Return the container state, or None when the container does not exist."""
        async with self._docker_client() as client:
            resp = await client.get(f"/containers/{ref}/json")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return ContainerState.from_inspect(resp.json())

    async def stop(self, ref: str, timeout: int) -> bool:
        """Graceful stop; the engine escalates to SIGKILL itself after `timeout`."""
        async with self._docker_client(extra_timeout=float(timeout)) as client:
            resp = await client.post(f"/containers/{ref}/stop", params={"t": str(timeout)})
        # 304: already stopped
        if resp.status_code in (204, 304):
            return True
        logger.warning("docker_stop_failed | ref=%s status=%s body=%s", ref, resp.status_code, resp.text[:200])
        return False

    async def kill(self, ref: str, signal: str = "SIGKILL") -> bool:
        async with self._docker_client() as client:
            resp = await client.post(f"/containers/{ref}/kill", params={"signal": signal})
        if resp.status_code == 204:
            return True
        logger.warning(
            "docker_kill_failed | ref=%s signal=%s status=%s body=%s",
            ref,
            signal,
            resp.status_code,
            resp.text[:200],
        )
        return False

    async def remove(self, ref: str, *, force: bool = False) -> bool:
        async with self._docker_client() as client:
            resp = await client.delete(f"/containers/{ref}", params={"force": "true" if force else "false"})
        if resp.status_code in (204, 404):
            return True
        logger.warning("docker_remove_failed | ref=%s status=%s", ref, resp.status_code)
        return False

    async def list_containers(
        self,
        filters: Optional[Dict[str, List[str]]] = None,
        *,
        include_stopped: bool = False,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, str] = {"all": "true" if include_stopped else "false"}
        if filters:
            params["filters"] = json.dumps(filters)
        async with self._docker_client() as client:
            resp = await client.get("/containers/json", params=params)
        resp.raise_for_status()
        data = resp.json()
        return data if isinstance(data, list) else []

    async def top(self, ref: str) -> List[List[str]]:
        """Process table of a running container; empty when it is not running."""
        async with self._docker_client() as client:
            resp = await client.get(f"/containers/{ref}/top")
        if resp.status_code in (404, 409):
            return []
        resp.raise_for_status()
        return list(resp.json().get("Processes") or [])

    async def logs(self, ref: str, tail: int = 50) -> Optional[str]:
        """Last `tail` lines of stdout and stderr; None when the container does not exist."""
        async with self._docker_client() as client:
            resp = await client.get(
                f"/containers/{ref}/logs",
                params={"stdout": "true", "stderr": "true", "tail": str(tail)},
            )
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return _demux_log_stream(resp.content)


def _demux_log_stream(data: bytes) -> str:
    """Strip the 8-byte stream headers the engine adds when the container has no TTY."""
    chunks: List[bytes] = []
    offset = 0
    while offset + 8 <= len(data):
        stream_type = data[offset]
        if stream_type not in (0, 1, 2) or data[offset + 1 : offset + 4] != b"\x00\x00\x00":
            # TTY containers send raw output
            return data.decode("utf-8", errors="replace")
        size = int.from_bytes(data[offset + 4 : offset + 8], "big")
        chunks.append(data[offset + 8 : offset + 8 + size])
        offset += 8 + size
    if offset < len(data):
        chunks.append(data[offset:])
    return b"".join(chunks).decode("utf-8", errors="replace")
