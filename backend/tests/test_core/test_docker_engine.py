from __future__ import annotations

import json

import httpx
import pytest

from stackvault.core.runtime.docker import DockerEngine


def _engine(monkeypatch, handler) -> DockerEngine:
    transport = httpx.MockTransport(handler)
    monkeypatch.setattr(
        DockerEngine,
        "_docker_client",
        lambda self, **kw: httpx.AsyncClient(transport=transport, base_url="http://docker"),
    )
    return DockerEngine("/nonexistent.sock")


INSPECT_PAYLOAD = {
    "Id": "abc123",
    "Name": "/web",
    "State": {"Running": True, "Status": "running", "Health": {"Status": "healthy"}},
    "Config": {"Image": "nginx:1.25", "Labels": {"com.docker.compose.project": "web"}},
    "HostConfig": {"Links": ["/db:/web/db"]},
    "NetworkSettings": {"Networks": {"web_default": {}, "bridge": {}}},
}


@pytest.mark.asyncio
async def test_inspect_parses_state(monkeypatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/containers/web/json"
        return httpx.Response(200, json=INSPECT_PAYLOAD)

    state = await _engine(monkeypatch, handler).inspect("web")

    assert state is not None
    assert state.name == "web"
    assert state.running is True
    assert state.health == "healthy"
    assert state.networks == ["bridge", "web_default"]
    assert state.links == ["/db:/web/db"]
    assert state.labels["com.docker.compose.project"] == "web"


@pytest.mark.asyncio
async def test_inspect_missing_container_returns_none(monkeypatch) -> None:
    engine = _engine(monkeypatch, lambda request: httpx.Response(404, json={"message": "No such container"}))
    assert await engine.inspect("ghost") is None


@pytest.mark.asyncio
async def test_inspect_server_error_raises(monkeypatch) -> None:
    engine = _engine(monkeypatch, lambda request: httpx.Response(500, json={"message": "boom"}))
    with pytest.raises(httpx.HTTPStatusError):
        await engine.inspect("web")


@pytest.mark.asyncio
async def test_stop_treats_not_modified_as_stopped(monkeypatch) -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(dict(request.url.params))
        return httpx.Response(304)

    assert await _engine(monkeypatch, handler).stop("web", 3) is True
    assert seen == [{"t": "3"}]


@pytest.mark.asyncio
async def test_kill_sends_signal(monkeypatch) -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path, request.url.params.get("signal")))
        return httpx.Response(204)

    assert await _engine(monkeypatch, handler).kill("web", "SIGTERM") is True
    assert seen == [("POST", "/containers/web/kill", "SIGTERM")]


@pytest.mark.asyncio
async def test_top_on_stopped_container_is_empty(monkeypatch) -> None:
    engine = _engine(monkeypatch, lambda request: httpx.Response(409, json={"message": "not running"}))
    assert await engine.top("web") == []


@pytest.mark.asyncio
async def test_list_containers_encodes_filters(monkeypatch) -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, json=[{"Id": "x", "Names": ["/orphan"]}])

    rows = await _engine(monkeypatch, handler).list_containers({"status": ["created"]}, include_stopped=True)

    assert rows == [{"Id": "x", "Names": ["/orphan"]}]
    assert seen["all"] == "true"
    assert json.loads(seen["filters"]) == {"status": ["created"]}


@pytest.mark.asyncio
async def test_ping_reports_unreachable_socket(monkeypatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no socket", request=request)

    assert await _engine(monkeypatch, handler).ping() is False


@pytest.mark.asyncio
async def test_logs_strips_stream_headers(monkeypatch) -> None:
    def frame(stream: int, text: bytes) -> bytes:
        return bytes([stream, 0, 0, 0]) + len(text).to_bytes(4, "big") + text

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/containers/web/logs"
        assert request.url.params["tail"] == "50"
        assert request.url.params["stderr"] == "true"
        return httpx.Response(200, content=frame(1, b"listening on :80\n") + frame(2, b"config missing\n"))

    text = await _engine(monkeypatch, handler).logs("web")
    assert text == "listening on :80\nconfig missing\n"


@pytest.mark.asyncio
async def test_logs_passes_tty_output_through(monkeypatch) -> None:
    engine = _engine(monkeypatch, lambda request: httpx.Response(200, content=b"plain tty output\n"))
    assert await engine.logs("web", tail=10) == "plain tty output\n"


@pytest.mark.asyncio
async def test_logs_missing_container_returns_none(monkeypatch) -> None:
    engine = _engine(monkeypatch, lambda request: httpx.Response(404, json={"message": "No such container"}))
    assert await engine.logs("ghost") is None
