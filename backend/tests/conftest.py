"""Root conftest: in-memory database and fakes of the container runtime, compose CLI and codec."""

from __future__ import annotations

import dataclasses
import json
import os
from datetime import datetime
from typing import Dict, Generator, List, Optional, Sequence, Set

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stackvault.core.config import FleetSettings
from stackvault.core.db import Base
from stackvault.core.runtime.archive import ArchiveCodec
from stackvault.domain.errors import BackupFailed
from stackvault.domain.types import ContainerState
from stackvault.schemas.records import COMPOSE_PROJECT_LABEL, COMPOSE_SERVICE_LABEL, COMPOSE_WORKING_DIR_LABEL


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    """Provide a test DB session."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    # Ensure models are imported
    import stackvault.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


class FakeRuntime:
    """Container runtime keeping state in a dict.

    `resists[name]` lists what the container ignores: "stop", "SIGTERM",
    "SIGKILL". `health_script[name]` is consumed one value per inspect, the
    last value sticks.
    """

    def __init__(self) -> None:
        self.containers: Dict[str, ContainerState] = {}
        self.health_script: Dict[str, List[Optional[str]]] = {}
        self.resists: Dict[str, Set[str]] = {}
        self.no_processes: Set[str] = set()
        self.container_logs: Dict[str, str] = {}
        self.reachable = True
        self.calls: List[tuple] = []

    def add(
        self,
        name: str,
        *,
        running: bool = True,
        health: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
        links: Sequence[str] = (),
        status: Optional[str] = None,
    ) -> ContainerState:
        state = ContainerState(
            id=f"id-{name}",
            name=name,
            running=running,
            status=status or ("running" if running else "exited"),
            health=health,
            image=f"example/{name}:latest",
            labels=dict(labels or {}),
            networks=["default"],
            links=list(links),
            raw={"Id": f"id-{name}", "Name": f"/{name}"},
        )
        self.containers[name] = state
        return state

    def _find(self, ref: str) -> Optional[ContainerState]:
        if ref in self.containers:
            return self.containers[ref]
        for state in list(self.containers.values()):
            if state.id == ref:
                return state
        return None

    async def inspect(self, ref: str) -> Optional[ContainerState]:
        self.calls.append(("inspect", ref))
        state = self._find(ref)
        if state is None:
            return None
        script = self.health_script.get(state.name)
        if script:
            state.health = script.pop(0) if len(script) > 1 else script[0]
        return dataclasses.replace(state)

    async def stop(self, ref: str, timeout: int) -> bool:
        self.calls.append(("stop", ref, timeout))
        state = self._find(ref)
        if state is None:
            return False
        if "stop" not in self.resists.get(state.name, set()):
            state.running = False
            state.status = "exited"
        return True

    async def kill(self, ref: str, signal: str = "SIGKILL") -> bool:
        self.calls.append(("kill", ref, signal))
        state = self._find(ref)
        if state is None:
            return False
        if signal not in self.resists.get(state.name, set()):
            state.running = False
            state.status = "exited"
        return True

    async def remove(self, ref: str, *, force: bool = False) -> bool:
        self.calls.append(("remove", ref, force))
        state = self._find(ref)
        if state is not None:
            del self.containers[state.name]
        return True

    async def list_containers(self, filters=None, *, include_stopped: bool = False) -> List[dict]:
        wanted = set((filters or {}).get("status", []))
        return [
            {"Id": s.id, "Names": [f"/{s.name}"]}
            for s in list(self.containers.values())
            if not wanted or s.status in wanted
        ]

    async def top(self, ref: str) -> List[List[str]]:
        state = self._find(ref)
        if state is None or not state.running or state.name in self.no_processes:
            return []
        return [["1", "sleep infinity"]]

    async def logs(self, ref: str, tail: int = 50) -> Optional[str]:
        self.calls.append(("logs", ref, tail))
        state = self._find(ref)
        if state is None:
            return None
        return self.container_logs.get(state.name, "")

    async def ping(self) -> bool:
        return self.reachable


class FakeCompose:
    """Compose runtime backed by a FakeRuntime.

    `up_failures[key]` fails that many ups. `ps_outcomes[project_dir]` is
    consumed one value per ps call; False makes that listing fail.
    """

    executable = "docker"

    def __init__(self, runtime: FakeRuntime) -> None:
        self.runtime = runtime
        self.projects: Dict[str, List[str]] = {}
        self.up_failures: Dict[str, int] = {}
        self.health_on_up: Dict[str, Optional[str]] = {}
        self.ps_outcomes: Dict[str, List[bool]] = {}
        self.calls: List[tuple] = []

    def register(self, project_dir: str, names: Sequence[str]) -> None:
        self.projects[os.path.realpath(project_dir)] = list(names)

    async def ps(self, project_dir: str) -> Optional[List[str]]:
        project_dir = os.path.realpath(project_dir)
        outcomes = self.ps_outcomes.get(project_dir)
        if outcomes and not outcomes.pop(0):
            return None
        ids = []
        for name in self.projects.get(project_dir, []):
            state = self.runtime.containers.get(name)
            if state is not None and state.running:
                ids.append(state.id)
        return ids

    async def up(self, project_dir: str, services: Sequence[str] = ()) -> bool:
        project_dir = os.path.realpath(project_dir)
        self.calls.append(("up", project_dir, tuple(services)))
        key = services[0] if services else project_dir
        remaining = self.up_failures.get(key, 0)
        if remaining:
            self.up_failures[key] = remaining - 1
            return False
        for name in list(services) or self.projects.get(project_dir, []):
            state = self.runtime.containers.get(name)
            if state is not None:
                state.running = True
                state.status = "running"
            else:
                self.runtime.add(
                    name,
                    health=self.health_on_up.get(name),
                    labels={COMPOSE_WORKING_DIR_LABEL: project_dir},
                )
        return True

    async def down(self, project_dir: str, *, remove_orphans: bool = True) -> bool:
        project_dir = os.path.realpath(project_dir)
        self.calls.append(("down", project_dir, remove_orphans))
        for name in self.projects.get(project_dir, []):
            state = self.runtime.containers.get(name)
            if state is not None:
                state.running = False
                state.status = "exited"
        return True

    async def pull(self, project_dir: str) -> bool:
        self.calls.append(("pull", os.path.realpath(project_dir)))
        return True


class FakeCodec(ArchiveCodec):
    """Archives are JSON snapshots of the whole tree.

    Extraction replays a snapshot: files absent from it are deleted, which
    matches how an incremental dump records removals.
    """

    extension = "tar.zst"
    tar_bin = "tar"

    def __init__(self) -> None:
        self.created: List[str] = []
        self.extracted: List[str] = []
        self.fail_create = False
        self.corrupt_next = False

    async def create(self, source_root: str, archive_path: str, marker_path: str) -> None:
        if self.fail_create:
            raise BackupFailed("tar exited with 2")
        root = os.path.basename(os.path.normpath(source_root))
        files: Dict[str, str] = {}
        for dirpath, _, filenames in os.walk(source_root):
            for filename in filenames:
                full = os.path.join(dirpath, filename)
                with open(full, "r", encoding="utf-8") as fh:
                    files[os.path.relpath(full, source_root)] = fh.read()
        with open(marker_path, "a", encoding="utf-8") as fh:
            fh.write(os.path.basename(archive_path) + "\n")
        with open(archive_path, "w", encoding="utf-8") as fh:
            if self.corrupt_next:
                fh.write("{not json")
                self.corrupt_next = False
            else:
                json.dump({"root": root, "files": files}, fh)
        self.created.append(archive_path)

    async def extract(self, archive_path: str, dest_dir: str) -> None:
        with open(archive_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        root = os.path.join(dest_dir, data["root"])
        os.makedirs(root, exist_ok=True)
        for dirpath, _, filenames in os.walk(root):
            for filename in filenames:
                full = os.path.join(dirpath, filename)
                if os.path.relpath(full, root) not in data["files"]:
                    os.remove(full)
        for rel, content in data["files"].items():
            target = os.path.join(root, rel)
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with open(target, "w", encoding="utf-8") as fh:
                fh.write(content)
        self.extracted.append(os.path.basename(archive_path))

    def test(self, archive_path: str) -> bool:
        try:
            with open(archive_path, "r", encoding="utf-8") as fh:
                json.load(fh)
        except (OSError, ValueError):
            return False
        return True


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture()
def no_sleep():
    return _no_sleep


@pytest.fixture()
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture()
def fake_compose(fake_runtime: FakeRuntime) -> FakeCompose:
    return FakeCompose(fake_runtime)


@pytest.fixture()
def fake_codec() -> FakeCodec:
    return FakeCodec()


def write_file(path: str, content: str) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(content)


def read_tree(root: str) -> Dict[str, str]:
    tree: Dict[str, str] = {}
    for dirpath, _, filenames in os.walk(root):
        for filename in filenames:
            full = os.path.join(dirpath, filename)
            with open(full, "r", encoding="utf-8") as fh:
                tree[os.path.relpath(full, root)] = fh.read()
    return tree


@pytest.fixture()
def fleet_env(tmp_path, fake_runtime: FakeRuntime, fake_compose: FakeCompose):
    """Appdata tree with two compose projects (web, db) and their running containers."""
    appdata = tmp_path / "appdata"
    web = appdata / "web"
    db = appdata / "db"
    write_file(str(web / "docker-compose.yml"), "services:\n  web: {}\n")
    write_file(str(web / "data" / "index.html"), "<h1>v1</h1>")
    write_file(str(db / "compose.yaml"), "services:\n  db: {}\n")
    write_file(str(db / "data" / "rows.txt"), "1,alice\n")

    for project_dir, project, names in ((web, "web", ["web"]), (db, "db", ["db"])):
        real = os.path.realpath(str(project_dir))
        for name in names:
            fake_runtime.add(
                name,
                labels={
                    COMPOSE_WORKING_DIR_LABEL: real,
                    COMPOSE_PROJECT_LABEL: project,
                    COMPOSE_SERVICE_LABEL: name,
                },
            )
        fake_compose.register(real, names)

    settings = FleetSettings(
        appdata_dir=str(appdata),
        appdata_fallback_dir=None,
        state_backup_dir=str(tmp_path / "backups" / "state"),
        config_backup_dir=str(tmp_path / "backups" / "configs"),
        log_dir=str(tmp_path / "logs"),
        staging_dir=str(tmp_path / "staging"),
        restore_concurrency=2,
        restore_retry_delay=0,
        health_interval=1,
        restore_health_timeout=3,
        start_health_timeout=3,
        final_wait=0,
    )
    return settings


@pytest.fixture()
def fixed_clock():
    """Settable clock: `fixed_clock.now` is returned on every call."""

    class _Clock:
        now = datetime(2024, 5, 1, 3, 0, 0)

        def __call__(self) -> datetime:
            return self.now

    return _Clock()


@pytest.fixture()
def tree_reader():
    return read_tree
