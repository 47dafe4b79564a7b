from __future__ import annotations

import os
import tarfile
from datetime import datetime, timedelta

from stackvault.domain.enums import HealthKind
from stackvault.domain.types import ContainerState
from stackvault.schemas.records import COMPOSE_PROJECT_LABEL, COMPOSE_SERVICE_LABEL, COMPOSE_WORKING_DIR_LABEL
from stackvault.services.records import ContainerStateRecorder

TS = datetime(2024, 5, 1, 3, 0, 0)


def _state(name: str, *, health=None) -> ContainerState:
    return ContainerState.from_inspect(
        {
            "Id": f"id-{name}",
            "Name": f"/{name}",
            "State": {"Running": True, "Status": "running", **({"Health": {"Status": health}} if health else {})},
            "Config": {
                "Image": "nginx:1.25",
                "Labels": {
                    COMPOSE_WORKING_DIR_LABEL: "/mnt/user/appdata/web",
                    COMPOSE_PROJECT_LABEL: "web",
                    COMPOSE_SERVICE_LABEL: name,
                },
            },
            "NetworkSettings": {"Networks": {"web_default": {}, "proxy": {}}},
        }
    )


def test_record_container_writes_named_file(tmp_path) -> None:
    recorder = ContainerStateRecorder(str(tmp_path / "state"))
    record = recorder.record_container(_state("web_app", health="healthy"), TS)

    path = tmp_path / "state" / "web_app_20240501_030000.json"
    assert path.exists()
    assert record.project_directory == "/mnt/user/appdata/web"
    assert record.service_name == "web_app"
    assert record.health_kind == HealthKind.PROBED
    assert record.network_names == ["proxy", "web_default"]
    assert record.state_blob["Id"] == "id-web_app"


def test_list_records_filters_by_timestamp(tmp_path) -> None:
    recorder = ContainerStateRecorder(str(tmp_path / "state"))
    recorder.record_container(_state("b"), TS)
    recorder.record_container(_state("a"), TS)
    recorder.record_container(_state("a"), TS + timedelta(days=1))
    (tmp_path / "state" / "broken_20240501_030000.json").write_text("{nope")

    records = recorder.list_records(TS)
    assert [r.name for r in records] == ["a", "b"]
    assert recorder.list_timestamps() == [TS, TS + timedelta(days=1)]


def test_record_project_archives_directory(tmp_path) -> None:
    project = tmp_path / "web"
    project.mkdir()
    (project / "docker-compose.yml").write_text("services: {}\n")
    recorder = ContainerStateRecorder(str(tmp_path / "state"))

    archive = recorder.record_project(str(project), TS)

    assert os.path.basename(archive) == "web_20240501_030000.tar.gz"
    with tarfile.open(archive, "r:gz") as tar:
        assert "web/docker-compose.yml" in tar.getnames()


def test_prune_removes_old_records_and_project_archives(tmp_path) -> None:
    project = tmp_path / "web"
    project.mkdir()
    recorder = ContainerStateRecorder(str(tmp_path / "state"))
    recorder.record_container(_state("a"), TS)
    recorder.record_project(str(project), TS)
    recorder.record_container(_state("a"), TS + timedelta(days=40))

    removed = recorder.prune(window=timedelta(days=30), now=TS + timedelta(days=41))

    assert removed == 2
    assert recorder.list_timestamps() == [TS + timedelta(days=40)]
    assert os.listdir(recorder.projects_dir) == []
