from __future__ import annotations

import os

import pytest

from stackvault.core.runtime.discovery import (
    check_directory,
    discover_service_directories,
    find_compose_file,
    locate_project_directories,
    resolve_base_dir,
)
from stackvault.domain.errors import DirectoryUnavailable


@pytest.fixture()
def base(tmp_path):
    root = tmp_path / "appdata"
    for name, manifest in (("web", "docker-compose.yml"), ("db", "compose.yaml"), ("notes", None)):
        (root / name).mkdir(parents=True)
        if manifest:
            (root / name / manifest).write_text("services: {}\n")
    return root


def test_discovers_immediate_subdirectories_with_manifests(base) -> None:
    found = discover_service_directories(str(base))
    assert [os.path.basename(d) for d in found] == ["db", "web"]


def test_base_directory_itself_can_be_a_project(base) -> None:
    (base / "docker-compose.yaml").write_text("services: {}\n")
    found = discover_service_directories(str(base))
    assert found[0] == os.path.realpath(str(base))


def test_find_compose_file_prefers_legacy_name(tmp_path) -> None:
    (tmp_path / "compose.yml").write_text("")
    (tmp_path / "docker-compose.yml").write_text("")
    assert find_compose_file(str(tmp_path)).endswith("docker-compose.yml")


def test_locate_matches_project_name_case_insensitively(base) -> None:
    assert [os.path.basename(d) for d in locate_project_directories(str(base), "WEB")] == ["web"]
    assert locate_project_directories(str(base), "missing") == []


def test_resolve_base_dir_follows_symlink_and_falls_back(tmp_path, base) -> None:
    link = tmp_path / "link"
    os.symlink(base, link)
    assert resolve_base_dir(str(link)) == os.path.realpath(str(base))
    assert resolve_base_dir(str(tmp_path / "missing"), str(base)) == os.path.realpath(str(base))
    with pytest.raises(DirectoryUnavailable):
        resolve_base_dir(str(tmp_path / "missing"), str(tmp_path / "also-missing"))


def test_check_directory_rejects_files(tmp_path) -> None:
    f = tmp_path / "file"
    f.write_text("")
    with pytest.raises(DirectoryUnavailable):
        check_directory(str(f))
