from __future__ import annotations

import os

import pytest

from stackvault.core.runtime.sync import mirror_tree


def test_destination_converges_to_source(tmp_path, tree_reader) -> None:
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    (src / "sub").mkdir(parents=True)
    (src / "a.txt").write_text("A")
    (src / "sub" / "b.txt").write_text("B")
    (dst / "old").mkdir(parents=True)
    (dst / "old" / "x.txt").write_text("stale")
    (dst / "a.txt").write_text("outdated")

    stats = mirror_tree(str(src), str(dst))

    assert tree_reader(str(dst)) == {"a.txt": "A", os.path.join("sub", "b.txt"): "B"}
    assert stats["deleted"] == 1
    assert stats["copied"] == 2


def test_unchanged_files_are_skipped(tmp_path) -> None:
    src = tmp_path / "src"
    src.mkdir()
    (src / "a.txt").write_text("A")
    dst = tmp_path / "dst"

    mirror_tree(str(src), str(dst))
    stats = mirror_tree(str(src), str(dst))

    assert stats["copied"] == 0
    assert stats["unchanged"] == 1


def test_symlinks_are_recreated_not_followed(tmp_path) -> None:
    src = tmp_path / "src"
    src.mkdir()
    (src / "real.txt").write_text("R")
    os.symlink("real.txt", src / "link.txt")
    dst = tmp_path / "dst"

    mirror_tree(str(src), str(dst))

    assert os.path.islink(dst / "link.txt")
    assert os.readlink(dst / "link.txt") == "real.txt"


def test_type_mismatch_replaces_entry(tmp_path) -> None:
    src = tmp_path / "src"
    (src / "thing").mkdir(parents=True)
    (src / "thing" / "inner.txt").write_text("I")
    dst = tmp_path / "dst"
    dst.mkdir()
    (dst / "thing").write_text("i was a file")

    mirror_tree(str(src), str(dst))

    assert (dst / "thing").is_dir()
    assert (dst / "thing" / "inner.txt").read_text() == "I"


def test_missing_source_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        mirror_tree(str(tmp_path / "nope"), str(tmp_path / "dst"))
