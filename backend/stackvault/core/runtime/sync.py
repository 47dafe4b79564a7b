"""Directory mirroring: make a destination tree identical to a source tree."""

from __future__ import annotations

import logging
import os
import shutil
import stat
from typing import Dict

logger = logging.getLogger(__name__)


def _same_file(src: os.stat_result, dst: os.stat_result) -> bool:
    return src.st_size == dst.st_size and src.st_mtime_ns == dst.st_mtime_ns


def _remove(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.remove(path)


def mirror_tree(source: str, destination: str) -> Dict[str, int]:
    """Mirror `source` onto `destination`, deleting entries absent from source.

    Regular files are copied (with metadata) when size or mtime_ns differ,
    symlinks are recreated as links, and any type mismatch replaces the
    destination entry. Returns counters for logging.
    """
    if not os.path.isdir(source):
        raise FileNotFoundError(f"mirror source is not a directory: {source}")

    stats = {"copied": 0, "deleted": 0, "unchanged": 0, "dirs": 0}
    os.makedirs(destination, exist_ok=True)

    for current, dirnames, filenames in os.walk(source, followlinks=False):
        rel = os.path.relpath(current, source)
        target_dir = destination if rel == "." else os.path.join(destination, rel)

        if os.path.lexists(target_dir) and (os.path.islink(target_dir) or not os.path.isdir(target_dir)):
            _remove(target_dir)
        if not os.path.isdir(target_dir):
            os.makedirs(target_dir)
            stats["dirs"] += 1

        # Delete destination entries that are absent from the source directory
        wanted = set(dirnames) | set(filenames)
        for existing in os.listdir(target_dir):
            if existing not in wanted:
                _remove(os.path.join(target_dir, existing))
                stats["deleted"] += 1

        for dirname in list(dirnames):
            src_path = os.path.join(current, dirname)
            if os.path.islink(src_path):
                # os.walk lists symlinked dirs under dirnames; copy them as links instead
                dirnames.remove(dirname)
                _copy_link(src_path, os.path.join(target_dir, dirname))
                stats["copied"] += 1

        for filename in filenames:
            src_path = os.path.join(current, filename)
            dst_path = os.path.join(target_dir, filename)
            if os.path.islink(src_path):
                _copy_link(src_path, dst_path)
                stats["copied"] += 1
                continue
            src_stat = os.lstat(src_path)
            if not stat.S_ISREG(src_stat.st_mode):
                continue
            if os.path.lexists(dst_path):
                dst_stat = os.lstat(dst_path)
                if stat.S_ISREG(dst_stat.st_mode) and _same_file(src_stat, dst_stat):
                    stats["unchanged"] += 1
                    continue
                _remove(dst_path)
            shutil.copy2(src_path, dst_path, follow_symlinks=False)
            stats["copied"] += 1

        shutil.copystat(current, target_dir, follow_symlinks=False)

    logger.info(
        "mirror_tree_done | source=%s destination=%s copied=%s deleted=%s unchanged=%s",
        source,
        destination,
        stats["copied"],
        stats["deleted"],
        stats["unchanged"],
    )
    return stats


def _copy_link(src_path: str, dst_path: str) -> None:
    link_target = os.readlink(src_path)
    if os.path.lexists(dst_path):
        if os.path.islink(dst_path) and os.readlink(dst_path) == link_target:
            return
        _remove(dst_path)
    os.symlink(link_target, dst_path)
