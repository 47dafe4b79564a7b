"""Service directory discovery under the appdata base directory."""

from __future__ import annotations

import logging
import os
from typing import List, Optional

from stackvault.domain.errors import DirectoryUnavailable

logger = logging.getLogger(__name__)

COMPOSE_FILENAMES = ("docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml")


def check_directory(path: str) -> str:
    """Return the resolved path of a readable directory or raise DirectoryUnavailable."""
    resolved = os.path.realpath(path)
    if not os.path.isdir(resolved):
        raise DirectoryUnavailable(f"directory does not exist: {resolved}")
    if not os.access(resolved, os.R_OK):
        raise DirectoryUnavailable(f"directory is not readable: {resolved}")
    return resolved


def resolve_base_dir(primary: str, fallback: Optional[str] = None) -> str:
    """Resolve the base directory (following symlinks), falling back when absent."""
    resolved = os.path.realpath(primary)
    if os.path.islink(primary):
        logger.info("base_dir_symlink | path=%s resolved=%s", primary, resolved)
    if os.path.isdir(resolved):
        return check_directory(resolved)
    if fallback and os.path.isdir(fallback):
        logger.info("base_dir_fallback | primary=%s fallback=%s", primary, fallback)
        return check_directory(fallback)
    raise DirectoryUnavailable(f"no usable appdata directory (tried {primary}, {fallback})")


def find_compose_file(directory: str) -> Optional[str]:
    directory = os.path.realpath(directory)
    for filename in COMPOSE_FILENAMES:
        candidate = os.path.join(directory, filename)
        if os.path.isfile(candidate):
            return candidate
    return None


def discover_service_directories(base_dir: str) -> List[str]:
    """Directories at most one level below `base_dir` that hold a compose file."""
    base_dir = os.path.realpath(base_dir)
    found: List[str] = []
    candidates = [base_dir]
    try:
        entries = sorted(os.listdir(base_dir))
    except OSError as exc:
        raise DirectoryUnavailable(f"cannot list {base_dir}: {exc}") from exc
    for entry in entries:
        path = os.path.join(base_dir, entry)
        if os.path.isdir(path):
            candidates.append(os.path.realpath(path))
    for candidate in candidates:
        if find_compose_file(candidate) and candidate not in found:
            found.append(candidate)
    logger.info("service_dirs_discovered | base=%s count=%s", base_dir, len(found))
    return found


def locate_project_directories(base_dir: str, project_name: str) -> List[str]:
    """Service directories whose name matches a compose project name."""
    wanted = project_name.strip().lower()
    return [
        d
        for d in discover_service_directories(base_dir)
        if os.path.basename(d).lower() == wanted
    ]
