"""Sidecar metadata for backup archives.

Each archive `<prefix>_<timestamp>.tar.zst` is accompanied by
`<archive>.meta.json` describing its kind and the marker lineage it belongs
to. The snapshot marker carries a sidecar of the same shape.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

SIDECAR_SUFFIX = ".meta.json"


def sidecar_path(artifact_path: str) -> str:
    return f"{artifact_path}{SIDECAR_SUFFIX}"


def write_sidecar(artifact_path: str, data: Dict[str, Any]) -> str:
    """Write `data` next to `artifact_path` atomically and return the sidecar path.

    Unlike archive bookkeeping elsewhere, a failed write raises: a set without
    metadata cannot take part in a restore chain.
    """
    payload = dict(data)
    payload.setdefault("written_at", datetime.now(timezone.utc).isoformat())
    path = sidecar_path(artifact_path)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    os.replace(tmp_path, path)
    logger.debug("sidecar_written | artifact=%s sidecar=%s", artifact_path, path)
    return path


def read_sidecar(artifact_path: str, *, required: tuple[str, ...] = ()) -> Optional[Dict[str, Any]]:
    """Read an artifact's sidecar; None when missing, unreadable or incomplete."""
    path = sidecar_path(artifact_path)
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        logger.warning("sidecar_unreadable | sidecar=%s error=%s", path, exc)
        return None
    if not isinstance(data, dict):
        return None
    if any(key not in data for key in required):
        return None
    return data


def remove_sidecar(artifact_path: str) -> None:
    path = sidecar_path(artifact_path)
    if os.path.exists(path):
        os.remove(path)
