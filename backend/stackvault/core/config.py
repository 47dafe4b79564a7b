"""Runtime configuration read from environment variables.

Values are read when `FleetSettings.from_env()` is called, not at import, so
tests and the CLI can adjust the environment before building services.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, Tuple

DEFAULT_APPDATA_DIR = "/mnt/user/appdata"
DEFAULT_APPDATA_FALLBACK_DIR = "/mnt/cache/appdata"
DEFAULT_STATE_BACKUP_DIR = "/mnt/user/backups/docker_state"
DEFAULT_CONFIG_BACKUP_DIR = "/mnt/user/backups/docker_configs"
DEFAULT_LOG_DIR = "/mnt/user/logs"
DOCKER_SOCKET_PATH = "/var/run/docker.sock"


def _get_bool(env_value: str | None, default: bool) -> bool:
    if env_value is None:
        return default
    return env_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_list(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class FleetSettings:
    appdata_dir: str = DEFAULT_APPDATA_DIR
    appdata_fallback_dir: Optional[str] = DEFAULT_APPDATA_FALLBACK_DIR
    state_backup_dir: str = DEFAULT_STATE_BACKUP_DIR
    config_backup_dir: str = DEFAULT_CONFIG_BACKUP_DIR
    log_dir: str = DEFAULT_LOG_DIR
    staging_dir: str = field(default_factory=tempfile.gettempdir)
    archive_prefix: str = "appdata"
    marker_stale_days: int = 7
    retention_days: int = 30
    compression_level: int = 3
    compression_cpu_fraction: float = 0.75
    restore_concurrency: int = 3
    restore_attempts: int = 3
    restore_retry_delay: float = 5.0
    restore_health_timeout: float = 30.0
    start_health_timeout: float = 60.0
    health_interval: float = 2.0
    stop_timeout: int = 3
    sigterm_wait: float = 10.0
    final_wait: float = 3.0
    docker_socket_path: str = DOCKER_SOCKET_PATH
    compose_command: str = "docker compose"
    backup_excludes: Tuple[str, ...] = ()
    backup_cron: str = "0 3 * * *"
    scheduler_timezone: str = "UTC"
    restart_after_backup: bool = True

    @property
    def marker_stale_window(self) -> timedelta:
        return timedelta(days=self.marker_stale_days)

    @property
    def retention_window(self) -> timedelta:
        return timedelta(days=self.retention_days)

    @classmethod
    def from_env(cls) -> "FleetSettings":
        return cls(
            appdata_dir=os.getenv("APPDATA_DIR", DEFAULT_APPDATA_DIR),
            appdata_fallback_dir=os.getenv("APPDATA_FALLBACK_DIR", DEFAULT_APPDATA_FALLBACK_DIR) or None,
            state_backup_dir=os.getenv("STATE_BACKUP_DIR", DEFAULT_STATE_BACKUP_DIR),
            config_backup_dir=os.getenv("CONFIG_BACKUP_DIR", DEFAULT_CONFIG_BACKUP_DIR),
            log_dir=os.getenv("LOG_DIR", DEFAULT_LOG_DIR),
            staging_dir=os.getenv("STAGING_DIR") or tempfile.gettempdir(),
            archive_prefix=os.getenv("ARCHIVE_PREFIX", "appdata"),
            marker_stale_days=_get_int("MARKER_STALE_DAYS", 7),
            retention_days=_get_int("RETENTION_DAYS", 30),
            compression_level=_get_int("COMPRESSION_LEVEL", 3),
            compression_cpu_fraction=_get_float("COMPRESSION_CPU_FRACTION", 0.75),
            restore_concurrency=max(1, _get_int("RESTORE_CONCURRENCY", 3)),
            restore_attempts=max(1, _get_int("RESTORE_ATTEMPTS", 3)),
            restore_retry_delay=_get_float("RESTORE_RETRY_DELAY", 5.0),
            restore_health_timeout=_get_float("RESTORE_HEALTH_TIMEOUT", 30.0),
            start_health_timeout=_get_float("START_HEALTH_TIMEOUT", 60.0),
            health_interval=_get_float("HEALTH_INTERVAL", 2.0),
            stop_timeout=_get_int("STOP_TIMEOUT", 3),
            sigterm_wait=_get_float("SIGTERM_WAIT", 10.0),
            final_wait=_get_float("FINAL_WAIT", 3.0),
            docker_socket_path=os.getenv("DOCKER_SOCKET_PATH", DOCKER_SOCKET_PATH),
            compose_command=os.getenv("COMPOSE_COMMAND", "docker compose"),
            backup_excludes=_get_list("BACKUP_EXCLUDES"),
            backup_cron=os.getenv("BACKUP_CRON", "0 3 * * *"),
            scheduler_timezone=os.getenv("SCHEDULER_TIMEZONE", "UTC"),
            restart_after_backup=_get_bool(os.getenv("RESTART_AFTER_BACKUP"), True),
        )
