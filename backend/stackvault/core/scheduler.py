"""APScheduler configuration for the periodic backup cycle.

Responsibilities:
- Provide a singleton `AsyncIOScheduler` instance
- Register the backup cycle on the `BACKUP_CRON` crontab
- Execute a scheduled cycle with its own database session
"""

from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from stackvault.core.config import FleetSettings
from stackvault.core.db import open_session
from stackvault.core.logging import log_event
from stackvault.domain.errors import StackVaultError

logger = logging.getLogger(__name__)

BACKUP_JOB_ID = "fleet_backup"

_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler(settings: Optional[FleetSettings] = None) -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is None:
        tz = (settings or FleetSettings.from_env()).scheduler_timezone
        _scheduler = AsyncIOScheduler(
            timezone=tz,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
            },
        )
        log_event(logger, "scheduler_created", timezone=tz, coalesce=True, max_instances=1)
    return _scheduler


def scheduled_backup() -> None:
    """APScheduler entry point; runs in the scheduler's thread pool."""
    from stackvault.services.fleet import FleetService

    db = open_session()
    try:
        run = FleetService(db).backup_cycle(trigger="scheduler")
        log_event(logger, "scheduled_backup_done", run_id=run.id, status=run.status)
    except StackVaultError as exc:
        # already recorded on the Run and notified; keep the scheduler alive
        log_event(logger, "scheduled_backup_aborted", level=logging.ERROR, error=str(exc))
    finally:
        db.close()


def schedule_backup(scheduler: AsyncIOScheduler, settings: FleetSettings) -> bool:
    """Add or replace the backup job. Returns False when the cron is empty or invalid."""
    expr = (settings.backup_cron or "").strip()
    if not expr:
        log_event(logger, "scheduler_backup_disabled")
        return False
    try:
        trigger = CronTrigger.from_crontab(expr, timezone=settings.scheduler_timezone)
    except ValueError as exc:
        log_event(logger, "scheduler_invalid_cron", level=logging.ERROR, cron=expr, error=str(exc))
        return False
    scheduler.add_job(
        scheduled_backup,
        trigger=trigger,
        id=BACKUP_JOB_ID,
        replace_existing=True,
    )
    log_event(logger, "scheduler_backup_scheduled", cron=expr, timezone=settings.scheduler_timezone)
    return True
