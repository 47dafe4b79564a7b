"""FastAPI application: run history, snapshot inspection and the backup schedule."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator
import logging

from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from stackvault.core.config import FleetSettings
from stackvault.core.db import init_db
from stackvault.core.logging import setup_logging
from stackvault.core.scheduler import get_scheduler, schedule_backup


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger = logging.getLogger(__name__)
    init_db()

    settings = FleetSettings.from_env()
    scheduler = get_scheduler(settings)
    schedule_backup(scheduler, settings)
    scheduler.start()
    logger.info("APScheduler started | timezone=%s cron=%s", settings.scheduler_timezone, settings.backup_cron)

    yield

    scheduler.shutdown()
    logger.info("APScheduler shutdown")


app = FastAPI(
    title="StackVault API",
    description="Incremental backup and restore for compose-managed container fleets",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

from stackvault.api import backups, fleet, health, records, restores, runs  # noqa: E402

# Unversioned for infra probes (/health, /ready)
app.include_router(health.router)

app.include_router(backups.router, prefix="/api/v1")
app.include_router(restores.router, prefix="/api/v1")
app.include_router(records.router, prefix="/api/v1")
app.include_router(runs.router, prefix="/api/v1")
app.include_router(fleet.router, prefix="/api/v1")


@app.get("/")
async def root() -> RedirectResponse:
    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
