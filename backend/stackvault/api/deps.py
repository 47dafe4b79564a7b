"""Shared FastAPI dependencies."""

from typing import Optional

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from stackvault.core.db import get_session
from stackvault.domain.errors import (
    ArchiveCorrupt,
    ChainBroken,
    DirectoryUnavailable,
    NoFullBackup,
    NoServiceDirectories,
    StackVaultError,
    ToolMissing,
)
from stackvault.domain.timestamps import parse_timestamp
from stackvault.services import FleetService


def get_fleet_service(db: Session = Depends(get_session)) -> FleetService:
    return FleetService(db)


def parse_target(value: Optional[str]):
    if not value:
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="timestamp must be YYYYMMDD_HHMMSS",
        )


def http_error(exc: StackVaultError) -> HTTPException:
    if isinstance(exc, NoFullBackup):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (ChainBroken, ArchiveCorrupt)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, (DirectoryUnavailable, NoServiceDirectories, ToolMissing)):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail={"code": exc.code, "message": str(exc)})
