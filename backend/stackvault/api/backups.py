"""Backups API router: snapshot store inspection and manual backup cycles."""

import os
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from stackvault.api.deps import get_fleet_service, http_error, parse_target
from stackvault.domain.errors import StackVaultError
from stackvault.domain.timestamps import now_local
from stackvault.models import Run as RunModel
from stackvault.schemas import BackupRunRequest, BackupSetOut, ChainOut, MarkerOut, RunWithTasks
from stackvault.services import FleetService

router = APIRouter(prefix="/backups", tags=["backups"])


def _size(path: str) -> Optional[int]:
    try:
        return os.path.getsize(path)
    except OSError:
        return None


@router.get("/", response_model=List[BackupSetOut])
def list_backups(svc: FleetService = Depends(get_fleet_service)) -> List[BackupSetOut]:
    """All backup sets, oldest first."""
    return [BackupSetOut.from_set(s, _size(s.archive_path)) for s in svc.list_backups()]


@router.get("/marker", response_model=MarkerOut)
def get_marker(svc: FleetService = Depends(get_fleet_service)) -> MarkerOut:
    marker = svc.marker()
    if marker is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No snapshot marker")
    stale = marker.is_stale(now_local(), svc.settings.marker_stale_window)
    return MarkerOut.from_marker(marker, stale=stale)


@router.get("/chain", response_model=ChainOut)
def get_chain(
    target: Optional[str] = Query(None, description="YYYYMMDD_HHMMSS; newest set when omitted"),
    svc: FleetService = Depends(get_fleet_service),
) -> ChainOut:
    """Resolve and verify the restore chain for a target timestamp."""
    try:
        chain = svc.describe_chain(parse_target(target))
    except StackVaultError as exc:
        raise http_error(exc)
    return ChainOut.from_chain(chain)


@router.post("/run", response_model=RunWithTasks, status_code=status.HTTP_201_CREATED)
def run_backup(
    payload: Optional[BackupRunRequest] = None,
    svc: FleetService = Depends(get_fleet_service),
) -> RunModel:
    """Run a full backup cycle synchronously and return the recorded Run."""
    restart = payload.restart if payload is not None else None
    try:
        return svc.backup_cycle(trigger="api", restart=restart)
    except StackVaultError as exc:
        raise http_error(exc)
