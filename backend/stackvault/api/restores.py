"""Restore API router."""

from typing import Optional

from fastapi import APIRouter, Depends, status

from stackvault.api.deps import get_fleet_service, http_error
from stackvault.domain.errors import StackVaultError
from stackvault.models import Run as RunModel
from stackvault.schemas import RestoreRequest, RunWithTasks
from stackvault.services import FleetService

router = APIRouter(prefix="/restores", tags=["restores"])


@router.post("/", response_model=RunWithTasks, status_code=status.HTTP_201_CREATED)
def trigger_restore(
    payload: Optional[RestoreRequest] = None,
    svc: FleetService = Depends(get_fleet_service),
) -> RunModel:
    payload = payload or RestoreRequest()
    try:
        return svc.restore(trigger="api", timestamp=payload.target(), concurrency=payload.concurrency)
    except StackVaultError as exc:
        raise http_error(exc)
