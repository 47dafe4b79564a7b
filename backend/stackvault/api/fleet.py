"""Fleet API router: start every compose project."""

from fastapi import APIRouter, Depends, status

from stackvault.api.deps import get_fleet_service, http_error
from stackvault.domain.errors import StackVaultError
from stackvault.models import Run as RunModel
from stackvault.schemas import RunWithTasks
from stackvault.services import FleetService

router = APIRouter(prefix="/fleet", tags=["fleet"])


@router.post("/start", response_model=RunWithTasks, status_code=status.HTTP_201_CREATED)
def start_fleet(svc: FleetService = Depends(get_fleet_service)) -> RunModel:
    try:
        return svc.start_all(trigger="api")
    except StackVaultError as exc:
        raise http_error(exc)
