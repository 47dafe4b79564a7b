"""Container state records API router."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from stackvault.api.deps import get_fleet_service, parse_target
from stackvault.domain.timestamps import format_timestamp
from stackvault.schemas import ContainerRecordSummary
from stackvault.services import FleetService

router = APIRouter(prefix="/records", tags=["records"])


@router.get("/", response_model=List[ContainerRecordSummary])
def list_records(
    timestamp: Optional[str] = Query(None, description="YYYYMMDD_HHMMSS; newest capture when omitted"),
    svc: FleetService = Depends(get_fleet_service),
) -> list:
    target = parse_target(timestamp)
    if target is None:
        stamps = svc.recorder.list_timestamps()
        if not stamps:
            return []
        target = stamps[-1]
    records = svc.recorder.list_records(target)
    if timestamp and not records:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No container records at {format_timestamp(target)}",
        )
    return [r.model_dump(exclude={"state_blob", "runtime_id"}) for r in records]
