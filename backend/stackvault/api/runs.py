"""Runs API router."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from stackvault.core.db import get_session
from stackvault.models import Run as RunModel
from stackvault.schemas import RunWithTasks
from stackvault.services import RunService

router = APIRouter(prefix="/runs", tags=["runs"])


def _parse_datetime(dt_str: Optional[str]) -> Optional[datetime]:
    if not dt_str:
        return None
    # unencoded '+' arrives as a space
    normalized = dt_str.replace(" ", "+").replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        return None


@router.get("/", response_model=List[RunWithTasks])
def list_runs(
    db: Session = Depends(get_session),
    *,
    operation: Optional[str] = Query(None, description="backup, restore or start"),
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by run status"),
    start_date: Optional[str] = Query(None, description="started_at >= this ISO timestamp"),
    end_date: Optional[str] = Query(None, description="started_at <= this ISO timestamp"),
    limit: int = Query(100, ge=1, le=1000),
) -> List[RunModel]:
    return RunService(db).list(
        operation=operation,
        status=status_filter,
        start_dt=_parse_datetime(start_date),
        end_dt=_parse_datetime(end_date),
        limit=limit,
    )


@router.get("/{run_id}", response_model=RunWithTasks)
def get_run(run_id: int, db: Session = Depends(get_session)) -> RunModel:
    run = RunService(db).get(run_id)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Run not found")
    return run
