from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

from stackvault.models import Run as RunModel


class RunService:
    """Read access to run history: list with filters, get with task runs eager-loaded."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def list(
        self,
        *,
        operation: Optional[str] = None,
        status: Optional[str] = None,
        start_dt: Optional[datetime] = None,
        end_dt: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[RunModel]:
        query = self.db.query(RunModel).options(joinedload(RunModel.task_runs))
        if operation:
            query = query.filter(RunModel.operation == operation)
        if status:
            query = query.filter(RunModel.status == status)
        if start_dt:
            query = query.filter(RunModel.started_at >= start_dt)
        if end_dt:
            query = query.filter(RunModel.started_at <= end_dt)
        query = query.order_by(RunModel.started_at.desc(), RunModel.id.desc())
        return list(query.limit(limit).all())

    def get(self, run_id: int) -> Optional[RunModel]:
        return (
            self.db.query(RunModel)
            .options(joinedload(RunModel.task_runs))
            .filter(RunModel.id == run_id)
            .first()
        )
