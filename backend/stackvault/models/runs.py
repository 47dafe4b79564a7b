from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from stackvault.core.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Run(Base):
    """One backup, restore or start invocation."""

    __tablename__ = "runs"

    id = Column(Integer, primary_key=True, index=True)
    operation = Column(String(20), nullable=False, index=True)  # backup | restore | start
    trigger = Column(String(20), nullable=False, default="manual")  # cli | api | scheduler
    started_at = Column(DateTime, nullable=False, default=_utcnow)
    finished_at = Column(DateTime, nullable=True)
    status = Column(String(20), nullable=False, index=True)  # running | success | partial | failed
    message = Column(Text, nullable=True)
    backup_timestamp = Column(String(15), nullable=True, index=True)  # YYYYMMDD_HHMMSS
    backup_kind = Column(String(20), nullable=True)
    archive_path = Column(String(500), nullable=True)
    archive_bytes = Column(Integer, nullable=True)
    succeeded_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    log_path = Column(String(500), nullable=True)

    task_runs = relationship("TaskRun", back_populates="run", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Run(id={self.id}, operation='{self.operation}', status='{self.status}', started_at={self.started_at})>"


class TaskRun(Base):
    """Per-project or per-container outcome inside a Run."""

    __tablename__ = "task_runs"

    id = Column(Integer, primary_key=True, index=True)
    run_id = Column(Integer, ForeignKey("runs.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(String(20), nullable=False)  # project | container
    name = Column(String(255), nullable=False)
    started_at = Column(DateTime, nullable=False, default=_utcnow)
    finished_at = Column(DateTime, nullable=True)
    status = Column(String(20), nullable=False, index=True)
    message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=True)

    run = relationship("Run", back_populates="task_runs")

    def __repr__(self) -> str:
        return f"<TaskRun(id={self.id}, run_id={self.run_id}, name='{self.name}', status='{self.status}')>"
