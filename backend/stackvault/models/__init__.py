"""SQLAlchemy models for run history."""

from .runs import Run, TaskRun  # noqa: F401
