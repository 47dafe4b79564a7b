from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from stackvault.domain.enums import HealthKind
from stackvault.domain.timestamps import format_timestamp, parse_timestamp
from stackvault.domain.types import ContainerState

COMPOSE_WORKING_DIR_LABEL = "com.docker.compose.project.working_dir"
COMPOSE_PROJECT_LABEL = "com.docker.compose.project"
COMPOSE_SERVICE_LABEL = "com.docker.compose.service"


class ContainerRecord(BaseModel):
    """Container state captured at backup time, one file per container and timestamp."""

    name: str = Field(..., description="Container name without the leading slash")
    runtime_id: Optional[str] = Field(None, description="Engine id at capture time; not stable across restarts")
    project_directory: Optional[str] = Field(None, description="Compose working directory label")
    project_name: Optional[str] = Field(None, description="Compose project label")
    service_name: Optional[str] = Field(None, description="Compose service label")
    image: Optional[str] = None
    network_names: List[str] = Field(default_factory=list)
    health_kind: HealthKind = HealthKind.NONE
    timestamp: str = Field(..., pattern=r"^\d{8}_\d{6}$")
    state_blob: Dict[str, Any] = Field(default_factory=dict, description="Raw inspection payload")

    @property
    def captured_at(self) -> datetime:
        return parse_timestamp(self.timestamp)

    @classmethod
    def from_state(cls, state: ContainerState, timestamp: datetime) -> "ContainerRecord":
        labels = state.labels or {}
        return cls(
            name=state.name,
            runtime_id=state.id or None,
            project_directory=labels.get(COMPOSE_WORKING_DIR_LABEL) or None,
            project_name=labels.get(COMPOSE_PROJECT_LABEL) or None,
            service_name=labels.get(COMPOSE_SERVICE_LABEL) or None,
            image=state.image,
            network_names=list(state.networks),
            health_kind=HealthKind.PROBED if state.has_probe else HealthKind.NONE,
            timestamp=format_timestamp(timestamp),
            state_blob=state.raw,
        )


class ContainerRecordSummary(BaseModel):
    name: str
    project_directory: Optional[str] = None
    project_name: Optional[str] = None
    service_name: Optional[str] = None
    image: Optional[str] = None
    network_names: List[str] = Field(default_factory=list)
    health_kind: HealthKind
    timestamp: str
