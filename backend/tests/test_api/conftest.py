from __future__ import annotations

from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from stackvault.api.deps import get_fleet_service
from stackvault.core.db import get_session
from stackvault.main import app
from stackvault.services import FleetService


class _DummyScheduler:
    def start(self) -> None:  # noqa: D401
        """No-op start."""
        return None

    def shutdown(self) -> None:  # noqa: D401
        """No-op shutdown."""
        return None


@pytest.fixture
def fleet_service(db_session, fleet_env, fake_runtime, fake_compose, fake_codec, no_sleep, fixed_clock) -> FleetService:
    return FleetService(
        db_session,
        fleet_env,
        runtime=fake_runtime,
        compose=fake_compose,
        codec=fake_codec,
        sleep=no_sleep,
        clock=fixed_clock,
        notifier=lambda subject, body: None,
        which=lambda tool: f"/usr/bin/{tool}",
    )


@pytest.fixture
def client(
    db_session: Session, fleet_service: FleetService, monkeypatch: pytest.MonkeyPatch
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient with DB, fleet service and scheduler overrides."""

    def override_get_session() -> Generator[Session, None, None]:
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_fleet_service] = lambda: fleet_service

    # Avoid touching the real DB or scheduling during app startup in tests
    monkeypatch.setattr("stackvault.main.init_db", lambda: None, raising=True)
    monkeypatch.setattr("stackvault.main.schedule_backup", lambda scheduler, settings: False, raising=True)
    monkeypatch.setattr("stackvault.main.get_scheduler", lambda settings=None: _DummyScheduler(), raising=True)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
