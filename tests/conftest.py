"""
Pytest fixtures: in-memory database, API client and a small fleet factory.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import json
from datetime import datetime
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from fleet_coverage.main import app
from fleet_coverage.db import get_session
from fleet_coverage.models import (
    InsuranceProvider,
    Host,
    Vehicle,
    CoverageOverride,
    Booking,
    ApiClient,
)
from fleet_coverage.services.bookings import BookingLock

ADMIN_KEY = "FLEET_ADMIN_TEST_KEY"
HOST_KEY = "DESERT_HOST_TEST_KEY"


class FleetFactory:
    """Creates and commits fleet rows with sensible defaults."""

    def __init__(self, session: Session):
        self.session = session

    def _save(self, row):
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return row

    def provider(
        self,
        id: str,
        name: Optional[str] = None,
        type: str = "P2P",
        is_active: bool = True,
        value_min: Optional[float] = None,
        value_max: Optional[float] = None,
        excluded_makes: List[str] = (),
        excluded_models: List[str] = ()
    ) -> InsuranceProvider:
        return self._save(InsuranceProvider(
            id=id,
            name=name or id,
            type=type,
            is_active=is_active,
            vehicle_value_min=value_min,
            vehicle_value_max=value_max,
            excluded_makes_json=json.dumps(list(excluded_makes)),
            excluded_models_json=json.dumps(list(excluded_models))
        ))

    def host(self, id: str, name: Optional[str] = None, **fields) -> Host:
        return self._save(Host(id=id, name=name or id, email=f"{id}@example.com", **fields))

    def vehicle(
        self,
        id: str,
        host_id: str,
        make: str = "Toyota",
        model: str = "Camry",
        estimated_value: Optional[float] = 40000,
        daily_rate: float = 65,
        is_active: bool = True
    ) -> Vehicle:
        return self._save(Vehicle(
            id=id,
            host_id=host_id,
            make=make,
            model=model,
            year=2022,
            daily_rate=daily_rate,
            estimated_value=estimated_value,
            is_active=is_active
        ))

    def override(self, vehicle_id: str, provider_id: str) -> CoverageOverride:
        return self._save(CoverageOverride(
            vehicle_id=vehicle_id,
            provider_id=provider_id,
            reason="Approved by underwriting",
            authorized_by="underwriter@example.com"
        ))

    def booking(self, host_id: str, vehicle_id: str, start: datetime, end: datetime, status: str = "CONFIRMED") -> Booking:
        return self._save(Booking(
            host_id=host_id,
            vehicle_id=vehicle_id,
            status=status,
            start_date=start,
            end_date=end
        ))

    def api_client(self, id: str, api_key: str, role: str, host_id: Optional[str] = None) -> ApiClient:
        return self._save(ApiClient(
            id=id, name=id, email=f"{id}@example.com", api_key=api_key, role=role, host_id=host_id
        ))


class FakeBookingOracle:
    """Returns a canned booking lock."""

    def __init__(self, count: int = 0, latest_end_date: Optional[datetime] = None):
        self.lock = BookingLock(count=count, latest_end_date=latest_end_date)
        self.calls = []

    def count_blocking_bookings(self, host_id, as_of):
        self.calls.append((host_id, as_of))
        return self.lock


class RecordingAuditSink:
    def __init__(self):
        self.records = []

    def record(self, entity_type, entity_id, action, metadata):
        self.records.append((entity_type, entity_id, action, metadata))


class RecordingNotificationSink:
    def __init__(self):
        self.notifications = []

    def notify(self, host_id, category, subject, body):
        self.notifications.append((host_id, category, subject, body))


class FailingSink:
    def record(self, *args):
        raise RuntimeError("audit store unavailable")

    def notify(self, *args):
        raise RuntimeError("notification store unavailable")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def fleet(session):
    return FleetFactory(session)


@pytest.fixture
def client(engine):
    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def desert_host(fleet):
    """Host on P2P (STANDARD) with an approved, inactive commercial policy."""
    fleet.provider("prov_a", "Provider A", type="P2P", value_min=10000, value_max=60000)
    fleet.provider("prov_c", "Provider C", type="COMMERCIAL", value_min=5000, value_max=150000)
    return fleet.host(
        "host_desert",
        "Desert Drives",
        insurance_provider_id="prov_a",
        p2p_status="ACTIVE",
        p2p_provider_id="prov_a",
        p2p_policy_number="P2P-001",
        commercial_status="INACTIVE",
        commercial_provider_id="prov_c",
        commercial_policy_number="COM-001",
        earnings_tier="STANDARD",
        commission_rate=0.25
    )


@pytest.fixture
def auth_headers(fleet, desert_host):
    fleet.api_client("client_admin", ADMIN_KEY, "fleet_admin")
    fleet.api_client("client_desert", HOST_KEY, "host", host_id=desert_host.id)
    return {
        "admin": {"Authorization": f"Bearer {ADMIN_KEY}"},
        "host": {"Authorization": f"Bearer {HOST_KEY}"},
    }
