"""
SQLModel database models for the fleet coverage engine.
"""

from sqlmodel import SQLModel, Field
from typing import Optional, List
from datetime import datetime, date
from enum import Enum
import json


class SlotStatus(str, Enum):
    """Status of one insurance slot (P2P or commercial) on a host."""
    INACTIVE = "INACTIVE"
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    REJECTED = "REJECTED"


class InsuranceType(str, Enum):
    """The two mutually-exclusive insurance slots a host can hold."""
    P2P = "P2P"
    COMMERCIAL = "COMMERCIAL"


class EarningsTier(str, Enum):
    BASIC = "BASIC"
    STANDARD = "STANDARD"
    PREMIUM = "PREMIUM"


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    SUSPENDED = "SUSPENDED"
    BLACKLISTED = "BLACKLISTED"


BLOCKED_ACCOUNT_STATUSES = {AccountStatus.SUSPENDED.value, AccountStatus.BLACKLISTED.value}

# Bookings in these states never block a tier change
TERMINAL_BOOKING_STATUSES = {"COMPLETED", "CANCELLED", "REJECTED", "NO_SHOW"}


class InsuranceProvider(SQLModel, table=True):
    """Insurance provider with vehicle eligibility rules."""
    __tablename__ = "insurance_provider"

    id: str = Field(primary_key=True)
    name: str
    type: str = Field(default="P2P")
    is_active: bool = Field(default=True, index=True)
    vehicle_value_min: Optional[float] = None
    vehicle_value_max: Optional[float] = None
    excluded_makes_json: str = Field(default="[]")  # JSON string
    excluded_models_json: str = Field(default="[]")  # JSON string
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def excluded_makes(self) -> List[str]:
        return json.loads(self.excluded_makes_json or "[]")

    @property
    def excluded_models(self) -> List[str]:
        return json.loads(self.excluded_models_json or "[]")


class Host(SQLModel, table=True):
    """Fleet operator owning vehicles, with two insurance slots."""
    id: str = Field(primary_key=True)
    name: str
    email: str
    account_status: str = Field(default=AccountStatus.ACTIVE.value)

    # Provider assigned to the host's whole fleet
    insurance_provider_id: Optional[str] = Field(default=None, foreign_key="insurance_provider.id")

    # P2P slot
    p2p_status: Optional[str] = None
    p2p_provider_id: Optional[str] = Field(default=None, foreign_key="insurance_provider.id")
    p2p_policy_number: Optional[str] = None
    p2p_expires_at: Optional[date] = None

    # Commercial slot
    commercial_status: Optional[str] = None
    commercial_provider_id: Optional[str] = Field(default=None, foreign_key="insurance_provider.id")
    commercial_policy_number: Optional[str] = None
    commercial_expires_at: Optional[date] = None

    # Derived, written only by tier transitions
    earnings_tier: str = Field(default=EarningsTier.BASIC.value)
    commission_rate: float = Field(default=0.60)
    last_tier_change: Optional[datetime] = None
    tier_change_reason: Optional[str] = None
    tier_change_by: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)


class TierChange(SQLModel, table=True):
    """Append-only history of tier changes for a host."""
    __tablename__ = "tier_change"

    id: Optional[int] = Field(default=None, primary_key=True)
    host_id: str = Field(foreign_key="host.id", index=True)
    action: str
    insurance_type: str
    from_tier: str
    to_tier: str
    previous_commission: float
    new_commission: float
    reason: Optional[str] = None
    actor: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Vehicle(SQLModel, table=True):
    """Vehicle listed by a host."""
    id: str = Field(primary_key=True)
    host_id: str = Field(foreign_key="host.id", index=True)
    make: str
    model: str
    year: int
    daily_rate: float
    estimated_value: Optional[float] = None
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class CoverageOverride(SQLModel, table=True):
    """Manually authorized coverage for one vehicle."""
    __tablename__ = "coverage_override"

    id: Optional[int] = Field(default=None, primary_key=True)
    vehicle_id: str = Field(foreign_key="vehicle.id", unique=True, index=True)
    provider_id: str = Field(foreign_key="insurance_provider.id")
    reason: str
    authorized_by: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Booking(SQLModel, table=True):
    """Projection of a rental booking, used for the tier-change lock."""
    id: Optional[int] = Field(default=None, primary_key=True)
    host_id: str = Field(foreign_key="host.id", index=True)
    vehicle_id: str = Field(foreign_key="vehicle.id")
    status: str
    start_date: datetime
    end_date: datetime
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ActivityLog(SQLModel, table=True):
    """Audit trail record."""
    __tablename__ = "activity_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_type: str
    entity_id: str = Field(index=True)
    action: str
    metadata_json: str  # JSON string
    created_at: datetime = Field(default_factory=datetime.utcnow)


class HostNotification(SQLModel, table=True):
    """Notification queued for a host."""
    __tablename__ = "host_notification"

    id: Optional[int] = Field(default=None, primary_key=True)
    host_id: str = Field(foreign_key="host.id", index=True)
    type: str
    category: str
    subject: str
    message: str
    priority: str = Field(default="high")
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ApiClient(SQLModel, table=True):
    """API client for bearer authentication (fleet admins and hosts)."""
    __tablename__ = "api_client"

    id: str = Field(primary_key=True)
    name: str
    email: str
    api_key: str = Field(unique=True, index=True)
    role: str  # fleet_admin or host
    host_id: Optional[str] = Field(default=None, foreign_key="host.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)


class IdempotencyKey(SQLModel, table=True):
    """Idempotency key model for preventing duplicate requests."""
    __tablename__ = "idempotency_key"

    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(unique=True, index=True)
    method: str
    path: str
    request_hash: str
    response_json: str  # JSON string
    created_at: datetime = Field(default_factory=datetime.utcnow)
