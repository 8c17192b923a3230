"""
Booking lock oracle: answers whether a host has bookings that block a tier change.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy import func


@dataclass(frozen=True)
class BookingLock:
    """Bookings blocking a tier change, and when the last of them ends."""
    count: int
    latest_end_date: Optional[datetime] = None

    @property
    def is_locked(self) -> bool:
        return self.count > 0


class BookingLockOracle(Protocol):
    def count_blocking_bookings(self, host_id: str, as_of: datetime) -> BookingLock:
        ...


class SqlBookingLockOracle:
    """
    Reads the booking table through the caller's session, so the check runs
    in the same transaction as the tier change it guards.
    """

    def __init__(self, db_session):
        self.db_session = db_session

    def count_blocking_bookings(self, host_id: str, as_of: datetime) -> BookingLock:
        from fleet_coverage.models import Booking, TERMINAL_BOOKING_STATUSES

        count, latest_end = self.db_session.query(
            func.count(Booking.id),
            func.max(Booking.end_date)
        ).filter(
            Booking.host_id == host_id,
            Booking.status.notin_(TERMINAL_BOOKING_STATUSES),
            Booking.end_date >= as_of
        ).one()

        return BookingLock(count=count or 0, latest_end_date=latest_end if count else None)
