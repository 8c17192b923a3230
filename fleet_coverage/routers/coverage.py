"""
Coverage router: per-vehicle and per-host coverage, and the fleet gap report.
"""

from fastapi import APIRouter, Depends, Request
from sqlmodel import Session
from typing import Dict, Any
import logging
import time

from fleet_coverage.schemas import VehicleCoverageResponse, HostCoverageResponse, GapReportResponse
from fleet_coverage.deps import get_current_client, require_fleet_admin, ensure_host_access
from fleet_coverage.db import get_session
from fleet_coverage.cache import settings_cache
from fleet_coverage.exceptions import NotFoundError
from fleet_coverage.models import Vehicle
from fleet_coverage.services.coverage import get_vehicle_coverage, get_host_coverage
from fleet_coverage.services.gaps import scan_fleet

logger = logging.getLogger("fleet_coverage")

router = APIRouter()


@router.get("/vehicles/{vehicle_id}/coverage", response_model=VehicleCoverageResponse)
async def vehicle_coverage(
    vehicle_id: str,
    client: Dict[str, Any] = Depends(get_current_client),
    session: Session = Depends(get_session)
):
    """Resolve coverage for one vehicle."""
    vehicle = session.get(Vehicle, vehicle_id)
    if not vehicle:
        raise NotFoundError(f"Vehicle {vehicle_id} not found", details={"vehicle_id": vehicle_id})
    ensure_host_access(client, vehicle.host_id)

    _, entry = get_vehicle_coverage(
        vehicle_id, session, settings_cache.get_value_factor()
    )
    return entry


@router.get("/hosts/{host_id}/coverage", response_model=HostCoverageResponse)
async def host_coverage(
    host_id: str,
    client: Dict[str, Any] = Depends(get_current_client),
    session: Session = Depends(get_session)
):
    """Resolve coverage for every vehicle of a host."""
    ensure_host_access(client, host_id)
    return get_host_coverage(host_id, session, settings_cache.get_value_factor())


@router.get("/coverage/gaps", response_model=GapReportResponse)
async def coverage_gaps(
    request_obj: Request,
    include_inactive: bool = False,
    client: Dict[str, Any] = Depends(require_fleet_admin),
    session: Session = Depends(get_session)
):
    """
    Fleet-wide coverage gap report.

    This endpoint:
    1. Bulk-loads providers, vehicles and overrides
    2. Resolves coverage for every vehicle in memory
    3. Classifies gaps (host-level vs vehicle-rule)
    4. Returns summary counts and prioritized recommendations
    """
    request_id = getattr(request_obj.state, "request_id", "unknown")
    thresholds = settings_cache.get_gap_thresholds()
    start_time = time.time()

    report = scan_fleet(
        session,
        include_inactive=include_inactive,
        thresholds=thresholds,
        value_factor=settings_cache.get_value_factor()
    )

    duration_ms = (time.time() - start_time) * 1000
    if duration_ms > thresholds["slow_scan_threshold_ms"]:
        logger.warning(
            f"Slow gap scan | "
            f"request_id={request_id} | "
            f"vehicles={report['summary']['total_vehicles']} | "
            f"duration_ms={duration_ms:.2f} | "
            f"threshold_ms={thresholds['slow_scan_threshold_ms']:.0f}"
        )

    return report
