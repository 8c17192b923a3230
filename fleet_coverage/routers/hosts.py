"""
Hosts router: coverage tier switching and admin insurance review.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session
from typing import Dict, Any
import logging

from fleet_coverage.schemas import ToggleRequest, ReviewRequest, TierResponse, HostTierResponse
from fleet_coverage.deps import (
    get_current_client,
    require_fleet_admin,
    ensure_host_access,
    check_idempotency_key,
    store_idempotency_response,
    generate_request_hash,
)
from fleet_coverage.db import get_session
from fleet_coverage.services.tiers import (
    toggle_coverage,
    approve_insurance,
    reject_insurance,
    remove_insurance,
    get_host_tier,
)

logger = logging.getLogger("fleet_coverage")

router = APIRouter()


def _store_response(request_obj: Request, body: Dict[str, Any], response_data: Dict[str, Any], session: Session):
    idempotency_key = request_obj.headers.get("X-Idempotency-Key")
    if idempotency_key:
        store_idempotency_response(
            idempotency_key,
            request_obj.method,
            request_obj.url.path,
            generate_request_hash(body),
            response_data,
            session
        )


@router.get("/hosts/{host_id}/tier", response_model=HostTierResponse)
async def host_tier(
    host_id: str,
    client: Dict[str, Any] = Depends(get_current_client),
    session: Session = Depends(get_session)
):
    """Current tier, slots and tier-change history of a host."""
    ensure_host_access(client, host_id)
    return get_host_tier(host_id, session)


@router.post("/hosts/{host_id}/insurance/toggle", response_model=TierResponse)
async def toggle_insurance(
    host_id: str,
    request: ToggleRequest,
    request_obj: Request,
    client: Dict[str, Any] = Depends(get_current_client),
    session: Session = Depends(get_session)
):
    """
    Switch a host between P2P and COMMERCIAL insurance.

    Rejected while the host has active or upcoming bookings.
    """
    request_id = getattr(request_obj.state, "request_id", "unknown")
    ensure_host_access(client, host_id)

    cached_response = await check_idempotency_key(request_obj, session)
    if cached_response:
        logger.info(f"Returning cached response | request_id={request_id}")
        return cached_response

    logger.info(
        f"Processing tier toggle | request_id={request_id} | host_id={host_id} | "
        f"target={request.target_tier}"
    )
    result = toggle_coverage(host_id, request.target_tier, client["email"], session)

    response_data = result.to_dict()
    _store_response(request_obj, request.dict(), response_data, session)
    return response_data


@router.post("/hosts/{host_id}/insurance/review", response_model=TierResponse)
async def review_insurance(
    host_id: str,
    request: ReviewRequest,
    request_obj: Request,
    client: Dict[str, Any] = Depends(require_fleet_admin),
    session: Session = Depends(get_session)
):
    """Approve or reject a pending P2P or COMMERCIAL insurance submission."""
    cached_response = await check_idempotency_key(request_obj, session)
    if cached_response:
        return cached_response

    if request.action == "approve":
        result = approve_insurance(host_id, request.insurance_type, client["email"], session)
    elif request.action == "reject":
        result = reject_insurance(
            host_id, request.insurance_type, request.reason or "", client["email"], session
        )
    else:
        raise HTTPException(
            status_code=400,
            detail='Action must be either "approve" or "reject"'
        )

    response_data = result.to_dict()
    _store_response(request_obj, request.dict(), response_data, session)
    return response_data


@router.delete("/hosts/{host_id}/insurance/{insurance_type}", response_model=TierResponse)
async def delete_insurance(
    host_id: str,
    insurance_type: str,
    client: Dict[str, Any] = Depends(require_fleet_admin),
    session: Session = Depends(get_session)
):
    """Remove a host's insurance from one slot."""
    result = remove_insurance(host_id, insurance_type, client["email"], session)
    return result.to_dict()
