"""
Dependencies for authentication, authorization and idempotency.
"""

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional, Dict, Any
import hashlib
import json
from sqlmodel import Session
from fleet_coverage.db import get_session
from fleet_coverage.models import ApiClient, IdempotencyKey

ROLE_FLEET_ADMIN = "fleet_admin"
ROLE_HOST = "host"

security = HTTPBearer()


async def get_current_client(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session: Session = Depends(get_session)
) -> Dict[str, Any]:
    """
    Extract and validate the API key from the Authorization header.
    Returns client information for use in endpoints.
    """
    api_key = credentials.credentials

    client = session.query(ApiClient).filter(ApiClient.api_key == api_key).first()

    if not client:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key"
        )

    return {
        "id": client.id,
        "name": client.name,
        "email": client.email,
        "role": client.role,
        "host_id": client.host_id
    }


async def require_fleet_admin(
    client: Dict[str, Any] = Depends(get_current_client)
) -> Dict[str, Any]:
    """Allow only fleet administrators."""
    if client["role"] != ROLE_FLEET_ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Fleet access required"
        )
    return client


def ensure_host_access(client: Dict[str, Any], host_id: str) -> None:
    """Fleet admins may act on any host; hosts only on themselves."""
    if client["role"] == ROLE_FLEET_ADMIN:
        return
    if client["role"] == ROLE_HOST and client["host_id"] == host_id:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Not allowed to access this host"
    )


async def check_idempotency_key(
    request: Request,
    session: Session = Depends(get_session)
) -> Optional[Dict[str, Any]]:
    """
    Check idempotency key for duplicate requests.
    Returns None if new request, or cached response if duplicate.
    """
    idempotency_key = request.headers.get("X-Idempotency-Key")

    if not idempotency_key:
        return None

    cached_response = session.query(IdempotencyKey).filter(
        IdempotencyKey.key == idempotency_key,
        IdempotencyKey.method == request.method,
        IdempotencyKey.path == request.url.path
    ).first()

    if cached_response:
        return json.loads(cached_response.response_json)

    return None


def store_idempotency_response(
    idempotency_key: str,
    method: str,
    path: str,
    request_hash: str,
    response_data: Dict[str, Any],
    session: Session
) -> None:
    """
    Store response for idempotency key to prevent duplicate processing.
    """
    if not idempotency_key:
        return

    idempotency_record = IdempotencyKey(
        key=idempotency_key,
        method=method,
        path=path,
        request_hash=request_hash,
        response_json=json.dumps(response_data)
    )

    session.add(idempotency_record)
    session.commit()


def generate_request_hash(request_body: Dict[str, Any]) -> str:
    """Generate a hash for request body to detect duplicates."""
    # Sort keys to ensure consistent hashing
    sorted_body = json.dumps(request_body, sort_keys=True)
    return hashlib.sha256(sorted_body.encode()).hexdigest()
