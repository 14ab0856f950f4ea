"""
Extension Access API Routes

Endpoints:
- POST /api/extension/activate-daily-use - Activate today's hour on a device
- POST /api/extension/auth-status - Entitlement status for the extension
- POST /api/v2/session/start - Start a session for a known user
- POST /api/v2/session/revoke - Revoke the caller's session
- GET/POST /api/extension/diagnostics/* - Gated diagnostics (admin only)
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request

from database import get_db
from utils.auth import get_admin_user, get_current_session

from .access_service import ExtensionAccessService
from .diagnostics import Diagnostics, diagnostics_enabled
from .errors import SessionRevokedError
from .models import (
    ActivateDailyUseRequest,
    AuthStatusRequest,
    SessionRevokeRequest,
    SessionStartRequest,
)
from .session_issuer import SessionIssuer

logger = logging.getLogger(__name__)

extension_router = APIRouter(prefix="/extension", tags=["Extension Access"])
session_router = APIRouter(prefix="/v2/session", tags=["Extension Sessions"])
diagnostics_router = APIRouter(prefix="/extension/diagnostics", tags=["Extension Diagnostics"])


def client_ip(request: Request) -> str:
    """First forwarded hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def get_active_session(session: dict = Depends(get_current_session), db=Depends(get_db)):
    """Credential claims, rejected if the session id is on the denylist"""
    if await SessionIssuer(db).is_revoked(session["session_id"]):
        raise SessionRevokedError()
    return session


# ==================== EXTENSION ENDPOINTS ====================

@extension_router.post("/activate-daily-use")
async def activate_daily_use(body: ActivateDailyUseRequest, request: Request, db=Depends(get_db)):
    """
    Activate the daily usage window for this device and start a session.

    429 DAILY_LIMIT_USED when another user already used today's hour on the device.
    """
    service = ExtensionAccessService(db)
    return await service.activate_daily_use(
        user_id=body.user_id,
        user_email=body.user_email,
        device_fingerprint=body.device_fingerprint,
        remote_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        origin=request.headers.get("origin"),
    )


@extension_router.post("/auth-status")
async def auth_status(body: Optional[AuthStatusRequest] = Body(None), db=Depends(get_db)):
    """
    Entitlement status for the extension.

    Unauthenticated callers get the default limited grant, not an error.
    """
    body = body or AuthStatusRequest()
    service = ExtensionAccessService(db)
    status = await service.check_status(body.user_id, body.user_email)
    return status.model_dump(by_alias=True, exclude_none=True, mode="json")


# ==================== SESSION ENDPOINTS ====================

@session_router.post("/start")
async def start_session(body: SessionStartRequest, request: Request, db=Depends(get_db)):
    """Start an authenticated session; 404 USER_NOT_FOUND if no source knows the user."""
    service = ExtensionAccessService(db)
    return await service.start_session(
        user_id=body.user_id,
        email=body.email,
        device_fingerprint=body.device_fingerprint,
        remote_address=client_ip(request),
        user_agent=body.user_agent or request.headers.get("user-agent"),
        origin=request.headers.get("origin"),
    )


@session_router.post("/revoke")
async def revoke_session(
    body: Optional[SessionRevokeRequest] = Body(None),
    session: dict = Depends(get_active_session),
    db=Depends(get_db)
):
    """Revoke the session the presented credential belongs to."""
    body = body or SessionRevokeRequest()
    service = ExtensionAccessService(db)
    return await service.revoke_session(session["session_id"], body.reason)


# ==================== DIAGNOSTICS (GATED) ====================

def require_diagnostics():
    if not diagnostics_enabled():
        raise HTTPException(status_code=404, detail="Not found")


@diagnostics_router.get("/subject", dependencies=[Depends(require_diagnostics)])
async def explain_subject(
    user_id: Optional[str] = Query(None, alias="userId"),
    email: Optional[str] = Query(None),
    admin: dict = Depends(get_admin_user),
    db=Depends(get_db)
):
    """Raw per-source view of a user next to the resolved entitlement (admin only)."""
    return await Diagnostics(db).explain_subject(user_id, email)


@diagnostics_router.get("/ledger/{day}", dependencies=[Depends(require_diagnostics)])
async def dump_ledger(
    day: str,
    limit: int = Query(500, ge=1, le=5000),
    admin: dict = Depends(get_admin_user),
    db=Depends(get_db)
):
    """Daily ledger records for a UTC day, YYYY-MM-DD (admin only). `truncated` is set past `limit`."""
    return await Diagnostics(db).dump_ledger(day, limit)


@diagnostics_router.post("/clear-claims", dependencies=[Depends(require_diagnostics)])
async def clear_claims(
    user_id: str = Query(..., alias="userId"),
    preserve: Optional[Dict[str, Any]] = Body(None),
    admin: dict = Depends(get_admin_user),
    db=Depends(get_db)
):
    """Remove premium markers from a user's mirrored provider claims (admin only)."""
    return await Diagnostics(db).clear_premium_claims(user_id, preserve)
