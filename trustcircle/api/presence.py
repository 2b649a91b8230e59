"""
Presence API - Nightly presence checks

Provides:
- POST /presence/check: Record a presence fix and credit an in-zone night
"""
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from trustcircle.db.repository import VerificationRepository
from trustcircle.dependencies import get_repository, raise_for_reason
from trustcircle.services.presence_service import presence_service

router = APIRouter(prefix="/presence", tags=["Presence"])


class PresenceCheckRequest(BaseModel):
    device_id: str = Field(..., min_length=1)
    geocell: Optional[str] = Field(None, description="H3 cell of the current location")
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lon: Optional[float] = Field(None, ge=-180, le=180)


class PresenceCheckResponse(BaseModel):
    confirmed: bool
    nights_confirmed: int
    activated: bool = False
    status: Optional[str] = None
    reason: Optional[str] = None


@router.post("/check", response_model=PresenceCheckResponse)
async def check_presence(
    request: PresenceCheckRequest,
    repo: VerificationRepository = Depends(get_repository)
):
    """Record a presence fix; an in-zone fix confirms at most one night per date."""
    outcome = presence_service.record_presence(
        repo,
        request.device_id,
        geocell=request.geocell,
        lat=request.lat,
        lon=request.lon
    )
    if not outcome.success:
        raise_for_reason(outcome.reason, status=outcome.status)

    return PresenceCheckResponse(
        confirmed=outcome.confirmed,
        nights_confirmed=outcome.nights_confirmed,
        activated=outcome.activated,
        status=outcome.status,
        reason=outcome.reason
    )
