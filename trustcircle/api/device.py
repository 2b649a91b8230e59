"""
Device API - Enrollment, status and revocation

Provides:
- POST /device/enroll: Enroll a device into verification
- GET /device/{device_id}: Current status, counters and trust average
- POST /device/{device_id}/revoke: Operator revocation (API key)
"""
import logging
from datetime import date, datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from trustcircle.db.repository import VerificationRepository
from trustcircle.dependencies import get_repository, raise_for_reason, verify_api_key
from trustcircle.services.device_service import device_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/device", tags=["Device"])


class EnrollRequest(BaseModel):
    device_id: str = Field(..., min_length=1, max_length=128)
    zone_id: str = Field(..., description="H3 region cell of the neighborhood zone")
    subscription_class: str = Field("paid", description="'paid' or 'subsidized'")
    start_date: Optional[date] = None


class DeviceView(BaseModel):
    device_id: str
    zone_id: str
    status: str
    status_reason: Optional[str] = None
    subscription_class: str
    verification_start_date: date
    nights_confirmed: int
    movement_days_confirmed: int
    checkins_completed: int
    checkins_required: int
    average_trust_score: Optional[float] = None
    moved_today: Optional[bool] = None
    last_movement_at: Optional[datetime] = None


class EnrollResponse(BaseModel):
    created: bool
    checkins_scheduled: int
    device: DeviceView


class RevokeResponse(BaseModel):
    device_id: str
    status: str


@router.post("/enroll", response_model=EnrollResponse)
async def enroll_device(
    request: EnrollRequest,
    repo: VerificationRepository = Depends(get_repository)
):
    """Enroll a device in verifying status and schedule its check-ins"""
    outcome = device_service.enroll_device(
        repo,
        request.device_id,
        request.zone_id,
        request.subscription_class,
        request.start_date
    )
    if not outcome.success:
        raise_for_reason(outcome.reason)

    summary = device_service.get_device_summary(repo, request.device_id)
    return EnrollResponse(
        created=outcome.created,
        checkins_scheduled=outcome.checkins_scheduled,
        device=DeviceView(**summary)
    )


@router.get("/{device_id}", response_model=DeviceView)
async def get_device(
    device_id: str,
    repo: VerificationRepository = Depends(get_repository)
):
    summary = device_service.get_device_summary(repo, device_id)
    if summary is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return DeviceView(**summary)


@router.post("/{device_id}/revoke", response_model=RevokeResponse, dependencies=[Depends(verify_api_key)])
async def revoke_device(
    device_id: str,
    repo: VerificationRepository = Depends(get_repository)
):
    """Revoke a device's badge; revoked is terminal"""
    outcome = device_service.revoke_device(repo, device_id)
    if not outcome.success:
        raise_for_reason(outcome.reason)
    logger.info(f"Device {device_id} revoked by operator")
    return RevokeResponse(device_id=device_id, status=outcome.status)
