"""
Check-in API - Liveness challenge endpoints

Provides:
- POST /checkin/schedule: Schedule random check-ins for a verifying device
- GET /checkin/schedule/{device_id}: List a device's challenges
- POST /checkin/verify: Submit a touch trace for the open challenge
- POST /checkin/sweep/dispatch: Cron entry point - send due challenges
- POST /checkin/sweep/expire: Cron entry point - expire unanswered challenges
"""
import logging
from datetime import date, datetime
from typing import List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from trustcircle.db.repository import VerificationRepository
from trustcircle.dependencies import get_repository, raise_for_reason, verify_api_key
from trustcircle.services.checkin_service import checkin_service
from trustcircle.services.touch_gesture_service import TouchPoint

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/checkin", tags=["Check-in"])


# ============================================================
# REQUEST/RESPONSE MODELS
# ============================================================

class ScheduleRequest(BaseModel):
    """Request to schedule check-ins"""
    device_id: str = Field(..., min_length=1)
    start_date: Optional[date] = Field(None, description="Day 1 of the window (defaults to verification start)")
    count: Optional[int] = Field(None, ge=1, le=14, description="Number of challenges (default 3)")


class ScheduleResponse(BaseModel):
    success: bool
    scheduled: int
    already_scheduled: bool
    message: Optional[str] = None


class ChallengeView(BaseModel):
    id: int
    challenge_number: int
    scheduled_at: datetime
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    status: str
    is_human: Optional[bool] = None
    straightness: Optional[float] = None
    speed_variance: Optional[float] = None
    jitter: Optional[float] = None
    duration_ms: Optional[float] = None

    class Config:
        from_attributes = True


class ChallengeListResponse(BaseModel):
    challenges: List[ChallengeView]
    completed: int
    pending: int
    total: int


class TouchPointModel(BaseModel):
    x: float
    y: float
    t: float = Field(..., description="Milliseconds since gesture start")


class TouchData(BaseModel):
    points: List[TouchPointModel] = Field(..., description="Ordered touch samples")
    duration: float = Field(..., ge=0, description="Total gesture duration in ms")


class VerifyRequest(BaseModel):
    """Request to verify a check-in gesture"""
    device_id: str = Field(..., min_length=1)
    challenge_id: Optional[int] = Field(None, description="Challenge to answer (defaults to latest sent)")
    touch_data: TouchData

    class Config:
        json_schema_extra = {
            "example": {
                "device_id": "dev_8f2c1a",
                "touch_data": {
                    "points": [
                        {"x": 10, "y": 200, "t": 0},
                        {"x": 42, "y": 203, "t": 90},
                        {"x": 81, "y": 199, "t": 160},
                        {"x": 130, "y": 206, "t": 260},
                        {"x": 170, "y": 204, "t": 420},
                        {"x": 210, "y": 210, "t": 610}
                    ],
                    "duration": 610
                }
            }
        }


class VerifyResponse(BaseModel):
    success: bool
    passed: bool
    confidence: float
    flags: List[str]
    checkins_completed: int
    checkins_required: int
    challenge_id: Optional[int] = None
    challenge_status: Optional[str] = None


class SweepResponse(BaseModel):
    success: bool
    selected: int = 0
    sent: int = 0
    delivery_failures: int = 0
    expired_sent: int = 0
    expired_pending: int = 0


# ============================================================
# ENDPOINTS
# ============================================================

@router.post("/schedule", response_model=ScheduleResponse)
async def schedule_checkins(
    request: ScheduleRequest,
    repo: VerificationRepository = Depends(get_repository)
):
    """
    Schedule random check-ins for a verifying device.

    Idempotent: if the device already has challenges, nothing is created.
    """
    outcome = checkin_service.schedule_checkins(
        repo, request.device_id, request.start_date, request.count
    )
    if not outcome.success:
        raise_for_reason(outcome.reason)

    return ScheduleResponse(
        success=True,
        scheduled=outcome.scheduled,
        already_scheduled=outcome.already_scheduled,
        message="Check-ins already scheduled" if outcome.already_scheduled else None
    )


@router.get("/schedule/{device_id}", response_model=ChallengeListResponse)
async def list_checkins(
    device_id: str,
    repo: VerificationRepository = Depends(get_repository)
):
    """Get a device's challenges with completion counts"""
    summary = checkin_service.list_checkins(repo, device_id)
    return ChallengeListResponse(
        challenges=[ChallengeView.model_validate(c) for c in summary["challenges"]],
        completed=summary["completed"],
        pending=summary["pending"],
        total=summary["total"]
    )


@router.post("/verify", response_model=VerifyResponse)
async def verify_checkin(
    request: VerifyRequest,
    repo: VerificationRepository = Depends(get_repository)
):
    """
    Verify a liveness gesture.

    The trace is classified as human or scripted; a human verdict completes
    the challenge and counts toward activation.
    """
    points = [TouchPoint(x=p.x, y=p.y, t=p.t) for p in request.touch_data.points]
    outcome = checkin_service.submit_checkin(
        repo,
        request.device_id,
        points,
        request.touch_data.duration,
        challenge_id=request.challenge_id
    )
    if not outcome.success:
        raise_for_reason(outcome.reason, expired=outcome.expired)

    return VerifyResponse(
        success=True,
        passed=outcome.passed,
        confidence=round(outcome.confidence, 4),
        flags=outcome.flags,
        checkins_completed=outcome.checkins_completed,
        checkins_required=outcome.checkins_required,
        challenge_id=outcome.challenge_id,
        challenge_status=outcome.challenge_status
    )


@router.post("/sweep/dispatch", response_model=SweepResponse, dependencies=[Depends(verify_api_key)])
async def run_dispatch_sweep(repo: VerificationRepository = Depends(get_repository)):
    """Send every due pending challenge"""
    result = checkin_service.run_dispatch_sweep(repo)
    return SweepResponse(
        success=True,
        selected=result.selected,
        sent=result.sent,
        delivery_failures=result.delivery_failures
    )


@router.post("/sweep/expire", response_model=SweepResponse, dependencies=[Depends(verify_api_key)])
async def run_expiry_sweep(repo: VerificationRepository = Depends(get_repository)):
    """Expire challenges nobody answered in time"""
    result = checkin_service.run_expiry_sweep(repo)
    return SweepResponse(
        success=True,
        expired_sent=result.expired_sent,
        expired_pending=result.expired_pending
    )
