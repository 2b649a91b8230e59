"""
Movement API - Movement check ingestion

Provides:
- POST /movement/check: Record a movement report, score it, update counters
"""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from trustcircle.db.repository import VerificationRepository
from trustcircle.dependencies import get_repository, raise_for_reason
from trustcircle.services.movement_service import movement_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/movement", tags=["Movement"])


class MovementCheckRequest(BaseModel):
    """Request model for a movement check"""
    device_id: str = Field(..., min_length=1, description="Opaque device identifier")
    movement_detected: bool = Field(..., description="Client motion sensor verdict")
    geocell: Optional[str] = Field(None, description="H3 cell of the current location")
    lat: Optional[float] = Field(None, ge=-90, le=90, description="Latitude (bucketed server-side)")
    lon: Optional[float] = Field(None, ge=-180, le=180, description="Longitude (bucketed server-side)")

    class Config:
        json_schema_extra = {
            "example": {
                "device_id": "dev_8f2c1a",
                "movement_detected": True,
                "geocell": "872a1072bffffff"
            }
        }


class MovementCheckResponse(BaseModel):
    """Response model for a movement check"""
    recorded: bool
    movement_days_confirmed: int
    trust_score: Optional[float] = None
    flags: List[str] = []
    skipped_checks: List[str] = []
    frozen: bool = False
    activated: bool = False
    status: Optional[str] = None
    reason: Optional[str] = None


@router.post("/check", response_model=MovementCheckResponse)
async def check_movement(
    request: MovementCheckRequest,
    repo: VerificationRepository = Depends(get_repository)
):
    """
    Record a movement report.

    The report is correlated with recent presence and movement history to
    produce today's trust score. A score under the freeze ceiling freezes
    the device; otherwise a detected movement credits today's movement day.
    """
    outcome = movement_service.record_movement(
        repo,
        request.device_id,
        request.movement_detected,
        geocell=request.geocell,
        lat=request.lat,
        lon=request.lon
    )
    if not outcome.success:
        raise_for_reason(outcome.reason, status=outcome.status)

    return MovementCheckResponse(
        recorded=True,
        movement_days_confirmed=outcome.movement_days_confirmed,
        trust_score=outcome.trust_score,
        flags=outcome.flags,
        skipped_checks=outcome.skipped_checks,
        frozen=outcome.frozen,
        activated=outcome.activated,
        status=outcome.status,
        reason=outcome.reason
    )
