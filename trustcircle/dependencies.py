"""
FastAPI dependencies for TrustCircle Verification Engine
"""
from typing import Generator, Optional
from fastapi import Depends, HTTPException, Header, status
from sqlalchemy.orm import Session
from trustcircle.db.database import SessionLocal
from trustcircle.db.repository import VerificationRepository
from trustcircle.config import settings


def get_db() -> Generator[Session, None, None]:
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_repository(db: Session = Depends(get_db)) -> VerificationRepository:
    """Repository bound to the request session"""
    return VerificationRepository(db)


async def verify_api_key(x_api_key: Optional[str] = Header(None)) -> str:
    """Verify API key for internal (cron/operator) endpoints"""
    if not x_api_key or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key"
        )
    return x_api_key


# Engine reason codes -> HTTP status
REASON_STATUS = {
    "device_not_found": status.HTTP_404_NOT_FOUND,
    "challenge_not_found": status.HTTP_404_NOT_FOUND,
    "no_pending_challenge": status.HTTP_404_NOT_FOUND,
    "device_not_active": status.HTTP_403_FORBIDDEN,
}


def raise_for_reason(reason: Optional[str], **extra) -> None:
    """Turn an engine failure outcome into an HTTPException"""
    detail = {"error": reason or "request_failed"}
    detail.update(extra)
    raise HTTPException(
        status_code=REASON_STATUS.get(reason, status.HTTP_400_BAD_REQUEST),
        detail=detail
    )
