"""
Celery Tasks for periodic check-in sweeps
"""
import logging
from dataclasses import asdict
from celery import shared_task
from trustcircle.db.database import SessionLocal
from trustcircle.db.repository import VerificationRepository

logger = logging.getLogger(__name__)


def get_db_session():
    """Get database session for tasks"""
    return SessionLocal()


@shared_task(bind=True, max_retries=3, default_retry_delay=30)
def dispatch_due_checkins(self):
    """
    Send due check-in challenges.

    - Selects pending challenges due in the last 24 hours
    - Marks each sent, then pushes it
    """
    from trustcircle.services.checkin_service import checkin_service

    db = get_db_session()
    try:
        result = checkin_service.run_dispatch_sweep(VerificationRepository(db))
        return asdict(result)
    except Exception as e:
        logger.error(f"Check-in dispatch sweep failed: {e}")
        db.rollback()
        raise self.retry(exc=e)
    finally:
        db.close()


@shared_task(bind=True, max_retries=3, default_retry_delay=30)
def expire_stale_checkins(self):
    """
    Expire check-ins nobody answered.

    - Sent more than 30 minutes ago
    - Still pending more than 24 hours after their scheduled time
    """
    from trustcircle.services.checkin_service import checkin_service

    db = get_db_session()
    try:
        result = checkin_service.run_expiry_sweep(VerificationRepository(db))
        return asdict(result)
    except Exception as e:
        logger.error(f"Check-in expiry sweep failed: {e}")
        db.rollback()
        raise self.retry(exc=e)
    finally:
        db.close()

