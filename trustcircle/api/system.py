"""
System Router - Health checks and monitoring
"""
from fastapi import APIRouter, Depends
from trustcircle.timeutils import utcnow
import redis
from sqlalchemy import text
from sqlalchemy.orm import Session
from trustcircle.config import settings
from trustcircle.dependencies import get_db
from trustcircle.worker.celery_app import WORKER_QUEUES

router = APIRouter()


@router.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """
    Health check endpoint returning status of backing services.
    """
    database_status = "unhealthy"
    try:
        db.execute(text("SELECT 1"))
        database_status = "healthy"
    except Exception:
        pass

    # Redis doubles as the Celery broker
    redis_status = "unhealthy"
    worker_queue_depth = 0
    try:
        r = redis.from_url(settings.REDIS_URL, socket_connect_timeout=1)
        r.ping()
        redis_status = "healthy"
        worker_queue_depth = sum(r.llen(queue) or 0 for queue in WORKER_QUEUES)
    except Exception:
        pass

    return {
        "database": database_status,
        "redis": redis_status,
        "worker_queue_depth": worker_queue_depth,
        "timestamp": utcnow().isoformat() + "Z"
    }
