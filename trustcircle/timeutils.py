"""
Clock helpers - all persisted timestamps are naive UTC
"""
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from trustcircle.config import settings


def utcnow() -> datetime:
    """Current time as naive UTC"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_zone() -> ZoneInfo:
    return ZoneInfo(settings.LOCAL_TIMEZONE)


def to_local(moment: datetime) -> datetime:
    """Convert a naive UTC timestamp to the configured local wall clock"""
    return moment.replace(tzinfo=timezone.utc).astimezone(local_zone())


def from_local(moment: datetime) -> datetime:
    """Convert a naive local wall-clock time to naive UTC"""
    aware = moment.replace(tzinfo=local_zone())
    return aware.astimezone(timezone.utc).replace(tzinfo=None)
