"""
API routers package
"""
from trustcircle.api import (
    system,
    device,
    movement,
    presence,
    checkin
)

__all__ = [
    "system",
    "device",
    "movement",
    "presence",
    "checkin"
]
