"""
Services package - Verification engine logic
"""
from trustcircle.services.geocell_service import geocell_service
from trustcircle.services.notification_service import notification_service
from trustcircle.services.correlation_service import correlation_scorer
from trustcircle.services.activation_gate import activation_gate_service
from trustcircle.services.checkin_service import checkin_service
from trustcircle.services.movement_service import movement_service
from trustcircle.services.presence_service import presence_service
from trustcircle.services.device_service import device_service

__all__ = [
    "geocell_service",
    "notification_service",
    "correlation_scorer",
    "activation_gate_service",
    "checkin_service",
    "movement_service",
    "presence_service",
    "device_service"
]
