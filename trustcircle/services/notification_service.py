"""
Notification Service - Push delivery via an external push gateway

Fire-and-forget: a failed delivery is logged and reported in the returned
dict, never raised, so it can't block a state transition or a sweep.
"""
import logging
from typing import Dict, Any, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from trustcircle.config import settings

logger = logging.getLogger(__name__)

CHECKIN_PAYLOAD = {
    "title": "Quick verify",
    "body": "Tap to confirm you're real (takes 3 seconds)",
    "url": "/checkin",
}

GRANTED_PAYLOAD = {
    "title": "You're verified",
    "body": "Your live badge is now unlocked.",
    "url": "/badge",
}

FROZEN_PAYLOAD = {
    "title": "Verification paused",
    "body": "Suspicious activity detected. Contact support to resume.",
    "url": "/settings",
}

REVOKED_PAYLOAD = {
    "title": "Badge revoked",
    "body": "This device's badge is no longer valid.",
    "url": "/settings",
}


class NotificationService:
    """Service for sending push notifications to devices"""

    def __init__(self):
        self.gateway_url = settings.PUSH_GATEWAY_URL
        self.gateway_token = settings.PUSH_GATEWAY_TOKEN
        self.timeout = settings.PUSH_TIMEOUT_SEC
        self.gateway_configured = bool(self.gateway_url)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.HTTPStatusError))
    )
    def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Accept": "application/json"}
        if self.gateway_token:
            headers["Authorization"] = f"Bearer {self.gateway_token}"

        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(f"{self.gateway_url}/send", json=body, headers=headers)
            response.raise_for_status()
            return response.json() if response.content else {}

    def dispatch(
        self,
        device_id: str,
        payload: Dict[str, Any],
        tag: Optional[str] = None
    ) -> Dict[str, Any]:
        """Send a push to one device"""
        body = {"device_id": device_id, "payload": payload}
        if tag:
            body["tag"] = tag

        if not self.gateway_configured:
            logger.info(f"Push gateway not configured - simulating push to {device_id}: {payload.get('title')}")
            return {"success": True, "simulated": True, "device_id": device_id}

        try:
            self._post(body)
            return {"success": True, "device_id": device_id}
        except Exception as e:
            logger.warning(f"Push delivery to {device_id} failed: {e}")
            return {"success": False, "device_id": device_id, "error": str(e)}

    def send_checkin_challenge(self, device_id: str, challenge_id: int) -> Dict[str, Any]:
        payload = dict(CHECKIN_PAYLOAD, data={"type": "checkin", "challenge_id": challenge_id})
        return self.dispatch(device_id, payload, tag=f"checkin-{challenge_id}")


# Singleton instance
notification_service = NotificationService()
