# ============================================================
# channels.py — Notification Channel Adapters
# ============================================================

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import aiohttp

from models import EscalationNotification, NotificationMethod, Supervisor

logger = logging.getLogger(__name__)


def escalation_title(level: int) -> str:
    return f"Incident Escalation - Level {level}"


# ─────────────────────────────────────────────
# HTTP gateway shared by all external channels
# ─────────────────────────────────────────────

class HttpGateway:
    """
    Thin client for the notification/emergency gateway.

    Every call is bounded by ``timeout_seconds``. Transport errors and
    non-2xx responses are reported as False, never raised.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout_seconds: float = 5.0
    ):
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json"}
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=headers)
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def post(self, path: str, payload: Dict[str, Any]) -> bool:
        url = f"{self.base_url}{path}"
        try:
            session = await self._get_session()
            async with session.post(url, json=payload) as response:
                if 200 <= response.status < 300:
                    return True
                body = await response.text()
                logger.error(f"❌ Gateway {path} returned {response.status}: {body[:200]}")
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"❌ Gateway {path} unreachable: {e!r}")
            return False


# ─────────────────────────────────────────────
# Channel capability
# ─────────────────────────────────────────────

class Channel(ABC):
    """
    One notification tier.

    ``fan_out`` channels are called once per recipient; the rest get a
    single call covering every eligible recipient. Channels that
    ``requires_recipients`` are not called at all when nobody is eligible.
    """

    method: NotificationMethod
    fan_out = False
    requires_recipients = True

    def recipients(self, notification: EscalationNotification) -> List[Supervisor]:
        return list(notification.supervisors)

    @abstractmethod
    async def send(
        self,
        notification: EscalationNotification,
        recipients: List[Supervisor]
    ) -> bool:
        ...


class PushChannel(Channel):
    method = NotificationMethod.PUSH
    fan_out = True

    def __init__(self, gateway: HttpGateway):
        self.gateway = gateway

    async def send(self, notification, recipients):
        results = []
        for supervisor in recipients:
            results.append(await self.gateway.post("/api/notifications/send-push", {
                "userId": supervisor.id,
                "payload": {
                    "title": escalation_title(notification.escalation_level),
                    "body": f"{notification.incident_type} incident requires attention",
                    "data": {
                        "incident_id": notification.incident_id,
                        "escalation_level": str(notification.escalation_level),
                        "type": "escalation"
                    },
                    "tag": "escalation",
                    "requireInteraction": True
                }
            }))
        return any(results)


class PersistedRecordChannel(Channel):
    """In-app notification rows, one per supervisor"""
    method = NotificationMethod.PERSISTED_RECORD

    def __init__(self, repo):
        self.repo = repo

    async def send(self, notification, recipients):
        written = await self.repo.add_notification_records(
            [s.id for s in recipients],
            title=escalation_title(notification.escalation_level),
            message=f"{notification.incident_type} incident requires immediate attention",
            data={
                "incident_id": notification.incident_id,
                "escalation_level": notification.escalation_level,
                "incident_type": notification.incident_type,
                "priority": notification.priority
            }
        )
        return written > 0


class EmailChannel(Channel):
    method = NotificationMethod.EMAIL

    def __init__(self, gateway: HttpGateway):
        self.gateway = gateway

    def recipients(self, notification):
        return [
            s for s in notification.supervisors
            if "email" in s.contact_methods and s.email
        ]

    async def send(self, notification, recipients):
        body = (
            "<h2>🚨 INCIDENT ESCALATION ALERT</h2>"
            f"<p><strong>Level:</strong> {notification.escalation_level}</p>"
            f"<p><strong>Type:</strong> {notification.incident_type}</p>"
            f"<p><strong>Priority:</strong> {notification.priority}</p>"
            f"<p><strong>Description:</strong> {notification.description or ''}</p>"
            f"<p><strong>Escalated at:</strong> {notification.escalation_time.isoformat()}</p>"
            "<p>This incident requires immediate supervisor attention.</p>"
        )
        return await self.gateway.post("/api/notifications/send-email", {
            "recipients": [s.email for s in recipients],
            "subject": f"URGENT: {escalation_title(notification.escalation_level)}",
            "body": body,
            "priority": "high"
        })


class SmsChannel(Channel):
    method = NotificationMethod.SMS

    def __init__(self, gateway: HttpGateway):
        self.gateway = gateway

    def recipients(self, notification):
        return [
            s for s in notification.supervisors
            if "sms" in s.contact_methods and s.phone
        ]

    async def send(self, notification, recipients):
        return await self.gateway.post("/api/notifications/send-sms", {
            "recipients": [s.phone for s in recipients],
            "message": (
                f"URGENT: {notification.incident_type} incident escalated to level "
                f"{notification.escalation_level}. Requires immediate attention."
            ),
            "priority": "high"
        })


class AudioAlertChannel(Channel):
    method = NotificationMethod.AUDIO_ALERT
    requires_recipients = False

    def __init__(self, gateway: HttpGateway):
        self.gateway = gateway

    async def send(self, notification, recipients):
        return await self.gateway.post("/api/notifications/audio-alert", {
            "incident_id": notification.incident_id,
            "escalation_level": notification.escalation_level,
            "incident_type": notification.incident_type,
            "priority": notification.priority,
            "alert_type": "escalation"
        })


class VisualAlertChannel(Channel):
    method = NotificationMethod.VISUAL_ALERT
    requires_recipients = False

    def __init__(self, gateway: HttpGateway, display_targets: List[str]):
        self.gateway = gateway
        self.display_targets = list(display_targets)

    async def send(self, notification, recipients):
        return await self.gateway.post("/api/notifications/visual-alert", {
            "incident_id": notification.incident_id,
            "escalation_level": notification.escalation_level,
            "incident_type": notification.incident_type,
            "priority": notification.priority,
            "alert_type": "escalation",
            "display_targets": self.display_targets
        })


class EmergencyBroadcastChannel(Channel):
    method = NotificationMethod.EMERGENCY_BROADCAST
    requires_recipients = False

    def __init__(self, gateway: HttpGateway):
        self.gateway = gateway

    async def send(self, notification, recipients):
        return await self.gateway.post("/api/notifications/emergency-broadcast", {
            "incident_id": notification.incident_id,
            "escalation_level": notification.escalation_level,
            "incident_type": notification.incident_type,
            "priority": notification.priority,
            "broadcast_type": "escalation_emergency",
            "message": (
                f"EMERGENCY: {notification.incident_type} incident at escalation level "
                f"{notification.escalation_level}. All available supervisors required immediately."
            )
        })


def build_channel_tiers(gateway: HttpGateway, repo, display_targets: List[str]) -> List[Channel]:
    """Fixed cascade order, cheapest and highest-signal first"""
    return [
        PushChannel(gateway),
        PersistedRecordChannel(repo),
        EmailChannel(gateway),
        SmsChannel(gateway),
        AudioAlertChannel(gateway),
        VisualAlertChannel(gateway, display_targets),
        EmergencyBroadcastChannel(gateway),
    ]
