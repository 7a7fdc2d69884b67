"""Row factories and scripted fakes shared by the escalation tests."""

import asyncio
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from channels import Channel
from db_models import (
    IncidentDB, StaffDB, EventStaffDB, EscalationSLAConfigDB, EmergencyContactDB
)
from models import NotificationMethod

NOW = datetime(2024, 6, 1, 12, 0, 0)
EVENT_ID = "event-1"

TIER_ORDER = [
    NotificationMethod.PUSH,
    NotificationMethod.PERSISTED_RECORD,
    NotificationMethod.EMAIL,
    NotificationMethod.SMS,
    NotificationMethod.AUDIO_ALERT,
    NotificationMethod.VISUAL_ALERT,
    NotificationMethod.EMERGENCY_BROADCAST,
]

RECIPIENTLESS = {
    NotificationMethod.AUDIO_ALERT,
    NotificationMethod.VISUAL_ALERT,
    NotificationMethod.EMERGENCY_BROADCAST,
}


# ============================================================
# FAKES
# ============================================================

class FakeChannel(Channel):
    """Channel whose outcome is scripted by the test"""

    def __init__(
        self,
        method: NotificationMethod,
        result=False,
        fan_out: bool = False,
        requires_recipients: bool = True,
        eligible: Optional[Iterable[str]] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None
    ):
        self.method = method
        self.result = result
        self.fan_out = fan_out
        self.requires_recipients = requires_recipients
        self.eligible = set(eligible) if eligible is not None else None
        self.delay = delay
        self.error = error
        self.calls: List[List[str]] = []

    def recipients(self, notification):
        if self.eligible is None:
            return list(notification.supervisors)
        return [s for s in notification.supervisors if s.id in self.eligible]

    async def send(self, notification, recipients):
        self.calls.append([s.id for s in recipients])
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        if callable(self.result):
            return self.result(recipients)
        return self.result


def build_tiers(succeed: Iterable[NotificationMethod] = (), **overrides) -> List[FakeChannel]:
    """Seven fake tiers in cascade order; ``overrides`` maps method value to kwargs"""
    succeed = set(succeed)
    tiers = []
    for method in TIER_ORDER:
        kwargs = dict(
            result=method in succeed,
            fan_out=method == NotificationMethod.PUSH,
            requires_recipients=method not in RECIPIENTLESS,
        )
        kwargs.update(overrides.get(method.value, {}))
        tiers.append(FakeChannel(method, **kwargs))
    return tiers


# ============================================================
# ROW FACTORIES
# ============================================================

def make_incident(**overrides) -> IncidentDB:
    values = dict(
        id="inc-1",
        event_id=EVENT_ID,
        incident_type="medical",
        priority="high",
        status="open",
        description="Casualty reported at gate 3",
        escalation_level=0,
        escalated=False,
        escalate_at=NOW - timedelta(minutes=10),
        escalation_notes="",
    )
    values.update(overrides)
    return IncidentDB(**values)


def make_supervisor(
    staff_id: str,
    role: str = "supervisor",
    event_id: str = EVENT_ID,
    contact_methods=None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    availability: str = "available"
) -> list:
    return [
        StaffDB(
            id=staff_id,
            name=f"Staff {staff_id}",
            role=role,
            callsign=staff_id.upper(),
            email=email,
            phone=phone,
            contact_methods=contact_methods or [],
            availability_status=availability,
        ),
        EventStaffDB(event_id=event_id, staff_id=staff_id),
    ]


def make_sla_rule(incident_type="medical", priority="high", timeout=5, levels=1, roles=None, auto=True):
    return EscalationSLAConfigDB(
        incident_type=incident_type,
        priority_level=priority,
        escalation_timeout_minutes=timeout,
        escalation_levels=levels,
        supervisor_roles=roles if roles is not None else ["supervisor"],
        auto_escalate=auto,
    )


def make_emergency_contact(contact_id: str, event_id: str = EVENT_ID, **channels) -> EmergencyContactDB:
    return EmergencyContactDB(
        id=contact_id, event_id=event_id, name=f"Contact {contact_id}", **channels
    )
