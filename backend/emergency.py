# ============================================================
# emergency.py — Emergency Failover Controller
# ============================================================

import asyncio
import logging
import uuid
from datetime import datetime
from typing import List

from channels import HttpGateway
from errors import EscalationPersistenceError
from models import (
    Incident, EmergencyLog, EmergencyContact, EmergencyFailoverReport,
    ContactOutcome, ProtocolOutcome
)

logger = logging.getLogger(__name__)

# Per-contact order; a contact is reached by the first method that succeeds
CONTACT_METHOD_ORDER = ["phone", "email", "sms"]

FAILURE_REASON = "notification_system_failure"


class EmergencyServicesClient:
    """Gateway calls used only on the emergency path"""

    def __init__(self, gateway: HttpGateway):
        self.gateway = gateway

    async def contact(self, contact_id: str, method: str, incident_id: str, message: str) -> bool:
        return await self.gateway.post("/api/emergency/contact", {
            "contact_id": contact_id,
            "method": method,
            "incident_id": incident_id,
            "message": message
        })

    async def activate_protocol(self, protocol: str, event_id: str, level: int, reason: str) -> bool:
        return await self.gateway.post(f"/api/emergency/{protocol}", {
            "event_id": event_id,
            "escalation_level": level,
            "reason": reason
        })


class EmergencyFailoverController:
    """
    Terminal failure path, run once per critical cascade failure.

    Writes the emergency log, works through every emergency contact and
    fires every protocol. Each step is best-effort and independent of the
    others; nothing here escalates or retries further.
    """

    def __init__(self, repo, client: EmergencyServicesClient, protocols: List[str]):
        self.repo = repo
        self.client = client
        self.protocols = list(protocols)

    async def trigger(self, incident: Incident, level: int, now: datetime) -> EmergencyFailoverReport:
        logger.critical(
            f"🚨 EMERGENCY: All notification methods failed for incident {incident.id} "
            f"at level {level}. Triggering emergency procedures."
        )

        report = EmergencyFailoverReport(
            incident_id=incident.id,
            event_id=incident.event_id,
            escalation_level=level
        )

        log = EmergencyLog(
            id=str(uuid.uuid4()),
            incident_id=incident.id,
            event_id=incident.event_id,
            escalation_level=level,
            emergency_type="notification_failure",
            triggered_at=now,
            notes="All notification methods failed. Emergency procedures activated."
        )
        try:
            await self.repo.add_emergency_log(log)
            report.log_id = log.id
        except EscalationPersistenceError as e:
            logger.error(f"❌ Could not write emergency log for incident {incident.id}: {e}")

        report.contacts = await self._contact_all(incident)
        report.protocols = await self._activate_protocols(incident.event_id, level)

        if not report.anything_succeeded:
            logger.critical(
                f"🚨 Emergency failover exhausted for incident {incident.id}: "
                f"no contact reached and no protocol activated"
            )
        else:
            reached = sum(1 for c in report.contacts if c.success)
            activated = sum(1 for p in report.protocols if p.success)
            logger.info(
                f"✅ Emergency failover for incident {incident.id}: "
                f"{reached}/{len(report.contacts)} contacts reached, "
                f"{activated}/{len(report.protocols)} protocols activated"
            )

        return report

    async def _contact_all(self, incident: Incident) -> List[ContactOutcome]:
        try:
            contacts = await self.repo.list_emergency_contacts(incident.event_id)
        except EscalationPersistenceError as e:
            logger.error(f"❌ Could not load emergency contacts for event {incident.event_id}: {e}")
            return []

        if not contacts:
            logger.warning(f"⚠️ No emergency contacts configured for event {incident.event_id}")
            return []

        message = (
            f"EMERGENCY: Critical incident {incident.id} requires immediate attention. "
            f"All notification systems have failed."
        )
        return list(await asyncio.gather(*[
            self._contact_one(contact, incident.id, message) for contact in contacts
        ]))

    async def _contact_one(self, contact: EmergencyContact, incident_id: str, message: str) -> ContactOutcome:
        outcome = ContactOutcome(contact_id=contact.id)

        for method in CONTACT_METHOD_ORDER:
            if not contact.address_for(method):
                continue

            outcome.methods_tried.append(method)
            try:
                success = await self.client.contact(contact.id, method, incident_id, message)
            except Exception as e:
                logger.error(f"❌ Error contacting emergency contact {contact.id} via {method}: {e}")
                success = False

            if success:
                outcome.reached_via = method
                break

        if not outcome.success:
            logger.error(f"❌ Emergency contact {contact.id} could not be reached")

        return outcome

    async def _activate_protocols(self, event_id: str, level: int) -> List[ProtocolOutcome]:
        results = await asyncio.gather(
            *[self.client.activate_protocol(p, event_id, level, FAILURE_REASON) for p in self.protocols],
            return_exceptions=True
        )

        outcomes = []
        for protocol, result in zip(self.protocols, results):
            if isinstance(result, Exception):
                logger.error(f"❌ Error activating emergency protocol {protocol}: {result}")
                outcomes.append(ProtocolOutcome(protocol=protocol, success=False, error=str(result)))
            elif result:
                logger.info(f"✅ Emergency protocol {protocol} activated")
                outcomes.append(ProtocolOutcome(protocol=protocol, success=True))
            else:
                logger.error(f"❌ Failed to activate emergency protocol {protocol}")
                outcomes.append(ProtocolOutcome(protocol=protocol, success=False, error="activation failed"))

        return outcomes
