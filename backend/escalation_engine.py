# ============================================================
# escalation_engine.py — Escalation State Machine
# ============================================================
#
# Per-incident states:
#
#   Idle        escalate_at is null
#   Armed       escalate_at set, escalated = false
#   Escalating  escalated = true, cascade running or finished
#   Ceiling     escalation_level == max_levels (terminal for auto-escalation)
#
#   Idle --arm/resume--> Armed --escalate--> Escalating --resume--> Armed
#   Armed --pause--> Idle
#
# The engine has no scheduler of its own. An external caller invokes
# run_check() and every timeout is computed from the ``now`` it passes in.

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from errors import EscalationPersistenceError, IncidentNotFoundError
from models import (
    Incident, EscalationEvent, EscalationNotification, EscalationOutcome,
    EscalationStatus
)
from guards import sanitize_comment
from sla import compute_next_escalation_time

logger = logging.getLogger(__name__)


class CheckResult(BaseModel):
    """Outcome of one scan-and-escalate pass"""
    due_incident_ids: List[str] = Field(default_factory=list)
    escalated_incident_ids: List[str] = Field(default_factory=list)
    failed_incident_ids: List[str] = Field(default_factory=list)
    dry_run: bool = False


class EscalationStateMachine:

    def __init__(self, repo, sla, directory, dispatcher, failover, reporter):
        self.repo = repo
        self.sla = sla
        self.directory = directory
        self.dispatcher = dispatcher
        self.failover = failover
        self.reporter = reporter

    # ─────────────────────────────────────────────
    # SCAN
    # ─────────────────────────────────────────────

    async def scan_due(self, now: datetime, event_id: Optional[str] = None) -> List[Incident]:
        return await self.repo.list_due_incidents(now, event_id)

    async def run_check(
        self,
        now: datetime,
        event_id: Optional[str] = None,
        dry_run: bool = False
    ) -> CheckResult:
        due = await self.scan_due(now, event_id)
        result = CheckResult(due_incident_ids=[i.id for i in due], dry_run=dry_run)

        if dry_run:
            logger.info(f"Dry run: {len(due)} incident(s) due for escalation")
            return result

        for incident in due:
            try:
                outcome = await self.escalate(incident.id, now)
            except EscalationPersistenceError as e:
                logger.error(
                    f"❌ SYSTEM ERROR: escalation of incident {incident.id} abandoned "
                    f"for this cycle: {e}"
                )
                result.failed_incident_ids.append(incident.id)
                continue

            if outcome.escalated:
                result.escalated_incident_ids.append(incident.id)

        logger.info(
            f"✅ Escalation check: {len(due)} due, "
            f"{len(result.escalated_incident_ids)} escalated, "
            f"{len(result.failed_incident_ids)} failed"
        )
        return result

    # ─────────────────────────────────────────────
    # ESCALATE
    # ─────────────────────────────────────────────

    async def escalate(
        self,
        incident_id: str,
        now: datetime,
        escalated_by: Optional[str] = None,
        notes: Optional[str] = None
    ) -> EscalationOutcome:
        """
        Promote an incident by one level.

        ``escalated_by`` is None for automatic escalation. A named human
        may escalate an incident whose current level was already notified,
        but the level guard and ceiling apply to both.

        Raises EscalationPersistenceError when engine state cannot be
        read or written; nothing is changed in that case.
        """
        incident = await self.repo.get_incident(incident_id)
        if incident is None:
            return EscalationOutcome(incident_id=incident_id, status=EscalationStatus.NOT_FOUND)

        config = await self.sla.resolve(incident.incident_type, incident.priority)
        level = incident.escalation_level
        automatic = escalated_by is None

        if level >= config.max_levels:
            logger.info(f"Incident {incident_id} already at maximum escalation level {level}")
            return EscalationOutcome(
                incident_id=incident_id,
                status=EscalationStatus.AT_CEILING,
                previous_level=level
            )

        if automatic and not config.auto_escalate:
            return EscalationOutcome(
                incident_id=incident_id,
                status=EscalationStatus.AUTO_ESCALATION_DISABLED,
                previous_level=level
            )

        if automatic and incident.escalated:
            return EscalationOutcome(
                incident_id=incident_id,
                status=EscalationStatus.ALREADY_ESCALATED,
                previous_level=level
            )

        new_level = level + 1
        supervisors = await self.directory.list_supervisors(
            incident.event_id, config.supervisor_roles
        )

        if automatic:
            note = f"Auto-escalated to level {new_level} at {now.isoformat()}"
            audit_note = f"Auto-escalated from level {level} to {new_level}"
        else:
            note = f"Escalated to level {new_level} by {escalated_by} at {now.isoformat()}"
            audit_note = f"Escalated from level {level} to {new_level} by {escalated_by}"
        notes = sanitize_comment(notes)
        if notes:
            audit_note = f"{audit_note}: {notes}"

        event = EscalationEvent(
            id=str(uuid.uuid4()),
            incident_id=incident_id,
            escalation_level=new_level,
            escalated_at=now,
            escalated_by=escalated_by,
            supervisor_notified=len(supervisors) > 0,
            notes=audit_note
        )

        # Level change and audit row commit together or not at all
        async with self.repo.session_scope("escalate") as session:
            won = await self.repo.advance_escalation(
                session,
                incident_id,
                expected_level=level,
                new_level=new_level,
                note=note,
                require_unescalated=automatic
            )
            if won:
                await self.reporter.record_transition(event, session=session)

        if not won:
            logger.info(f"Incident {incident_id} level {level} already escalated by another caller")
            return EscalationOutcome(
                incident_id=incident_id,
                status=EscalationStatus.CONFLICT,
                previous_level=level
            )

        logger.info(f"✅ Incident {incident_id} escalated to level {new_level}")

        outcome = EscalationOutcome(
            incident_id=incident_id,
            status=EscalationStatus.ESCALATED,
            previous_level=level,
            new_level=new_level,
            supervisors_resolved=len(supervisors)
        )

        if not supervisors:
            logger.warning(
                f"⚠️ Incident {incident_id} escalated to level {new_level} "
                f"with no supervisors to notify"
            )
            return outcome

        notification = EscalationNotification(
            incident_id=incident_id,
            event_id=incident.event_id,
            escalation_level=new_level,
            incident_type=incident.incident_type,
            priority=incident.priority,
            description=incident.description,
            supervisors=supervisors,
            escalation_time=now
        )
        result = await self.dispatcher.dispatch(notification)
        self.reporter.record_notification_result(result)
        outcome.notification = result

        if result.critical_failure:
            outcome.emergency = await self.failover.trigger(incident, new_level, now)

        return outcome

    # ─────────────────────────────────────────────
    # TIMER CONTROL
    # ─────────────────────────────────────────────

    async def arm(self, incident_id: str, now: datetime) -> Incident:
        """Initial scheduling for an incident with no timer"""
        incident = await self._require(incident_id)
        config = await self.sla.resolve(incident.incident_type, incident.priority)
        escalate_at = compute_next_escalation_time(now, config.timeout_minutes)

        armed = await self.repo.arm_timer(
            incident_id,
            escalate_at,
            f"Escalation timer armed at {now.isoformat()}"
        )
        if armed:
            logger.info(f"✅ Escalation timer armed for incident {incident_id}: {escalate_at.isoformat()}")
        else:
            logger.info(f"Incident {incident_id} already has an escalation timer")

        return await self._require(incident_id)

    async def pause(self, incident_id: str, paused_by: str, now: datetime) -> Incident:
        await self._require(incident_id)
        await self.repo.pause_timer(
            incident_id,
            f"Escalation paused by {paused_by} at {now.isoformat()}"
        )
        logger.info(f"✅ Escalation paused for incident {incident_id} by {paused_by}")
        return await self._require(incident_id)

    async def resume(
        self,
        incident_id: str,
        resumed_by: str,
        now: datetime,
        extra_minutes: Optional[int] = None
    ) -> Incident:
        incident = await self._require(incident_id)
        config = await self.sla.resolve(incident.incident_type, incident.priority)
        escalate_at = compute_next_escalation_time(now, config.timeout_minutes, extra_minutes)

        await self.repo.resume_timer(
            incident_id,
            escalate_at,
            f"Escalation resumed by {resumed_by} at {now.isoformat()}"
        )
        logger.info(f"✅ Escalation resumed for incident {incident_id}: next at {escalate_at.isoformat()}")
        return await self._require(incident_id)

    async def _require(self, incident_id: str) -> Incident:
        incident = await self.repo.get_incident(incident_id)
        if incident is None:
            raise IncidentNotFoundError(incident_id)
        return incident
