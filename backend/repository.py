# ============================================================
# repository.py — Data Layer
# ============================================================

from contextlib import asynccontextmanager
from sqlalchemy import select, desc, update, func, case, or_
from sqlalchemy.exc import SQLAlchemyError
from db_models import (
    IncidentDB, EscalationSLAConfigDB, StaffDB, EventStaffDB,
    EscalationEventDB, NotificationDB, EmergencyContactDB, EmergencyLogDB
)
from models import (
    Incident, SLAConfig, Supervisor, EscalationEvent, EmergencyContact,
    EmergencyLog, ESCALATABLE_STATUSES
)
from errors import EscalationPersistenceError
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


def _append_note(column, note: str):
    """SQL expression appending a line to a text trail column"""
    return case(
        (or_(column.is_(None), column == ""), note),
        else_=column + "\n" + note,
    )


def _incident_from_row(row: IncidentDB) -> Incident:
    return Incident(
        id=row.id,
        event_id=row.event_id,
        incident_type=row.incident_type,
        priority=row.priority,
        status=row.status,
        description=row.description,
        escalation_level=row.escalation_level or 0,
        escalated=bool(row.escalated),
        escalate_at=row.escalate_at,
        escalation_notes=row.escalation_notes or ""
    )


def _event_from_row(row: EscalationEventDB) -> EscalationEvent:
    return EscalationEvent(
        id=row.id,
        incident_id=row.incident_id,
        escalation_level=row.escalation_level,
        escalated_at=row.escalated_at,
        escalated_by=row.escalated_by,
        supervisor_notified=row.supervisor_notified,
        resolution_time=row.resolution_time,
        notes=row.notes
    )


class Repository:
    """Data access layer for the escalation engine"""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    @asynccontextmanager
    async def session_scope(self, operation: str = "transaction"):
        """One unit of work: commit on success, rollback and wrap DB errors"""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"❌ SYSTEM ERROR during {operation}: {str(e)}", exc_info=True)
                raise EscalationPersistenceError(operation, e) from e
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def _use(self, session, operation: str):
        if session is not None:
            yield session
        else:
            async with self.session_scope(operation) as own:
                yield own

    # ─────────────────────────────────────────────
    # INCIDENT OPERATIONS
    # ─────────────────────────────────────────────

    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        async with self.session_scope("get_incident") as session:
            result = await session.execute(
                select(IncidentDB).where(IncidentDB.id == incident_id)
            )
            row = result.scalar_one_or_none()
            return _incident_from_row(row) if row else None

    async def list_due_incidents(
        self,
        now: datetime,
        event_id: Optional[str] = None
    ) -> List[Incident]:
        """Armed incidents whose timer has expired"""
        async with self.session_scope("list_due_incidents") as session:
            query = (
                select(IncidentDB)
                .where(IncidentDB.escalate_at.is_not(None))
                .where(IncidentDB.escalate_at < now)
                .where(IncidentDB.escalated == False)  # noqa: E712
                .where(IncidentDB.status.in_(ESCALATABLE_STATUSES))
                .order_by(IncidentDB.escalate_at)
            )

            if event_id:
                query = query.where(IncidentDB.event_id == event_id)

            result = await session.execute(query)
            return [_incident_from_row(r) for r in result.scalars().all()]

    async def advance_escalation(
        self,
        session,
        incident_id: str,
        expected_level: int,
        new_level: int,
        note: str,
        require_unescalated: bool = True
    ) -> bool:
        """
        Compare-and-swap the escalation level.

        The row is only touched if its level still equals ``expected_level``
        (and, for automatic escalation, ``escalated`` is still false).
        Returns False when another caller already won the transition.
        """
        stmt = (
            update(IncidentDB)
            .where(IncidentDB.id == incident_id)
            .where(IncidentDB.escalation_level == expected_level)
        )
        if require_unescalated:
            stmt = stmt.where(IncidentDB.escalated == False)  # noqa: E712

        stmt = stmt.values(
            escalation_level=new_level,
            escalated=True,
            escalation_notes=_append_note(IncidentDB.escalation_notes, note)
        ).execution_options(synchronize_session=False)

        result = await session.execute(stmt)
        return result.rowcount == 1

    async def arm_timer(self, incident_id: str, escalate_at: datetime, note: str) -> bool:
        """Set the first escalation deadline; no-op if a timer is already set"""
        async with self.session_scope("arm_timer") as session:
            result = await session.execute(
                update(IncidentDB)
                .where(IncidentDB.id == incident_id)
                .where(IncidentDB.escalate_at.is_(None))
                .values(
                    escalate_at=escalate_at,
                    escalation_notes=_append_note(IncidentDB.escalation_notes, note)
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def pause_timer(self, incident_id: str, note: str) -> bool:
        async with self.session_scope("pause_timer") as session:
            result = await session.execute(
                update(IncidentDB)
                .where(IncidentDB.id == incident_id)
                .values(
                    escalate_at=None,
                    escalation_notes=_append_note(IncidentDB.escalation_notes, note)
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def resume_timer(self, incident_id: str, escalate_at: datetime, note: str) -> bool:
        async with self.session_scope("resume_timer") as session:
            result = await session.execute(
                update(IncidentDB)
                .where(IncidentDB.id == incident_id)
                .values(
                    escalate_at=escalate_at,
                    escalated=False,
                    escalation_notes=_append_note(IncidentDB.escalation_notes, note)
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    # ─────────────────────────────────────────────
    # SLA & STAFF
    # ─────────────────────────────────────────────

    async def get_sla_rule(self, incident_type: str, priority: str) -> Optional[SLAConfig]:
        async with self.session_scope("get_sla_rule") as session:
            result = await session.execute(
                select(EscalationSLAConfigDB)
                .where(EscalationSLAConfigDB.incident_type == incident_type)
                .where(EscalationSLAConfigDB.priority_level == priority)
            )
            row = result.scalar_one_or_none()

            if not row:
                return None

            return SLAConfig(
                incident_type=row.incident_type,
                priority_level=row.priority_level,
                timeout_minutes=row.escalation_timeout_minutes,
                max_levels=row.escalation_levels,
                supervisor_roles=row.supervisor_roles or [],
                auto_escalate=bool(row.auto_escalate),
                is_default=False
            )

    async def list_available_staff(self, event_id: str, roles: List[str]) -> List[Supervisor]:
        if not roles:
            return []

        async with self.session_scope("list_available_staff") as session:
            result = await session.execute(
                select(StaffDB)
                .join(EventStaffDB, EventStaffDB.staff_id == StaffDB.id)
                .where(EventStaffDB.event_id == event_id)
                .where(StaffDB.role.in_(roles))
                .where(StaffDB.availability_status == "available")
                .order_by(StaffDB.role, StaffDB.name)
            )

            return [
                Supervisor(
                    id=r.id,
                    name=r.name,
                    role=r.role,
                    callsign=r.callsign,
                    email=r.email,
                    phone=r.phone,
                    contact_methods=r.contact_methods or []
                )
                for r in result.scalars().all()
            ]

    # ─────────────────────────────────────────────
    # ESCALATION AUDIT
    # ─────────────────────────────────────────────

    async def add_escalation_event(self, event: EscalationEvent, session=None):
        async with self._use(session, "add_escalation_event") as s:
            s.add(
                EscalationEventDB(
                    id=event.id,
                    incident_id=event.incident_id,
                    escalation_level=event.escalation_level,
                    escalated_at=event.escalated_at,
                    escalated_by=event.escalated_by,
                    supervisor_notified=event.supervisor_notified,
                    resolution_time=event.resolution_time,
                    notes=event.notes
                )
            )
            await s.flush()

    async def get_escalation_history(self, incident_id: str) -> List[EscalationEvent]:
        async with self.session_scope("get_escalation_history") as session:
            result = await session.execute(
                select(EscalationEventDB)
                .where(EscalationEventDB.incident_id == incident_id)
                .order_by(desc(EscalationEventDB.escalated_at), desc(EscalationEventDB.escalation_level))
            )
            return [_event_from_row(r) for r in result.scalars().all()]

    async def list_escalations_for_event(self, event_id: str) -> List[Tuple[EscalationEvent, str]]:
        """Escalation events joined to their incident's type"""
        async with self.session_scope("list_escalations_for_event") as session:
            result = await session.execute(
                select(EscalationEventDB, IncidentDB.incident_type)
                .join(IncidentDB, IncidentDB.id == EscalationEventDB.incident_id)
                .where(IncidentDB.event_id == event_id)
            )
            return [(_event_from_row(ev), incident_type) for ev, incident_type in result.all()]

    async def set_resolution_time(self, escalation_id: str, minutes: int) -> bool:
        """Backfill resolution time once; the audit row is otherwise immutable"""
        async with self.session_scope("set_resolution_time") as session:
            result = await session.execute(
                update(EscalationEventDB)
                .where(EscalationEventDB.id == escalation_id)
                .where(EscalationEventDB.resolution_time.is_(None))
                .values(resolution_time=minutes)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    # ─────────────────────────────────────────────
    # IN-APP NOTIFICATIONS
    # ─────────────────────────────────────────────

    async def add_notification_records(
        self,
        staff_ids: List[str],
        title: str,
        message: str,
        data: Dict[str, Any]
    ) -> int:
        async with self.session_scope("add_notification_records") as session:
            for staff_id in staff_ids:
                session.add(
                    NotificationDB(
                        staff_id=staff_id,
                        title=title,
                        message=message,
                        type="escalation",
                        data=data,
                        read=False
                    )
                )
            await session.flush()
            return len(staff_ids)

    # ─────────────────────────────────────────────
    # EMERGENCY FAILOVER
    # ─────────────────────────────────────────────

    async def list_emergency_contacts(self, event_id: str) -> List[EmergencyContact]:
        async with self.session_scope("list_emergency_contacts") as session:
            result = await session.execute(
                select(EmergencyContactDB)
                .where(EmergencyContactDB.event_id == event_id)
                .where(EmergencyContactDB.active == True)  # noqa: E712
                .order_by(EmergencyContactDB.name)
            )
            return [
                EmergencyContact(
                    id=r.id,
                    event_id=r.event_id,
                    name=r.name,
                    phone=r.phone,
                    email=r.email,
                    sms=r.sms
                )
                for r in result.scalars().all()
            ]

    async def add_emergency_log(self, log: EmergencyLog):
        async with self.session_scope("add_emergency_log") as session:
            session.add(
                EmergencyLogDB(
                    id=log.id,
                    incident_id=log.incident_id,
                    event_id=log.event_id,
                    escalation_level=log.escalation_level,
                    emergency_type=log.emergency_type,
                    triggered_at=log.triggered_at,
                    status=log.status,
                    notes=log.notes
                )
            )

    async def list_emergency_logs(self, event_id: str) -> List[EmergencyLog]:
        async with self.session_scope("list_emergency_logs") as session:
            result = await session.execute(
                select(EmergencyLogDB)
                .where(EmergencyLogDB.event_id == event_id)
                .order_by(desc(EmergencyLogDB.triggered_at))
            )
            return [
                EmergencyLog(
                    id=r.id,
                    incident_id=r.incident_id,
                    event_id=r.event_id,
                    escalation_level=r.escalation_level,
                    emergency_type=r.emergency_type,
                    triggered_at=r.triggered_at,
                    status=r.status,
                    notes=r.notes
                )
                for r in result.scalars().all()
            ]

    async def count_emergency_logs(self, event_id: str) -> int:
        async with self.session_scope("count_emergency_logs") as session:
            result = await session.execute(
                select(func.count(EmergencyLogDB.id))
                .where(EmergencyLogDB.event_id == event_id)
            )
            return result.scalar_one()
