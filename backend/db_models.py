# ============================================================
# db_models.py — Escalation Database Schema
# ============================================================

from sqlalchemy import (
    Column, String, Text, TIMESTAMP, Integer, Boolean, JSON, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from datetime import datetime
import uuid

Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _uuid() -> str:
    return str(uuid.uuid4())


class IncidentDB(Base):
    """Incident row; the engine only writes the escalation columns"""
    __tablename__ = "incidents"

    id = Column(String, primary_key=True, default=_uuid)
    event_id = Column(String, nullable=False, index=True)
    incident_type = Column(String, nullable=False)
    priority = Column(String, nullable=False)
    status = Column(String, nullable=False, default="open")
    description = Column(Text)
    created_at = Column(TIMESTAMP, default=datetime.utcnow)

    # Escalation
    escalation_level = Column(Integer, nullable=False, default=0)
    escalated = Column(Boolean, nullable=False, default=False)
    escalate_at = Column(TIMESTAMP, nullable=True, index=True)
    escalation_notes = Column(Text, default="")


class EscalationSLAConfigDB(Base):
    """Escalation rule keyed by (incident_type, priority_level)"""
    __tablename__ = "escalation_sla_config"
    __table_args__ = (
        UniqueConstraint("incident_type", "priority_level", name="uq_sla_type_priority"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    incident_type = Column(String, nullable=False)
    priority_level = Column(String, nullable=False)
    escalation_timeout_minutes = Column(Integer, nullable=False)
    escalation_levels = Column(Integer, nullable=False, default=1)
    supervisor_roles = Column(JSONType, default=list)
    auto_escalate = Column(Boolean, nullable=False, default=True)


class StaffDB(Base):
    __tablename__ = "staff"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False, index=True)
    callsign = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    contact_methods = Column(JSONType, default=list)
    availability_status = Column(String, nullable=False, default="available")


class EventStaffDB(Base):
    __tablename__ = "event_staff"
    __table_args__ = (
        UniqueConstraint("event_id", "staff_id", name="uq_event_staff"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String, nullable=False, index=True)
    staff_id = Column(String, nullable=False, index=True)


class EscalationEventDB(Base):
    """Append-only escalation audit trail"""
    __tablename__ = "incident_escalations"

    id = Column(String, primary_key=True, default=_uuid)
    incident_id = Column(String, nullable=False, index=True)
    escalation_level = Column(Integer, nullable=False)
    escalated_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow, index=True)
    escalated_by = Column(String, nullable=True)
    supervisor_notified = Column(Boolean, nullable=False, default=False)
    resolution_time = Column(Integer, nullable=True)  # minutes
    notes = Column(Text)


class NotificationDB(Base):
    """In-app notification records written by the persisted-record tier"""
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=_uuid)
    staff_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String, nullable=False, default="escalation")
    data = Column(JSONType, default=dict)
    read = Column(Boolean, default=False)
    created_at = Column(TIMESTAMP, default=datetime.utcnow)


class EmergencyContactDB(Base):
    __tablename__ = "emergency_contacts"

    id = Column(String, primary_key=True, default=_uuid)
    event_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    sms = Column(String, nullable=True)
    active = Column(Boolean, nullable=False, default=True)


class EmergencyLogDB(Base):
    """Append-only record of emergency failover activations"""
    __tablename__ = "emergency_logs"

    id = Column(String, primary_key=True, default=_uuid)
    incident_id = Column(String, nullable=False, index=True)
    event_id = Column(String, nullable=False, index=True)
    escalation_level = Column(Integer, nullable=False)
    emergency_type = Column(String, nullable=False)
    triggered_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)
    status = Column(String, nullable=False, default="active")
    notes = Column(Text)
