# ============================================================
# models.py — Escalation Engine Models
# ============================================================

from pydantic import BaseModel, Field
from typing import List, Optional, Dict
from datetime import datetime
from enum import Enum


# ─────────────────────────────────────────────
# Enums for Type Safety
# ─────────────────────────────────────────────

class Priority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class IncidentStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


# Only these statuses are scanned for due escalations
ESCALATABLE_STATUSES = [IncidentStatus.OPEN.value, IncidentStatus.IN_PROGRESS.value]


class NotificationMethod(str, Enum):
    PUSH = "push"
    PERSISTED_RECORD = "persisted_record"
    EMAIL = "email"
    SMS = "sms"
    AUDIO_ALERT = "audio_alert"
    VISUAL_ALERT = "visual_alert"
    EMERGENCY_BROADCAST = "emergency_broadcast"


class EscalationStatus(str, Enum):
    ESCALATED = "escalated"
    AT_CEILING = "at_ceiling"
    CONFLICT = "conflict"
    ALREADY_ESCALATED = "already_escalated"
    AUTO_ESCALATION_DISABLED = "auto_escalation_disabled"
    NOT_FOUND = "not_found"


class EmergencyLogStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"


# ─────────────────────────────────────────────
# Core Models
# ─────────────────────────────────────────────

class Incident(BaseModel):
    """Escalation view of an incident owned by the CRUD system"""
    id: str
    event_id: str
    incident_type: str
    priority: str
    status: str = IncidentStatus.OPEN.value
    description: Optional[str] = None
    escalation_level: int = 0
    escalated: bool = False
    escalate_at: Optional[datetime] = None
    escalation_notes: str = ""


class SLAConfig(BaseModel):
    """Resolved escalation rule for an (incident type, priority) pair"""
    incident_type: str
    priority_level: str
    timeout_minutes: int
    max_levels: int
    supervisor_roles: List[str] = Field(default_factory=list)
    auto_escalate: bool = True
    is_default: bool = False


class Supervisor(BaseModel):
    id: str
    name: str
    role: str
    callsign: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    contact_methods: List[str] = Field(default_factory=list)


class EscalationEvent(BaseModel):
    """Immutable audit record, one per level transition"""
    id: str
    incident_id: str
    escalation_level: int
    escalated_at: datetime
    escalated_by: Optional[str] = None
    supervisor_notified: bool = False
    resolution_time: Optional[int] = None  # minutes
    notes: Optional[str] = None


class EscalationNotification(BaseModel):
    """Everything a channel needs to shape its payload"""
    incident_id: str
    event_id: str
    escalation_level: int
    incident_type: str
    priority: str
    description: Optional[str] = None
    supervisors: List[Supervisor] = Field(default_factory=list)
    escalation_time: datetime


class NotificationAttempt(BaseModel):
    method: NotificationMethod
    success: bool
    timestamp: datetime
    recipient: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False

    class Config:
        use_enum_values = True


class EscalationNotificationResult(BaseModel):
    incident_id: str
    escalation_level: int
    attempts: List[NotificationAttempt] = Field(default_factory=list)
    any_success: bool = False
    critical_failure: bool = False
    fallback_activated: bool = False

    @property
    def tiers_attempted(self) -> int:
        return len({a.method for a in self.attempts})


class EmergencyContact(BaseModel):
    id: str
    event_id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    sms: Optional[str] = None

    def address_for(self, method: str) -> Optional[str]:
        return getattr(self, method, None)


class EmergencyLog(BaseModel):
    id: str
    incident_id: str
    event_id: str
    escalation_level: int
    emergency_type: str = "notification_failure"
    triggered_at: datetime
    status: EmergencyLogStatus = EmergencyLogStatus.ACTIVE
    notes: Optional[str] = None

    class Config:
        use_enum_values = True


class ContactOutcome(BaseModel):
    contact_id: str
    methods_tried: List[str] = Field(default_factory=list)
    reached_via: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.reached_via is not None


class ProtocolOutcome(BaseModel):
    protocol: str
    success: bool
    error: Optional[str] = None


class EmergencyFailoverReport(BaseModel):
    incident_id: str
    event_id: str
    escalation_level: int
    log_id: Optional[str] = None
    contacts: List[ContactOutcome] = Field(default_factory=list)
    protocols: List[ProtocolOutcome] = Field(default_factory=list)

    @property
    def anything_succeeded(self) -> bool:
        return any(c.success for c in self.contacts) or any(p.success for p in self.protocols)


class EscalationOutcome(BaseModel):
    """What a single escalate() call did"""
    incident_id: str
    status: EscalationStatus
    previous_level: Optional[int] = None
    new_level: Optional[int] = None
    supervisors_resolved: int = 0
    notification: Optional[EscalationNotificationResult] = None
    emergency: Optional[EmergencyFailoverReport] = None

    class Config:
        use_enum_values = True

    @property
    def escalated(self) -> bool:
        return self.status == EscalationStatus.ESCALATED.value


class EscalationStats(BaseModel):
    total_escalations: int = Field(0, alias="totalEscalations")
    average_response_time: float = Field(0.0, alias="averageResponseTime")
    escalation_by_level: Dict[int, int] = Field(default_factory=dict, alias="escalationByLevel")
    escalation_by_type: Dict[str, int] = Field(default_factory=dict, alias="escalationByType")
    emergency_activations: int = Field(0, alias="emergencyActivations")

    class Config:
        populate_by_name = True


# ─────────────────────────────────────────────
# API Request/Response Models
# ─────────────────────────────────────────────

class EscalationCheckRequest(BaseModel):
    event_id: Optional[str] = Field(None, alias="eventId")
    dry_run: bool = Field(False, alias="dryRun")

    class Config:
        populate_by_name = True


class EscalationCheckResponse(BaseModel):
    escalated_incidents: int = Field(0, alias="escalatedIncidents")
    escalated_incident_ids: List[str] = Field(default_factory=list, alias="escalatedIncidentIds")
    stats: Optional[EscalationStats] = None

    class Config:
        populate_by_name = True


class PauseRequest(BaseModel):
    paused_by: str


class ResumeRequest(BaseModel):
    resumed_by: str
    extra_minutes: Optional[int] = Field(None, ge=0)


class ManualEscalationRequest(BaseModel):
    escalated_by: str
    notes: Optional[str] = Field(None, max_length=500)


class ResolutionRequest(BaseModel):
    resolution_minutes: int = Field(..., ge=0)


class TimerResponse(BaseModel):
    incident_id: str
    escalate_at: Optional[datetime] = None
    escalated: bool
    escalation_level: int
