# ============================================================
# errors.py — Escalation Engine Error Taxonomy
# ============================================================
#
# Configuration gaps, empty supervisor lists, CAS conflicts and single
# channel failures are NOT errors; they are ordinary outcomes reported
# through models.EscalationOutcome. Only the conditions below raise.


class EscalationError(Exception):
    """Base class for escalation engine errors"""


class EscalationPersistenceError(EscalationError):
    """
    Engine state could not be read or written.

    The incident's escalation attempt for the current cycle is abandoned;
    the incident stays due and the next scan retries it.
    """

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")


class IncidentNotFoundError(EscalationError):
    def __init__(self, incident_id: str):
        self.incident_id = incident_id
        super().__init__(f"Incident {incident_id} not found")
