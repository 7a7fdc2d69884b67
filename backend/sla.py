# ============================================================
# sla.py — SLA Resolver
# ============================================================

import logging
from datetime import datetime, timedelta
from typing import Optional

from models import SLAConfig, Priority
from errors import EscalationPersistenceError

logger = logging.getLogger(__name__)

# Minutes before an unattended incident escalates when no rule exists
DEFAULT_TIMEOUT_MINUTES = {
    Priority.URGENT.value: 2,
    Priority.HIGH.value: 5,
    Priority.MEDIUM.value: 15,
    Priority.LOW.value: 30,
}
FALLBACK_TIMEOUT_MINUTES = 15
DEFAULT_MAX_LEVELS = 1
DEFAULT_SUPERVISOR_ROLES = ["supervisor", "manager", "admin"]


def compute_next_escalation_time(
    now: datetime,
    timeout_minutes: int,
    extra_minutes: Optional[int] = None
) -> datetime:
    return now + timedelta(minutes=timeout_minutes + (extra_minutes or 0))


def default_sla(incident_type: str, priority: str) -> SLAConfig:
    return SLAConfig(
        incident_type=incident_type,
        priority_level=priority,
        timeout_minutes=DEFAULT_TIMEOUT_MINUTES.get(priority, FALLBACK_TIMEOUT_MINUTES),
        max_levels=DEFAULT_MAX_LEVELS,
        supervisor_roles=list(DEFAULT_SUPERVISOR_ROLES),
        auto_escalate=True,
        is_default=True
    )


class SLAResolver:
    """
    Maps (incident type, priority) to an escalation rule.

    Never raises: a missing rule, or a rule table that cannot be read,
    yields the built-in defaults.
    """

    def __init__(self, repo):
        self.repo = repo

    async def resolve(self, incident_type: str, priority: str) -> SLAConfig:
        try:
            rule = await self.repo.get_sla_rule(incident_type, priority)
        except EscalationPersistenceError as e:
            logger.warning(
                f"⚠️ SLA rule lookup failed for {incident_type}/{priority}, using defaults: {e}"
            )
            rule = None

        if rule is None:
            return default_sla(incident_type, priority)

        if not rule.supervisor_roles:
            rule.supervisor_roles = list(DEFAULT_SUPERVISOR_ROLES)

        return rule
