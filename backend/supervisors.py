# ============================================================
# supervisors.py — Supervisor Directory
# ============================================================

import logging
from typing import List

from models import Supervisor
from errors import EscalationPersistenceError

logger = logging.getLogger(__name__)


class SupervisorDirectory:
    """Currently-available staff for an event, filtered by role"""

    def __init__(self, repo):
        self.repo = repo

    async def list_supervisors(self, event_id: str, roles: List[str]) -> List[Supervisor]:
        try:
            supervisors = await self.repo.list_available_staff(event_id, roles)
        except EscalationPersistenceError as e:
            logger.error(f"❌ Supervisor lookup failed for event {event_id}: {e}")
            return []

        if not supervisors:
            logger.warning(f"⚠️ No available supervisors for event {event_id} with roles {roles}")

        return supervisors
