# ============================================================
# reporter.py — Escalation Auditor / Reporter
# ============================================================

import logging
from collections import defaultdict
from typing import List

from models import (
    EscalationEvent, EscalationNotificationResult, EscalationStats, EmergencyLog
)

logger = logging.getLogger(__name__)


class EscalationReporter:
    """
    Owns the escalation audit trail and the statistics built from it.

    Transition records are append-only; the only later write is the
    one-time backfill of ``resolution_time``.
    """

    def __init__(self, repo):
        self.repo = repo

    async def record_transition(self, event: EscalationEvent, session=None):
        """Append an escalation event, inside the caller's transaction if given"""
        await self.repo.add_escalation_event(event, session=session)
        logger.info(
            f"✅ Recorded escalation of incident {event.incident_id} "
            f"to level {event.escalation_level}"
        )

    async def record_resolution(self, escalation_id: str, resolution_minutes: int) -> bool:
        updated = await self.repo.set_resolution_time(escalation_id, resolution_minutes)
        if not updated:
            logger.warning(
                f"⚠️ Resolution time for escalation {escalation_id} not recorded "
                f"(missing or already set)"
            )
        return updated

    def record_notification_result(self, result: EscalationNotificationResult):
        for attempt in result.attempts:
            logger.info(
                f"Escalation notification attempt incident={result.incident_id} "
                f"level={result.escalation_level} method={attempt.method} "
                f"recipient={attempt.recipient} success={attempt.success} "
                f"skipped={attempt.skipped} error={attempt.error}"
            )

        if result.critical_failure:
            logger.critical(
                f"🚨 Critical notification failure for incident {result.incident_id}: "
                f"{result.tiers_attempted} tiers attempted, none succeeded"
            )
        elif not result.any_success:
            logger.error(
                f"❌ Escalation notification for incident {result.incident_id} "
                f"failed on {result.tiers_attempted} tiers"
            )

    async def get_history(self, incident_id: str) -> List[EscalationEvent]:
        """Newest first"""
        return await self.repo.get_escalation_history(incident_id)

    async def get_stats(self, event_id: str) -> EscalationStats:
        rows = await self.repo.list_escalations_for_event(event_id)

        by_level = defaultdict(int)
        by_type = defaultdict(int)
        response_times = []

        for event, incident_type in rows:
            by_level[event.escalation_level] += 1
            by_type[incident_type or "unknown"] += 1
            if event.resolution_time is not None:
                response_times.append(event.resolution_time)

        return EscalationStats(
            total_escalations=len(rows),
            average_response_time=(
                sum(response_times) / len(response_times) if response_times else 0.0
            ),
            escalation_by_level=dict(by_level),
            escalation_by_type=dict(by_type),
            emergency_activations=await self.repo.count_emergency_logs(event_id)
        )

    async def get_emergency_logs(self, event_id: str) -> List[EmergencyLog]:
        return await self.repo.list_emergency_logs(event_id)
