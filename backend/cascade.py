# ============================================================
# cascade.py — Fallback Cascade Dispatcher
# ============================================================

import asyncio
import logging
from typing import List, Optional

from channels import Channel
from clock import Clock
from models import (
    EscalationNotification, EscalationNotificationResult,
    NotificationAttempt, Supervisor
)

logger = logging.getLogger(__name__)

# Distinct failed tiers needed before a cascade counts as a critical failure
CRITICAL_FAILURE_TIER_THRESHOLD = 5


class CascadeDispatcher:
    """
    Delivers one escalation notification through the channel tiers in
    order, stopping at the first tier that succeeds.

    Tiers run sequentially. Fan-out tiers call every recipient
    concurrently. Every call is bounded by ``timeout_seconds`` so a hung
    channel cannot hold back the next tier.
    """

    def __init__(self, channels: List[Channel], clock: Clock, timeout_seconds: float = 5.0):
        self.channels = list(channels)
        self.clock = clock
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, notification: EscalationNotification) -> EscalationNotificationResult:
        attempts: List[NotificationAttempt] = []
        any_success = False

        for channel in self.channels:
            tier_attempts = await self._run_tier(channel, notification)
            attempts.extend(tier_attempts)

            if any(a.success for a in tier_attempts):
                any_success = True
                logger.info(
                    f"✅ Escalation for incident {notification.incident_id} "
                    f"delivered via {channel.method.value}"
                )
                break

            logger.warning(
                f"⚠️ Tier {channel.method.value} failed for incident "
                f"{notification.incident_id}, falling back"
            )

        result = EscalationNotificationResult(
            incident_id=notification.incident_id,
            escalation_level=notification.escalation_level,
            attempts=attempts,
            any_success=any_success,
            fallback_activated=len(attempts) > 1
        )
        result.critical_failure = (
            not any_success
            and result.tiers_attempted >= CRITICAL_FAILURE_TIER_THRESHOLD
        )
        return result

    async def _run_tier(
        self,
        channel: Channel,
        notification: EscalationNotification
    ) -> List[NotificationAttempt]:
        recipients = channel.recipients(notification)

        if channel.requires_recipients and not recipients:
            return [NotificationAttempt(
                method=channel.method,
                success=False,
                timestamp=self.clock.now(),
                error="no eligible recipients",
                skipped=True
            )]

        if channel.fan_out:
            return list(await asyncio.gather(*[
                self._attempt(channel, notification, [supervisor], supervisor.id)
                for supervisor in recipients
            ]))

        return [await self._attempt(channel, notification, recipients)]

    async def _attempt(
        self,
        channel: Channel,
        notification: EscalationNotification,
        recipients: List[Supervisor],
        recipient_id: Optional[str] = None
    ) -> NotificationAttempt:
        error = None
        try:
            success = bool(await asyncio.wait_for(
                channel.send(notification, recipients),
                timeout=self.timeout_seconds
            ))
            if not success:
                error = f"{channel.method.value} delivery failed"
        except asyncio.TimeoutError:
            success = False
            error = f"{channel.method.value} timed out after {self.timeout_seconds}s"
        except Exception as e:
            success = False
            error = str(e) or e.__class__.__name__
            logger.error(f"❌ {channel.method.value} channel raised: {error}")

        return NotificationAttempt(
            method=channel.method,
            success=success,
            timestamp=self.clock.now(),
            recipient=recipient_id,
            error=error
        )
