# ============================================================
# guards.py — Manual escalation guards
# ============================================================

import asyncio
import html
import re
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

MAX_MANUAL_ESCALATIONS_PER_WINDOW = 5
RATE_LIMIT_WINDOW = timedelta(hours=1)

_TAG_PATTERN = re.compile(r"<[^>]*>")


def sanitize_comment(raw: Optional[str]) -> Optional[str]:
    """Strip markup and escape what is left; blank comments become None"""
    if raw is None:
        return None
    cleaned = html.escape(_TAG_PATTERN.sub("", raw), quote=True).strip()
    return cleaned or None


class EscalationRateLimiter:
    """
    Sliding-window limit on manual escalations, keyed by incident.

    Every call counts, accepted or not by the engine afterwards.
    """

    def __init__(
        self,
        max_per_window: int = MAX_MANUAL_ESCALATIONS_PER_WINDOW,
        window: timedelta = RATE_LIMIT_WINDOW
    ):
        self._max_per_window = max_per_window
        self._window = window
        self._calls: Dict[str, List[datetime]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def acquire(self, incident_id: str, now: datetime) -> bool:
        async with self._lock:
            cutoff = now - self._window
            recent = [t for t in self._calls[incident_id] if t > cutoff]

            if len(recent) >= self._max_per_window:
                self._calls[incident_id] = recent
                return False

            recent.append(now)
            self._calls[incident_id] = recent
            return True
