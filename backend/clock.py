# ============================================================
# clock.py — Injectable time source
# ============================================================

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional


class Clock(ABC):

    @abstractmethod
    def now(self) -> datetime:
        """Current naive-UTC time"""


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.utcnow()


class FixedClock(Clock):
    """Deterministic clock for tests and replays"""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, 12, 0, 0)

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime):
        self._now = value

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now
