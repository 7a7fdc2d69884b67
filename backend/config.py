# ============================================================
# config.py — Environment-driven settings
# ============================================================

import os
import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_TARGETS = [
    "command_center",
    "supervisor_screens",
    "emergency_displays",
]

DEFAULT_EMERGENCY_PROTOCOLS = [
    "activate_emergency_response_team",
    "notify_emergency_services",
    "activate_backup_communication_systems",
    "deploy_emergency_staff",
]


def _split_list(raw: Optional[str], default: List[str]) -> List[str]:
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseModel):
    """Runtime configuration for the escalation service"""
    database_url: str
    api_token: Optional[str] = None

    notification_gateway_url: str = "http://localhost:3000"
    notification_gateway_token: Optional[str] = None
    channel_timeout_seconds: float = 5.0

    visual_display_targets: List[str] = Field(
        default_factory=lambda: list(DEFAULT_DISPLAY_TARGETS)
    )
    emergency_protocols: List[str] = Field(
        default_factory=lambda: list(DEFAULT_EMERGENCY_PROTOCOLS)
    )

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL not configured")

        api_token = os.getenv("ESCALATION_API_TOKEN")
        if not api_token:
            logger.warning("⚠️ ESCALATION_API_TOKEN is not set. All escalation routes will reject callers.")

        return cls(
            database_url=database_url,
            api_token=api_token,
            notification_gateway_url=os.getenv("NOTIFICATION_GATEWAY_URL", "http://localhost:3000"),
            notification_gateway_token=os.getenv("NOTIFICATION_GATEWAY_TOKEN"),
            channel_timeout_seconds=float(os.getenv("CHANNEL_TIMEOUT_SECONDS", "5")),
            visual_display_targets=_split_list(
                os.getenv("VISUAL_DISPLAY_TARGETS"), DEFAULT_DISPLAY_TARGETS
            ),
            emergency_protocols=_split_list(
                os.getenv("EMERGENCY_PROTOCOLS"), DEFAULT_EMERGENCY_PROTOCOLS
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
