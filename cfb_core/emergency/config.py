"""
Engine Configuration

Tunables for the emergency engine, read from ``EMERGENCY_*`` environment
variables.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List

from cfb_core.notifications.base import (
    DEFAULT_CHANNEL_ORDER,
    GatewayConfig,
    NotificationChannel,
)


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_channels(name: str, default: List[NotificationChannel]) -> List[NotificationChannel]:
    value = os.environ.get(name)
    if not value:
        return list(default)
    return [NotificationChannel(part.strip().lower()) for part in value.split(",") if part.strip()]


@dataclass
class EngineConfig:
    """Emergency engine configuration."""

    # Retry queue
    retry_max_retries: int = 3
    retry_base_delay_seconds: float = 5.0
    retry_exponential_backoff: bool = True
    retry_tick_seconds: float = 30.0

    # Dispatch
    max_concurrent_deliveries: int = 50
    channel_order: List[NotificationChannel] = field(
        default_factory=lambda: list(DEFAULT_CHANNEL_ORDER)
    )

    # Escalation
    critical_check_delay_seconds: float = 900.0
    urgent_check_delay_seconds: float = 1800.0
    escalation_priority_step: int = 25
    radius_expansion_factor: float = 1.5
    decline_fanout_threshold: int = 10

    # Lifecycle
    campaign_ttl_hours: float = 24.0
    slot_lead_minutes: int = 60
    slot_interval_minutes: int = 30

    # HTTP gateway
    gateway_base_url: str = "http://localhost:5000"
    gateway_api_key: str = ""
    gateway_timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create config from environment variables."""
        return cls(
            retry_max_retries=int(os.environ.get("EMERGENCY_RETRY_MAX_RETRIES", "3")),
            retry_base_delay_seconds=float(os.environ.get("EMERGENCY_RETRY_BASE_DELAY_SECONDS", "5")),
            retry_exponential_backoff=_env_bool("EMERGENCY_RETRY_EXPONENTIAL_BACKOFF", True),
            retry_tick_seconds=float(os.environ.get("EMERGENCY_RETRY_TICK_SECONDS", "30")),
            max_concurrent_deliveries=int(os.environ.get("EMERGENCY_MAX_CONCURRENT_DELIVERIES", "50")),
            channel_order=_env_channels("EMERGENCY_CHANNEL_ORDER", DEFAULT_CHANNEL_ORDER),
            critical_check_delay_seconds=float(os.environ.get("EMERGENCY_CRITICAL_CHECK_DELAY_SECONDS", "900")),
            urgent_check_delay_seconds=float(os.environ.get("EMERGENCY_URGENT_CHECK_DELAY_SECONDS", "1800")),
            escalation_priority_step=int(os.environ.get("EMERGENCY_ESCALATION_PRIORITY_STEP", "25")),
            radius_expansion_factor=float(os.environ.get("EMERGENCY_RADIUS_EXPANSION_FACTOR", "1.5")),
            decline_fanout_threshold=int(os.environ.get("EMERGENCY_DECLINE_FANOUT_THRESHOLD", "10")),
            campaign_ttl_hours=float(os.environ.get("EMERGENCY_CAMPAIGN_TTL_HOURS", "24")),
            slot_lead_minutes=int(os.environ.get("EMERGENCY_SLOT_LEAD_MINUTES", "60")),
            slot_interval_minutes=int(os.environ.get("EMERGENCY_SLOT_INTERVAL_MINUTES", "30")),
            gateway_base_url=os.environ.get("EMERGENCY_GATEWAY_BASE_URL", "http://localhost:5000"),
            gateway_api_key=os.environ.get("EMERGENCY_GATEWAY_API_KEY", ""),
            gateway_timeout_seconds=float(os.environ.get("EMERGENCY_GATEWAY_TIMEOUT_SECONDS", "10")),
        )

    @property
    def gateway(self) -> GatewayConfig:
        return GatewayConfig(
            base_url=self.gateway_base_url,
            api_key=self.gateway_api_key,
            timeout_seconds=self.gateway_timeout_seconds,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (excludes sensitive data)."""
        return {
            "retry_max_retries": self.retry_max_retries,
            "retry_base_delay_seconds": self.retry_base_delay_seconds,
            "retry_exponential_backoff": self.retry_exponential_backoff,
            "retry_tick_seconds": self.retry_tick_seconds,
            "max_concurrent_deliveries": self.max_concurrent_deliveries,
            "channel_order": [c.value for c in self.channel_order],
            "critical_check_delay_seconds": self.critical_check_delay_seconds,
            "urgent_check_delay_seconds": self.urgent_check_delay_seconds,
            "escalation_priority_step": self.escalation_priority_step,
            "radius_expansion_factor": self.radius_expansion_factor,
            "decline_fanout_threshold": self.decline_fanout_threshold,
            "campaign_ttl_hours": self.campaign_ttl_hours,
            "slot_lead_minutes": self.slot_lead_minutes,
            "slot_interval_minutes": self.slot_interval_minutes,
            "gateway_base_url": self.gateway_base_url,
            "gateway_timeout_seconds": self.gateway_timeout_seconds,
        }


__all__ = ["EngineConfig"]
