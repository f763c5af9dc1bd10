"""
Notifications Base Types Module

This module defines core types for multi-channel emergency delivery
including push, WhatsApp, SMS and email.
"""

import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


# =============================================================================
# Enums
# =============================================================================


class NotificationChannel(str, Enum):
    """Notification delivery channels."""

    PUSH = "push"
    WHATSAPP = "whatsapp"  # Chat-app message
    SMS = "sms"
    EMAIL = "email"


DEFAULT_CHANNEL_ORDER: List[NotificationChannel] = [
    NotificationChannel.PUSH,
    NotificationChannel.WHATSAPP,
    NotificationChannel.SMS,
    NotificationChannel.EMAIL,
]


class DeliveryStatus(str, Enum):
    """Outcome of a single channel try."""

    SENT = "sent"
    FAILED = "failed"


class NotificationPriority(str, Enum):
    """Priority levels for notifications."""

    CRITICAL = "critical"  # Chat-app first
    URGENT = "urgent"
    NORMAL = "normal"
    LOW = "low"


# =============================================================================
# Recipient Types
# =============================================================================


@dataclass
class NotificationRecipient:
    """A recipient of an emergency notification."""

    id: str

    # Contact information
    name: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None
    push_token: Optional[str] = None

    # Preferences
    preferred_channel: Optional[NotificationChannel] = None
    disabled_channels: List[NotificationChannel] = field(default_factory=list)

    # Matching details supplied by the candidate finder
    compatibility_score: float = 0.0
    distance_km: Optional[float] = None

    metadata: Dict[str, Any] = field(default_factory=dict)

    def destination_for(self, channel: NotificationChannel) -> Optional[str]:
        """Get the address used for a channel, if the recipient has one."""
        if channel == NotificationChannel.PUSH:
            return self.push_token
        if channel in (NotificationChannel.WHATSAPP, NotificationChannel.SMS):
            return self.phone
        if channel == NotificationChannel.EMAIL:
            return self.email
        return None

    def can_receive(self, channel: NotificationChannel) -> bool:
        """Check if recipient can receive on channel."""
        if channel in self.disabled_channels:
            return False
        return bool(self.destination_for(channel))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "push_token": self.push_token,
            "preferred_channel": self.preferred_channel.value if self.preferred_channel else None,
            "disabled_channels": [c.value for c in self.disabled_channels],
            "compatibility_score": self.compatibility_score,
            "distance_km": self.distance_km,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationRecipient":
        """Create from dictionary."""
        contact = data.get("contact_info") or {}
        preferred = data.get("preferred_channel") or contact.get("preferred_channel")
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            phone=data.get("phone") or contact.get("phone"),
            email=data.get("email") or contact.get("email"),
            push_token=data.get("push_token") or contact.get("push_token"),
            preferred_channel=NotificationChannel(preferred) if preferred else None,
            disabled_channels=[
                NotificationChannel(c)
                for c in data.get("disabled_channels") or contact.get("disabled_channels") or []
            ],
            compatibility_score=float(data.get("compatibility_score", 0.0)),
            distance_km=data.get("distance_km", data.get("distance")),
            metadata=data.get("metadata", {}),
        )


# =============================================================================
# Payload Types
# =============================================================================


@dataclass
class NotificationAction:
    """An action button attached to a push notification."""

    action: str
    title: str

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action, "title": self.title}


@dataclass
class NotificationPayload:
    """Channel-independent notification content."""

    title: str
    body: str
    campaign_id: Optional[str] = None
    priority: NotificationPriority = NotificationPriority.NORMAL

    # Channel-specific renderings
    sms_text: Optional[str] = None
    email_subject: Optional[str] = None

    actions: List[NotificationAction] = field(default_factory=list)
    require_interaction: bool = False
    data: Dict[str, Any] = field(default_factory=dict)

    def text_for(self, channel: NotificationChannel) -> str:
        """Get the plain-text body for a channel."""
        if channel in (NotificationChannel.SMS, NotificationChannel.WHATSAPP) and self.sms_text:
            return self.sms_text
        return self.body

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "title": self.title,
            "body": self.body,
            "campaign_id": self.campaign_id,
            "priority": self.priority.value,
            "sms_text": self.sms_text,
            "email_subject": self.email_subject,
            "actions": [a.to_dict() for a in self.actions],
            "require_interaction": self.require_interaction,
            "data": self.data,
        }


# =============================================================================
# Delivery Types
# =============================================================================


@dataclass
class SendResult:
    """Result returned by a channel adapter."""

    success: bool
    message_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def failed(cls, error_code: str, error_message: str = "") -> "SendResult":
        return cls(success=False, error_code=error_code, error_message=error_message)


@dataclass(frozen=True)
class DeliveryAttempt:
    """Result of one channel try for one recipient. Read-only once created."""

    recipient_id: str
    channel: NotificationChannel
    attempt_number: int
    status: DeliveryStatus
    timestamp: datetime
    campaign_id: Optional[str] = None
    message_id: Optional[str] = None
    failure_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "recipient_id": self.recipient_id,
            "channel": self.channel.value,
            "attempt_number": self.attempt_number,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "campaign_id": self.campaign_id,
            "message_id": self.message_id,
            "failure_reason": self.failure_reason,
        }


@dataclass
class DispatchOutcome:
    """Result of one dispatch call across an ordered channel list."""

    recipient_id: str
    success: bool
    campaign_id: Optional[str] = None
    channel: Optional[NotificationChannel] = None
    message_id: Optional[str] = None
    attempts: List[DeliveryAttempt] = field(default_factory=list)
    error: Optional[str] = None
    queued_for_retry: bool = False

    @property
    def channels_attempted(self) -> List[NotificationChannel]:
        return [a.channel for a in self.attempts]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "recipient_id": self.recipient_id,
            "campaign_id": self.campaign_id,
            "success": self.success,
            "channel": self.channel.value if self.channel else None,
            "message_id": self.message_id,
            "channels_attempted": [c.value for c in self.channels_attempted],
            "attempts": [a.to_dict() for a in self.attempts],
            "error": self.error,
            "queued_for_retry": self.queued_for_retry,
        }


@dataclass
class RetryTask:
    """A queued redelivery for a recipient whose channels all failed."""

    campaign_id: Optional[str]
    recipient: NotificationRecipient
    payload: NotificationPayload
    channels: List[NotificationChannel]
    next_eligible_at: datetime
    attempts: int = 0
    id: str = ""
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_error: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            self.id = f"retry_{uuid.uuid4().hex[:16]}"


# =============================================================================
# Provider Configuration
# =============================================================================


@dataclass
class GatewayConfig:
    """Configuration for the HTTP notification gateway and platform API."""

    base_url: str = "http://localhost:5000"
    api_key: str = ""
    timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """Create config from environment variables."""
        return cls(
            base_url=os.environ.get("EMERGENCY_GATEWAY_BASE_URL", "http://localhost:5000"),
            api_key=os.environ.get("EMERGENCY_GATEWAY_API_KEY", ""),
            timeout_seconds=float(os.environ.get("EMERGENCY_GATEWAY_TIMEOUT_SECONDS", "10")),
        )

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (excludes sensitive data)."""
        return {
            "base_url": self.base_url,
            "timeout_seconds": self.timeout_seconds,
        }


# =============================================================================
# Exceptions
# =============================================================================


class NotificationError(Exception):
    """Base exception for notification errors."""
    pass


class DeliveryError(NotificationError):
    """Error delivering a notification on one channel."""

    def __init__(self, message: str, channel: NotificationChannel, error_code: Optional[str] = None):
        super().__init__(message)
        self.channel = channel
        self.error_code = error_code


class RetryExhaustedError(NotificationError):
    """Delivery permanently failed after the maximum number of retries."""

    def __init__(self, message: str, campaign_id: Optional[str], recipient_id: str, attempts: int):
        super().__init__(message)
        self.campaign_id = campaign_id
        self.recipient_id = recipient_id
        self.attempts = attempts


# =============================================================================
# Helpers
# =============================================================================


def mask_destination(value: Optional[str]) -> str:
    """Mask a phone number, email address or token for logging."""
    if not value or len(value) < 4:
        return "****"
    return value[:2] + "*" * (len(value) - 4) + value[-2:]


__all__ = [
    # Enums
    "NotificationChannel",
    "DeliveryStatus",
    "NotificationPriority",
    "DEFAULT_CHANNEL_ORDER",
    # Types
    "NotificationRecipient",
    "NotificationAction",
    "NotificationPayload",
    "SendResult",
    "DeliveryAttempt",
    "DispatchOutcome",
    "RetryTask",
    # Provider config
    "GatewayConfig",
    # Exceptions
    "NotificationError",
    "DeliveryError",
    "RetryExhaustedError",
    # Helpers
    "mask_destination",
]
