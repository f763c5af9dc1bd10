"""
Emergency Base Types Module

This module defines core types for emergency blood-request campaigns:
the validated request, the campaign record owned by the coordinator, its
read-only view, responses, and the emergency exception hierarchy.
"""

import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Set, Tuple

from pydantic import BaseModel, Field, field_validator

from cfb_core.notifications.base import DeliveryAttempt, NotificationRecipient


# =============================================================================
# Enums
# =============================================================================


BLOOD_TYPES = ("A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-")


class UrgencyTier(str, Enum):
    """Urgency of a blood request."""

    CRITICAL = "critical"
    URGENT = "urgent"
    NORMAL = "normal"
    SCHEDULED = "scheduled"


class CampaignStatus(str, Enum):
    """State machine for campaign lifecycle."""

    ACTIVE = "active"
    ESCALATED = "escalated"  # Transient while search is being widened
    COORDINATING = "coordinating"
    RESOLVED = "resolved"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (CampaignStatus.RESOLVED, CampaignStatus.EXPIRED)


CAMPAIGN_TRANSITIONS: Dict[CampaignStatus, Set[CampaignStatus]] = {
    CampaignStatus.ACTIVE: {
        CampaignStatus.ESCALATED,
        CampaignStatus.COORDINATING,
        CampaignStatus.RESOLVED,
        CampaignStatus.EXPIRED,
    },
    CampaignStatus.ESCALATED: {
        CampaignStatus.ACTIVE,
        CampaignStatus.RESOLVED,
        CampaignStatus.EXPIRED,
    },
    CampaignStatus.COORDINATING: {
        CampaignStatus.RESOLVED,
        CampaignStatus.EXPIRED,
    },
    CampaignStatus.RESOLVED: set(),
    CampaignStatus.EXPIRED: set(),
}


class ResponseDecision(str, Enum):
    """A recipient's decision."""

    ACCEPT = "accept"
    DECLINE = "decline"


class CloseReason(str, Enum):
    """Why a campaign was closed."""

    FULFILLED = "fulfilled"
    DEADLINE_PASSED = "deadline_passed"
    CANCELLED = "cancelled"

    @property
    def target_status(self) -> CampaignStatus:
        if self == CloseReason.FULFILLED:
            return CampaignStatus.RESOLVED
        return CampaignStatus.EXPIRED


# =============================================================================
# Request Models
# =============================================================================


class Facility(BaseModel):
    """Facility where the blood is needed."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)

    @property
    def location(self) -> Optional[Tuple[float, float]]:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)


class PatientInfo(BaseModel):
    """Optional patient details. Only age and condition are kept."""

    age: Optional[int] = Field(default=None, ge=0, le=150)
    condition: Optional[str] = None


class BloodRequest(BaseModel):
    """An urgent blood request entering the engine."""

    blood_type: str
    units_needed: float = Field(..., ge=1)
    facility: Facility
    urgency: UrgencyTier = UrgencyTier.NORMAL
    patient: Optional[PatientInfo] = None
    needed_by: Optional[datetime] = None
    special_instructions: Optional[str] = None
    known_recipients: List[NotificationRecipient] = Field(default_factory=list)

    @field_validator("blood_type")
    @classmethod
    def validate_blood_type(cls, v: str) -> str:
        normalized = v.strip().upper()
        if normalized not in BLOOD_TYPES:
            raise ValueError(f"blood_type must be one of {', '.join(BLOOD_TYPES)}")
        return normalized

    @field_validator("needed_by")
    @classmethod
    def normalize_needed_by(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Engine clocks are naive UTC
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

    @property
    def recipients_needed(self) -> int:
        """Units rounded up to a whole number of recipients."""
        return math.ceil(self.units_needed)


# =============================================================================
# Campaign Records
# =============================================================================


@dataclass
class Response:
    """A recipient's reply to a campaign."""

    recipient_id: str
    decision: ResponseDecision
    timestamp: datetime
    latency_seconds: float
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    active: bool = True  # False once superseded

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient_id": self.recipient_id,
            "decision": self.decision.value,
            "timestamp": self.timestamp.isoformat(),
            "latency_seconds": self.latency_seconds,
            "reason": self.reason,
            "metadata": self.metadata,
            "active": self.active,
        }


@dataclass
class SelectedRecipient:
    """A recipient chosen to fulfil the request, with an assigned slot."""

    recipient_id: str
    latency_seconds: float
    selected_at: datetime
    slot_start: Optional[datetime] = None
    slot_end: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient_id": self.recipient_id,
            "latency_seconds": self.latency_seconds,
            "selected_at": self.selected_at.isoformat(),
            "slot_start": self.slot_start.isoformat() if self.slot_start else None,
            "slot_end": self.slot_end.isoformat() if self.slot_end else None,
        }


@dataclass
class Campaign:
    """Mutable campaign record. Owned by the coordinator."""

    id: str
    request: BloodRequest
    created_at: datetime
    priority_score: int
    search_radius_km: float
    expires_at: datetime
    status: CampaignStatus = CampaignStatus.ACTIVE

    responses: List[Response] = field(default_factory=list)
    accepted_recipient_ids: List[str] = field(default_factory=list)
    selected_recipients: List[SelectedRecipient] = field(default_factory=list)
    delivery_attempts: List[DeliveryAttempt] = field(default_factory=list)

    # Everyone we have tried to reach, by id
    recipients: Dict[str, NotificationRecipient] = field(default_factory=dict)
    permanent_failures: List[str] = field(default_factory=list)

    average_response_latency_seconds: float = 0.0
    escalation_count: int = 0
    facility_contacts: int = 0

    coordinated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    close_reason: Optional[CloseReason] = None

    @classmethod
    def new_id(cls) -> str:
        return f"cmp_{uuid.uuid4().hex[:16]}"

    @property
    def recipients_needed(self) -> int:
        return self.request.recipients_needed

    def active_responses(self) -> List[Response]:
        return [r for r in self.responses if r.active]

    def active_response_for(self, recipient_id: str) -> Optional[Response]:
        for response in reversed(self.responses):
            if response.recipient_id == recipient_id and response.active:
                return response
        return None

    def can_transition(self, status: CampaignStatus) -> bool:
        return status in CAMPAIGN_TRANSITIONS[self.status]

    def transition(self, status: CampaignStatus) -> CampaignStatus:
        """
        Move to a new status. Returns the previous one.

        Raises:
            InvalidTransitionError: if the table does not allow the move
        """
        if not self.can_transition(status):
            raise InvalidTransitionError(self.id, self.status, status)
        previous, self.status = self.status, status
        return previous

    def to_view(self) -> "CampaignView":
        """Take a read-only snapshot."""
        return CampaignView(
            id=self.id,
            created_at=self.created_at,
            blood_type=self.request.blood_type,
            units_needed=self.request.units_needed,
            urgency=self.request.urgency,
            facility=self.request.facility.model_copy(),
            patient=self.request.patient.model_copy() if self.request.patient else None,
            needed_by=self.request.needed_by,
            special_instructions=self.request.special_instructions,
            priority_score=self.priority_score,
            search_radius_km=self.search_radius_km,
            expires_at=self.expires_at,
            status=self.status,
            responses=tuple(replace(r, metadata=dict(r.metadata)) for r in self.responses),
            accepted_recipient_ids=tuple(self.accepted_recipient_ids),
            selected_recipients=tuple(replace(s) for s in self.selected_recipients),
            delivery_attempts=tuple(self.delivery_attempts),
            notified_recipient_ids=frozenset(self.recipients.keys()),
            permanent_failures=tuple(self.permanent_failures),
            average_response_latency_seconds=self.average_response_latency_seconds,
            escalation_count=self.escalation_count,
            facility_contacts=self.facility_contacts,
            coordinated_at=self.coordinated_at,
            closed_at=self.closed_at,
            close_reason=self.close_reason,
        )


@dataclass(frozen=True)
class CampaignView:
    """Read-only snapshot of a campaign."""

    id: str
    created_at: datetime
    blood_type: str
    units_needed: float
    urgency: UrgencyTier
    facility: Facility
    patient: Optional[PatientInfo]
    needed_by: Optional[datetime]
    special_instructions: Optional[str]
    priority_score: int
    search_radius_km: float
    expires_at: datetime
    status: CampaignStatus
    responses: Tuple[Response, ...]
    accepted_recipient_ids: Tuple[str, ...]
    selected_recipients: Tuple[SelectedRecipient, ...]
    delivery_attempts: Tuple[DeliveryAttempt, ...]
    notified_recipient_ids: FrozenSet[str]
    permanent_failures: Tuple[str, ...]
    average_response_latency_seconds: float
    escalation_count: int
    facility_contacts: int
    coordinated_at: Optional[datetime]
    closed_at: Optional[datetime]
    close_reason: Optional[CloseReason]

    @property
    def selected_recipient_ids(self) -> FrozenSet[str]:
        return frozenset(s.recipient_id for s in self.selected_recipients)

    @property
    def active_responses(self) -> Tuple[Response, ...]:
        return tuple(r for r in self.responses if r.active)

    @property
    def accepted_count(self) -> int:
        return len(self.accepted_recipient_ids)

    @property
    def recipients_needed(self) -> int:
        return math.ceil(self.units_needed)

    @property
    def is_closed(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "blood_type": self.blood_type,
            "units_needed": self.units_needed,
            "urgency": self.urgency.value,
            "facility": self.facility.model_dump(),
            "patient": self.patient.model_dump() if self.patient else None,
            "needed_by": self.needed_by.isoformat() if self.needed_by else None,
            "special_instructions": self.special_instructions,
            "priority_score": self.priority_score,
            "search_radius_km": self.search_radius_km,
            "expires_at": self.expires_at.isoformat(),
            "status": self.status.value,
            "responses": [r.to_dict() for r in self.responses],
            "accepted_recipient_ids": list(self.accepted_recipient_ids),
            "selected_recipients": [s.to_dict() for s in self.selected_recipients],
            "delivery_attempts": [a.to_dict() for a in self.delivery_attempts],
            "notified_recipient_ids": sorted(self.notified_recipient_ids),
            "permanent_failures": list(self.permanent_failures),
            "average_response_latency_seconds": self.average_response_latency_seconds,
            "escalation_count": self.escalation_count,
            "facility_contacts": self.facility_contacts,
            "coordinated_at": self.coordinated_at.isoformat() if self.coordinated_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "close_reason": self.close_reason.value if self.close_reason else None,
        }


# =============================================================================
# Exceptions
# =============================================================================


class EmergencyError(Exception):
    """Base exception for emergency engine errors."""
    pass


class InvalidRequestError(EmergencyError):
    """Request rejected before any side effect."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class DuplicateResponseError(InvalidRequestError):
    """Recipient already has an active decision on the campaign."""

    def __init__(self, campaign_id: str, recipient_id: str):
        super().__init__(
            f"Recipient {recipient_id} already responded to campaign {campaign_id}"
        )
        self.campaign_id = campaign_id
        self.recipient_id = recipient_id


class CampaignNotFoundError(EmergencyError):
    """Campaign not found."""

    def __init__(self, campaign_id: str):
        super().__init__(f"Campaign {campaign_id} not found")
        self.campaign_id = campaign_id


class CampaignClosedError(EmergencyError):
    """Mutation attempted on a campaign that no longer accepts it."""

    def __init__(self, campaign_id: str, status: CampaignStatus):
        super().__init__(f"Campaign {campaign_id} is {status.value}")
        self.campaign_id = campaign_id
        self.status = status


class InvalidTransitionError(EmergencyError):
    """Status change not allowed from the current status."""

    def __init__(self, campaign_id: str, current: CampaignStatus, target: CampaignStatus):
        super().__init__(
            f"Campaign {campaign_id} cannot move from {current.value} to {target.value}"
        )
        self.campaign_id = campaign_id
        self.current = current
        self.target = target


class CandidateLookupError(EmergencyError):
    """Candidate finder unavailable."""
    pass


__all__ = [
    # Enums
    "BLOOD_TYPES",
    "UrgencyTier",
    "CampaignStatus",
    "CAMPAIGN_TRANSITIONS",
    "ResponseDecision",
    "CloseReason",
    # Request models
    "Facility",
    "PatientInfo",
    "BloodRequest",
    # Records
    "Response",
    "SelectedRecipient",
    "Campaign",
    "CampaignView",
    # Exceptions
    "EmergencyError",
    "InvalidRequestError",
    "DuplicateResponseError",
    "CampaignNotFoundError",
    "CampaignClosedError",
    "InvalidTransitionError",
    "CandidateLookupError",
]
