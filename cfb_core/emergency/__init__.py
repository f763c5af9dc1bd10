"""
Emergency Module

This module turns urgent blood requests into time-bounded, multi-channel
outreach campaigns and escalates them when responses fall short.

Features:
- Priority Scoring: urgency, rare blood type, pediatric and time pressure
- Campaign Coordination: responses, donor selection and time slots
- Escalation: cancellable timed checks that widen the search
- Analytics: response rate, latency and delivery success

Example usage:

    from cfb_core.emergency import EngineConfig, create_engine

    coordinator = create_engine(EngineConfig.from_env())
    coordinator.start()

    campaign_id = await coordinator.create_campaign({
        "blood_type": "O-",
        "units_needed": 2,
        "urgency": "critical",
        "facility": {"id": "h1", "name": "City Hospital", "phone": "+15550100"},
    })
    view = await coordinator.record_response(campaign_id, "donor-7", "accept")
    print(view.status, coordinator.analytics().to_dict())
"""

from .base import (
    # Enums
    BLOOD_TYPES,
    UrgencyTier,
    CampaignStatus,
    CAMPAIGN_TRANSITIONS,
    ResponseDecision,
    CloseReason,
    # Request models
    Facility,
    PatientInfo,
    BloodRequest,
    # Records
    Response,
    SelectedRecipient,
    Campaign,
    CampaignView,
    # Exceptions
    EmergencyError,
    InvalidRequestError,
    DuplicateResponseError,
    CampaignNotFoundError,
    CampaignClosedError,
    InvalidTransitionError,
    CandidateLookupError,
)
from .priority import (
    PriorityScorer,
    search_radius_for,
    notification_priority_for,
    clamp_priority,
    MAX_PRIORITY,
    RARE_BLOOD_TYPES,
)
from .config import EngineConfig
from .collaborators import (
    CandidateFinder,
    FacilityContactSink,
    AuditSink,
    HttpCandidateFinder,
    HttpFacilityContactSink,
    StaticCandidateFinder,
    LoggingFacilityContactSink,
    InMemoryAuditSink,
)
from .messages import EmergencyMessageBuilder
from .escalation import (
    EscalationScheduler,
    ScheduledCheck,
    CheckKind,
    no_responses,
    no_acceptances,
)
from .analytics import AnalyticsAggregator, AnalyticsSnapshot, is_successful_match
from .coordinator import CampaignCoordinator, CampaignStore, create_engine


__all__ = [
    # Enums
    "BLOOD_TYPES",
    "UrgencyTier",
    "CampaignStatus",
    "CAMPAIGN_TRANSITIONS",
    "ResponseDecision",
    "CloseReason",
    # Models
    "Facility",
    "PatientInfo",
    "BloodRequest",
    "Response",
    "SelectedRecipient",
    "Campaign",
    "CampaignView",
    # Priority
    "PriorityScorer",
    "search_radius_for",
    "notification_priority_for",
    "clamp_priority",
    "MAX_PRIORITY",
    "RARE_BLOOD_TYPES",
    # Config
    "EngineConfig",
    # Collaborators
    "CandidateFinder",
    "FacilityContactSink",
    "AuditSink",
    "HttpCandidateFinder",
    "HttpFacilityContactSink",
    "StaticCandidateFinder",
    "LoggingFacilityContactSink",
    "InMemoryAuditSink",
    # Services
    "EmergencyMessageBuilder",
    "EscalationScheduler",
    "ScheduledCheck",
    "CheckKind",
    "no_responses",
    "no_acceptances",
    "AnalyticsAggregator",
    "AnalyticsSnapshot",
    "is_successful_match",
    "CampaignCoordinator",
    "CampaignStore",
    "create_engine",
    # Exceptions
    "EmergencyError",
    "InvalidRequestError",
    "DuplicateResponseError",
    "CampaignNotFoundError",
    "CampaignClosedError",
    "InvalidTransitionError",
    "CandidateLookupError",
]
