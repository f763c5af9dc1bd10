"""
External Collaborators

Contracts for the services the engine consumes but does not own:
candidate matching, facility contact and audit persistence. Each has an
HTTP implementation against the platform API and an in-memory one for
development and tests.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx

from cfb_core.core.logging import LogContext, get_context_logger
from cfb_core.notifications.base import (
    DeliveryAttempt,
    GatewayConfig,
    NotificationRecipient,
)

from .base import CampaignView, CandidateLookupError, Response, SelectedRecipient


logger = get_context_logger(__name__)

Location = Optional[Tuple[float, float]]


# =============================================================================
# Interfaces
# =============================================================================


class CandidateFinder(ABC):
    """Supplies ranked candidate recipients for a request."""

    @abstractmethod
    async def find(
        self,
        blood_type: str,
        location: Location,
        radius_km: float,
        exclude_ids: Iterable[str] = (),
    ) -> List[NotificationRecipient]:
        """
        Find candidates, best first.

        Raises:
            CandidateLookupError: if the matching service is unavailable
        """
        pass


class FacilityContactSink(ABC):
    """Receives facility-facing side effects. Fire-and-forget."""

    @abstractmethod
    async def notify_facility(
        self,
        campaign_id: str,
        facility_id: str,
        recipient_id: str,
        estimated_arrival: datetime,
    ) -> bool:
        """Tell the facility a recipient accepted. Returns True if delivered."""
        pass

    async def send_recipient_list(
        self,
        campaign: CampaignView,
        selected: Sequence[SelectedRecipient],
    ) -> bool:
        """Send the final coordinated recipient list."""
        return False

    async def notify_emergency_contacts(self, campaign: CampaignView) -> None:
        """Reach broader emergency contacts on escalation."""
        pass

    async def alert_nearby_facilities(self, campaign: CampaignView) -> None:
        """Alert facilities near the campaign's facility on escalation."""
        pass


class AuditSink(ABC):
    """Optional durable record of deliveries and responses."""

    @abstractmethod
    async def record_delivery(self, attempt: DeliveryAttempt) -> None:
        pass

    @abstractmethod
    async def record_response(self, campaign_id: str, response: Response) -> None:
        pass


# =============================================================================
# HTTP Implementations
# =============================================================================


class _PlatformClient:
    """Shared httpx client handling for platform API collaborators."""

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or GatewayConfig.from_env()
        self._client = client
        self._owns_client = client is None

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    async def _post(self, path: str, body: Dict[str, Any]) -> httpx.Response:
        response = await self._get_client().post(
            self._url(path),
            json=body,
            headers=self.config.headers,
        )
        response.raise_for_status()
        return response

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class HttpCandidateFinder(_PlatformClient, CandidateFinder):
    """Candidate finder backed by the platform donor-matching endpoint."""

    MATCH_PATH = "/api/v1/donors/match"

    async def find(self, blood_type, location, radius_km, exclude_ids=()):
        excluded = set(exclude_ids)
        body = {
            "criteria": {
                "blood_type": blood_type,
                "location": list(location) if location else None,
                "radius_km": radius_km,
                "availability": "available",
            },
            "exclude_ids": sorted(excluded),
        }

        try:
            response = await self._post(self.MATCH_PATH, body)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CandidateLookupError(f"Donor matching failed: {e}") from e

        if isinstance(data, dict):
            data = data.get("donors", [])

        candidates = [
            NotificationRecipient.from_dict(item)
            for item in data
            if str(item.get("id")) not in excluded
        ]
        candidates.sort(key=lambda c: c.compatibility_score, reverse=True)

        logger.info(
            f"Matched {len(candidates)} candidates for {blood_type} within {radius_km} km"
        )
        return candidates


class HttpFacilityContactSink(_PlatformClient, FacilityContactSink):
    """Facility contact sink backed by the platform hospital endpoints."""

    CONTACT_PATH = "/api/v1/hospitals/emergency-contact"
    RECIPIENT_LIST_PATH = "/api/v1/hospitals/emergency-recipients"
    ALERT_PATH = "/api/v1/hospitals/emergency-alert"
    EMERGENCY_CONTACTS_PATH = "/api/v1/users/emergency-contacts/notify"

    async def _deliver(self, path: str, body: Dict[str, Any], campaign_id: str, failure: str) -> bool:
        with LogContext(campaign_id=campaign_id):
            try:
                await self._post(path, body)
            except httpx.HTTPError as e:
                logger.error(f"{failure}: {e}", extra={"path": path})
                return False
            return True

    async def notify_facility(self, campaign_id, facility_id, recipient_id, estimated_arrival):
        body = {
            "emergency_id": campaign_id,
            "hospital_id": facility_id,
            "donor_id": recipient_id,
            "estimated_arrival": estimated_arrival.isoformat(),
        }
        return await self._deliver(
            self.CONTACT_PATH, body, campaign_id, f"Failed to contact facility {facility_id}"
        )

    async def send_recipient_list(self, campaign, selected):
        body = {
            "emergency_id": campaign.id,
            "hospital_id": campaign.facility.id,
            "blood_type": campaign.blood_type,
            "donors": [s.to_dict() for s in selected],
        }
        return await self._deliver(
            self.RECIPIENT_LIST_PATH,
            body,
            campaign.id,
            f"Failed to send recipient list to {campaign.facility.id}",
        )

    async def notify_emergency_contacts(self, campaign):
        await self._deliver(
            self.EMERGENCY_CONTACTS_PATH,
            {"emergency_id": campaign.id, "blood_type": campaign.blood_type},
            campaign.id,
            "Failed to notify emergency contacts",
        )

    async def alert_nearby_facilities(self, campaign):
        body = {
            "emergency_id": campaign.id,
            "hospital_id": campaign.facility.id,
            "blood_type": campaign.blood_type,
            "location": list(campaign.facility.location) if campaign.facility.location else None,
            "radius_km": campaign.search_radius_km,
        }
        await self._deliver(
            self.ALERT_PATH, body, campaign.id, "Failed to alert nearby facilities"
        )


# =============================================================================
# In-Memory Implementations
# =============================================================================


class StaticCandidateFinder(CandidateFinder):
    """Serves candidates from a fixed list, filtered by distance."""

    def __init__(self, candidates: Optional[Iterable[NotificationRecipient]] = None):
        self.candidates: List[NotificationRecipient] = list(candidates or [])
        self.calls: List[Dict[str, Any]] = []

    def add(self, *candidates: NotificationRecipient) -> None:
        self.candidates.extend(candidates)

    async def find(self, blood_type, location, radius_km, exclude_ids=()):
        excluded = set(exclude_ids)
        self.calls.append({
            "blood_type": blood_type,
            "location": location,
            "radius_km": radius_km,
            "exclude_ids": excluded,
        })
        matches = [
            c for c in self.candidates
            if c.id not in excluded
            and (c.distance_km is None or c.distance_km <= radius_km)
        ]
        return sorted(matches, key=lambda c: c.compatibility_score, reverse=True)


class LoggingFacilityContactSink(FacilityContactSink):
    """Logs facility side effects and keeps them for inspection."""

    def __init__(self):
        self.contacts: List[Dict[str, Any]] = []
        self.recipient_lists: List[Dict[str, Any]] = []
        self.emergency_contact_alerts: List[str] = []
        self.facility_alerts: List[str] = []

    async def notify_facility(self, campaign_id, facility_id, recipient_id, estimated_arrival):
        self.contacts.append({
            "campaign_id": campaign_id,
            "facility_id": facility_id,
            "recipient_id": recipient_id,
            "estimated_arrival": estimated_arrival,
        })
        logger.info(
            f"Facility {facility_id} notified of recipient {recipient_id}",
            extra={"campaign_id": campaign_id},
        )
        return True

    async def send_recipient_list(self, campaign, selected):
        self.recipient_lists.append({
            "campaign_id": campaign.id,
            "facility_id": campaign.facility.id,
            "recipient_ids": [s.recipient_id for s in selected],
        })
        logger.info(
            f"Recipient list ({len(selected)}) sent to facility {campaign.facility.id}",
            extra={"campaign_id": campaign.id},
        )
        return True

    async def notify_emergency_contacts(self, campaign):
        self.emergency_contact_alerts.append(campaign.id)
        logger.info("Notifying emergency contacts", extra={"campaign_id": campaign.id})

    async def alert_nearby_facilities(self, campaign):
        self.facility_alerts.append(campaign.id)
        logger.info("Alerting nearby facilities", extra={"campaign_id": campaign.id})


class InMemoryAuditSink(AuditSink):
    """Keeps audit records in lists."""

    def __init__(self):
        self.deliveries: List[DeliveryAttempt] = []
        self.responses: List[Tuple[str, Response]] = []

    async def record_delivery(self, attempt: DeliveryAttempt) -> None:
        self.deliveries.append(attempt)

    async def record_response(self, campaign_id: str, response: Response) -> None:
        self.responses.append((campaign_id, response))


__all__ = [
    "CandidateFinder",
    "FacilityContactSink",
    "AuditSink",
    "HttpCandidateFinder",
    "HttpFacilityContactSink",
    "StaticCandidateFinder",
    "LoggingFacilityContactSink",
    "InMemoryAuditSink",
]
