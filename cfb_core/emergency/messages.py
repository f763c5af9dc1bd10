"""
Emergency message content.

Renders channel-independent payloads for blood-request outreach, acceptance
thanks, slot confirmations and escalated re-broadcasts.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from cfb_core.notifications.base import (
    NotificationAction,
    NotificationPayload,
    NotificationRecipient,
)

from .base import CampaignView, SelectedRecipient, UrgencyTier
from .priority import CRITICAL_THRESHOLD, notification_priority_for


DEFAULT_INSTRUCTIONS = "Please bring a valid ID and eat a good meal before donating."

REQUEST_ACTIONS = [
    NotificationAction(action="accept_emergency", title="Accept Emergency"),
    NotificationAction(action="call_facility", title="Call Facility"),
    NotificationAction(action="decline_emergency", title="Cannot Help"),
]


class EmergencyMessageBuilder:
    """Builds notification payloads for a campaign."""

    def __init__(self, response_base_url: str = ""):
        self.response_base_url = response_base_url.rstrip("/")

    def _response_url(self, campaign_id: str, recipient_id: str, action: str) -> str:
        return (
            f"{self.response_base_url}/emergency/{campaign_id}/respond"
            f"?action={action}&donor={recipient_id}"
        )

    def _base_data(self, campaign: CampaignView, recipient: NotificationRecipient) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": "emergency_blood_request",
            "campaign_id": campaign.id,
            "recipient_id": recipient.id,
            "blood_type": campaign.blood_type,
            "urgency": campaign.urgency.value,
            "priority": campaign.priority_score,
            "facility_name": campaign.facility.name,
            "facility_phone": campaign.facility.phone,
        }
        if campaign.patient:
            # Age and condition only
            data["patient"] = {
                "age": campaign.patient.age,
                "condition": campaign.patient.condition,
            }
        return data

    def build_request(
        self,
        campaign: CampaignView,
        recipient: NotificationRecipient,
        escalated: bool = False,
    ) -> NotificationPayload:
        """Initial (or escalated) request for help."""
        critical = campaign.urgency == UrgencyTier.CRITICAL
        title = f"URGENT: {campaign.blood_type} Blood Needed"
        if critical:
            title += " CRITICALLY"
        if escalated:
            title = f"STILL NEEDED - {title}"

        distance = (
            f"{recipient.distance_km:g}km away"
            if recipient.distance_km is not None
            else "distance unknown"
        )
        body = f"Emergency at {campaign.facility.name} - {distance}"

        contact = f" or call {campaign.facility.phone}" if campaign.facility.phone else ""
        sms_text = (
            f"EMERGENCY: {campaign.blood_type} blood needed at {campaign.facility.name}. "
            f"Can you help? Reply YES to accept{contact}. Emergency ID: {campaign.id}"
        )

        data = self._base_data(campaign, recipient)
        data.update({
            "template": "emergency_blood_request",
            "escalated": escalated,
            "accept_url": self._response_url(campaign.id, recipient.id, "accept"),
            "decline_url": self._response_url(campaign.id, recipient.id, "decline"),
        })

        return NotificationPayload(
            title=title,
            body=body,
            campaign_id=campaign.id,
            priority=notification_priority_for(campaign.priority_score),
            sms_text=sms_text,
            email_subject=f"Emergency Blood Request - {campaign.blood_type} Needed",
            actions=list(REQUEST_ACTIONS),
            require_interaction=campaign.priority_score >= CRITICAL_THRESHOLD,
            data=data,
        )

    def build_acceptance(
        self,
        campaign: CampaignView,
        recipient: NotificationRecipient,
        estimated_arrival: Optional[datetime] = None,
    ) -> NotificationPayload:
        """Thank-you sent when an accept does not yet fill the request."""
        arrival = estimated_arrival.strftime("%H:%M") if estimated_arrival else None
        body = f"{campaign.facility.name} has been told you are on your way."
        if arrival:
            body += f" Expected arrival: {arrival} UTC."
        body += " We will confirm your slot once enough donors have accepted."

        data = self._base_data(campaign, recipient)
        data.update({
            "template": "emergency_acceptance",
            "estimated_arrival": estimated_arrival.isoformat() if estimated_arrival else None,
        })

        return NotificationPayload(
            title=f"Thank you for responding to the {campaign.blood_type} emergency",
            body=body,
            campaign_id=campaign.id,
            priority=notification_priority_for(campaign.priority_score),
            sms_text=(
                f"Thank you! {campaign.facility.name} is expecting you. "
                f"Slot details follow. ID: {campaign.id}"
            ),
            email_subject=f"Thank you for accepting - {campaign.facility.name}",
            data=data,
        )

    def build_time_slot(
        self,
        campaign: CampaignView,
        recipient: NotificationRecipient,
        selected: SelectedRecipient,
    ) -> NotificationPayload:
        """Slot confirmation for a selected recipient."""
        slot = selected.slot_start.strftime("%H:%M") if selected.slot_start else "soon"
        instructions = campaign.special_instructions or DEFAULT_INSTRUCTIONS
        address: Optional[str] = campaign.facility.address

        body = f"Please arrive at {campaign.facility.name} at {slot} UTC."
        if address:
            body += f" Address: {address}."
        body += f" {instructions}"

        data = self._base_data(campaign, recipient)
        data.update({
            "template": "emergency_time_slot",
            "slot_start": selected.slot_start.isoformat() if selected.slot_start else None,
            "slot_end": selected.slot_end.isoformat() if selected.slot_end else None,
            "facility_address": address,
            "special_instructions": instructions,
        })

        return NotificationPayload(
            title=f"Thank you! Your donation slot at {campaign.facility.name}",
            body=body,
            campaign_id=campaign.id,
            priority=notification_priority_for(campaign.priority_score),
            sms_text=f"Confirmed: donate {campaign.blood_type} at {campaign.facility.name}, {slot} UTC. ID: {campaign.id}",
            email_subject=f"Donation slot confirmed - {campaign.facility.name}",
            data=data,
        )


__all__ = ["EmergencyMessageBuilder", "DEFAULT_INSTRUCTIONS"]
