"""
Campaign analytics.

Cross-campaign metrics derived from read-only campaign snapshots.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from cfb_core.notifications.base import DeliveryStatus, NotificationChannel

from .base import CampaignStatus, CampaignView


@dataclass
class AnalyticsSnapshot:
    """Point-in-time engine metrics."""

    total_campaigns: int = 0
    active_campaigns: int = 0
    total_responses: int = 0
    successful_matches: int = 0
    average_response_latency_seconds: float = 0.0
    response_rate: float = 0.0
    total_delivery_attempts: int = 0
    delivery_success_rate: float = 100.0
    channel_success_rates: Dict[NotificationChannel, float] = field(default_factory=dict)
    escalations: int = 0
    facility_contacts: int = 0
    permanent_failures: int = 0
    generated_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_campaigns": self.total_campaigns,
            "active_campaigns": self.active_campaigns,
            "total_responses": self.total_responses,
            "successful_matches": self.successful_matches,
            "average_response_latency_seconds": round(self.average_response_latency_seconds, 2),
            "response_rate": round(self.response_rate, 2),
            "total_delivery_attempts": self.total_delivery_attempts,
            "delivery_success_rate": round(self.delivery_success_rate, 2),
            "channel_success_rates": {
                channel.value: round(rate, 2)
                for channel, rate in self.channel_success_rates.items()
            },
            "escalations": self.escalations,
            "facility_contacts": self.facility_contacts,
            "permanent_failures": self.permanent_failures,
            "generated_at": self.generated_at.isoformat(),
        }


def _rate(sent: int, failed: int) -> float:
    total = sent + failed
    if total == 0:
        return 100.0
    return sent / total * 100


def is_successful_match(view: CampaignView) -> bool:
    """Campaign reached coordination (and possibly resolution)."""
    return (
        view.status in (CampaignStatus.COORDINATING, CampaignStatus.RESOLVED)
        or view.coordinated_at is not None
    )


class AnalyticsAggregator:
    """Summarizes campaign views. Never mutates campaign state."""

    def summarize(
        self,
        campaigns: Iterable[CampaignView],
        now: Optional[datetime] = None,
    ) -> AnalyticsSnapshot:
        snapshot = AnalyticsSnapshot(generated_at=now or datetime.utcnow())

        latency_total = 0.0
        notified = 0
        responders = 0
        sent: Dict[NotificationChannel, int] = {c: 0 for c in NotificationChannel}
        failed: Dict[NotificationChannel, int] = {c: 0 for c in NotificationChannel}

        for view in campaigns:
            snapshot.total_campaigns += 1
            if not view.status.is_terminal:
                snapshot.active_campaigns += 1
            if is_successful_match(view):
                snapshot.successful_matches += 1

            snapshot.total_responses += len(view.responses)
            latency_total += sum(r.latency_seconds for r in view.responses)

            notified += len(view.notified_recipient_ids)
            responders += len({r.recipient_id for r in view.responses})

            for attempt in view.delivery_attempts:
                if attempt.status == DeliveryStatus.SENT:
                    sent[attempt.channel] += 1
                else:
                    failed[attempt.channel] += 1

            snapshot.escalations += view.escalation_count
            snapshot.facility_contacts += view.facility_contacts
            snapshot.permanent_failures += len(view.permanent_failures)

        if snapshot.total_responses:
            snapshot.average_response_latency_seconds = latency_total / snapshot.total_responses
        if notified:
            snapshot.response_rate = min(100.0, responders / notified * 100)

        total_sent = sum(sent.values())
        total_failed = sum(failed.values())
        snapshot.total_delivery_attempts = total_sent + total_failed
        snapshot.delivery_success_rate = _rate(total_sent, total_failed)
        snapshot.channel_success_rates = {
            channel: _rate(sent[channel], failed[channel]) for channel in NotificationChannel
        }
        return snapshot


__all__ = ["AnalyticsAggregator", "AnalyticsSnapshot", "is_successful_match"]
