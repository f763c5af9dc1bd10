"""
Priority Scoring

Pure urgency scoring for blood requests and the search radius derived
from a score.
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, FrozenSet, Optional, Tuple

from .base import BloodRequest, UrgencyTier
from cfb_core.notifications.base import NotificationPriority


MAX_PRIORITY = 200
MIN_PRIORITY = 0

RARE_BLOOD_TYPES: FrozenSet[str] = frozenset({"AB-", "B-", "A-", "O-"})

URGENCY_BASE: Dict[UrgencyTier, int] = {
    UrgencyTier.CRITICAL: 100,
    UrgencyTier.URGENT: 75,
    UrgencyTier.NORMAL: 50,
}
DEFAULT_BASE = 25

RARE_TYPE_BONUS = 25
PEDIATRIC_BONUS = 20
PEDIATRIC_AGE = 18

# (window, bonus), checked in order
TIME_PRESSURE_BONUSES: Tuple[Tuple[timedelta, int], ...] = (
    (timedelta(hours=2), 30),
    (timedelta(hours=6), 15),
)

CRITICAL_THRESHOLD = 150
URGENT_THRESHOLD = 100

# Radius tiers in kilometres
WIDE_RADIUS_KM = 50.0
MEDIUM_RADIUS_KM = 30.0
NARROW_RADIUS_KM = 15.0


def clamp_priority(value: int) -> int:
    return max(MIN_PRIORITY, min(MAX_PRIORITY, value))


def search_radius_for(priority: int) -> float:
    """Search radius in km for a priority score."""
    if priority >= CRITICAL_THRESHOLD:
        return WIDE_RADIUS_KM
    if priority >= URGENT_THRESHOLD:
        return MEDIUM_RADIUS_KM
    return NARROW_RADIUS_KM


def notification_priority_for(priority: int) -> NotificationPriority:
    """Map a campaign score onto a notification priority."""
    if priority >= CRITICAL_THRESHOLD:
        return NotificationPriority.CRITICAL
    if priority >= URGENT_THRESHOLD:
        return NotificationPriority.URGENT
    if priority >= URGENCY_BASE[UrgencyTier.NORMAL]:
        return NotificationPriority.NORMAL
    return NotificationPriority.LOW


class PriorityScorer:
    """
    Computes a request's urgency score in [0, 200].

    Additive: urgency base, rare blood type, pediatric patient and time
    pressure, then clamped. Missing optional fields contribute nothing.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.utcnow):
        self._clock = clock

    def score(self, request: BloodRequest, now: Optional[datetime] = None) -> int:
        now = now or self._clock()

        total = URGENCY_BASE.get(request.urgency, DEFAULT_BASE)

        if request.blood_type in RARE_BLOOD_TYPES:
            total += RARE_TYPE_BONUS

        if request.patient and request.patient.age is not None and request.patient.age < PEDIATRIC_AGE:
            total += PEDIATRIC_BONUS

        if request.needed_by is not None:
            # A deadline already passed counts as the tightest window
            remaining = request.needed_by - now
            for window, bonus in TIME_PRESSURE_BONUSES:
                if remaining < window:
                    total += bonus
                    break

        return clamp_priority(total)


__all__ = [
    "PriorityScorer",
    "search_radius_for",
    "notification_priority_for",
    "clamp_priority",
    "MAX_PRIORITY",
    "RARE_BLOOD_TYPES",
    "CRITICAL_THRESHOLD",
    "URGENT_THRESHOLD",
    "WIDE_RADIUS_KM",
    "MEDIUM_RADIUS_KM",
    "NARROW_RADIUS_KM",
]
