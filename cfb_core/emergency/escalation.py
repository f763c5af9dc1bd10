"""
Escalation Scheduler
====================

One-shot, cancellable timers tied to a campaign. Escalation checks fire
after a fixed delay and hand control back to the owner (the campaign
coordinator), which re-reads campaign state under its per-campaign lock
before acting. Every campaign also gets an expiry timer at its hard
deadline.

A check that has not fired yet is cancelled outright. A check that has
fired and is waiting for the campaign lock is only flagged; the owner
sees the flag once it holds the lock and does nothing.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from .base import CampaignView
from .priority import CRITICAL_THRESHOLD, URGENT_THRESHOLD

logger = structlog.get_logger(__name__)

ThresholdFn = Callable[[CampaignView], bool]


class CheckKind(str, Enum):
    """Kinds of scheduled campaign timers."""

    CRITICAL = "critical"  # no responses at all
    URGENT = "urgent"  # no accepted recipients
    CUSTOM = "custom"
    EXPIRY = "expiry"


def no_responses(view: CampaignView) -> bool:
    return len(view.responses) == 0


def no_acceptances(view: CampaignView) -> bool:
    return view.accepted_count == 0


@dataclass
class ScheduledCheck:
    """Handle for one scheduled campaign timer."""

    campaign_id: str
    kind: CheckKind
    delay_seconds: float
    due_at: datetime
    threshold: Optional[ThresholdFn] = None
    id: str = field(default_factory=lambda: f"chk_{uuid.uuid4().hex[:12]}")
    task: Optional[asyncio.Task] = None
    fired: bool = False
    cancelled: bool = False

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    def cancel(self) -> None:
        self.cancelled = True
        if self.task is not None and not self.fired and not self.task.done():
            self.task.cancel()

    def should_escalate(self, view: CampaignView) -> bool:
        if self.threshold is None:
            return False
        return bool(self.threshold(view))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "campaign_id": self.campaign_id,
            "kind": self.kind.value,
            "delay_seconds": self.delay_seconds,
            "due_at": self.due_at.isoformat(),
            "fired": self.fired,
            "cancelled": self.cancelled,
        }


DueHandler = Callable[[ScheduledCheck], Awaitable[Any]]


class EscalationScheduler:
    """
    Schedules escalation checks and expiry timers per campaign.

    Usage:
        scheduler = EscalationScheduler(on_due=coordinator.handle_due_check)
        scheduler.schedule_for(view)
        scheduler.schedule_expiry(view.id, view.expires_at)
        ...
        scheduler.cancel(view.id)
    """

    def __init__(
        self,
        on_due: Optional[DueHandler] = None,
        critical_check_delay_seconds: float = 900.0,
        urgent_check_delay_seconds: float = 1800.0,
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._on_due = on_due
        self.critical_check_delay_seconds = critical_check_delay_seconds
        self.urgent_check_delay_seconds = urgent_check_delay_seconds
        self._clock = clock
        self._sleep = sleep
        self._checks: Dict[str, List[ScheduledCheck]] = {}

    def set_handler(self, on_due: DueHandler) -> None:
        self._on_due = on_due

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def schedule_escalation_check(
        self,
        campaign_id: str,
        delay: float,
        threshold_fn: ThresholdFn,
        kind: CheckKind = CheckKind.CUSTOM,
    ) -> ScheduledCheck:
        """Schedule a one-shot check that escalates when threshold_fn holds."""
        return self._schedule(campaign_id, kind, delay, threshold_fn)

    def schedule_for(self, view: CampaignView) -> List[ScheduledCheck]:
        """Schedule the standard checks for a campaign's priority.

        Critical campaigns get both the 15-minute no-response check and the
        30-minute no-acceptance check; urgent campaigns only the latter.
        """
        checks = []
        if view.priority_score >= CRITICAL_THRESHOLD:
            checks.append(self.schedule_escalation_check(
                view.id,
                self.critical_check_delay_seconds,
                no_responses,
                CheckKind.CRITICAL,
            ))
        if view.priority_score >= URGENT_THRESHOLD:
            checks.append(self.schedule_escalation_check(
                view.id,
                self.urgent_check_delay_seconds,
                no_acceptances,
                CheckKind.URGENT,
            ))
        return checks

    def schedule_expiry(self, campaign_id: str, at: datetime) -> ScheduledCheck:
        """Schedule the hard-deadline timer."""
        delay = max(0.0, (at - self._clock()).total_seconds())
        return self._schedule(campaign_id, CheckKind.EXPIRY, delay, None)

    def _schedule(
        self,
        campaign_id: str,
        kind: CheckKind,
        delay: float,
        threshold: Optional[ThresholdFn],
    ) -> ScheduledCheck:
        check = ScheduledCheck(
            campaign_id=campaign_id,
            kind=kind,
            delay_seconds=delay,
            due_at=self._clock() + timedelta(seconds=delay),
            threshold=threshold,
        )
        check.task = asyncio.create_task(self._run(check))
        self._checks.setdefault(campaign_id, []).append(check)

        logger.info(
            "escalation_check_scheduled",
            campaign_id=campaign_id,
            check_id=check.id,
            kind=kind.value,
            delay_seconds=delay,
        )
        return check

    async def _run(self, check: ScheduledCheck) -> None:
        try:
            await self._sleep(check.delay_seconds)
            if check.cancelled:
                return
            check.fired = True

            logger.info(
                "escalation_check_fired",
                campaign_id=check.campaign_id,
                check_id=check.id,
                kind=check.kind.value,
            )
            if self._on_due is not None:
                await self._on_due(check)
        except asyncio.CancelledError:
            logger.info("escalation_check_cancelled", campaign_id=check.campaign_id, check_id=check.id)
            raise
        except Exception:
            # Campaign stays at its current priority
            logger.exception(
                "escalation_check_failed",
                campaign_id=check.campaign_id,
                check_id=check.id,
            )
        finally:
            self._forget(check)

    def _forget(self, check: ScheduledCheck) -> None:
        checks = self._checks.get(check.campaign_id)
        if checks and check in checks:
            checks.remove(check)
            if not checks:
                del self._checks[check.campaign_id]

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def cancel(self, campaign_id: str, include_expiry: bool = True) -> int:
        """Cancel a campaign's pending timers. Returns the number cancelled."""
        cancelled = 0
        for check in list(self._checks.get(campaign_id, [])):
            if check.kind == CheckKind.EXPIRY and not include_expiry:
                continue
            if not check.cancelled:
                check.cancel()
                cancelled += 1
            if not check.fired:
                self._forget(check)
        if cancelled:
            logger.info("escalation_checks_cancelled", campaign_id=campaign_id, count=cancelled)
        return cancelled

    def pending(self, campaign_id: Optional[str] = None) -> List[ScheduledCheck]:
        """Timers not yet fired or cancelled."""
        if campaign_id is not None:
            checks = self._checks.get(campaign_id, [])
        else:
            checks = [c for group in self._checks.values() for c in group]
        return [c for c in checks if not c.fired and not c.cancelled]

    async def shutdown(self) -> None:
        """Cancel every timer and wait for the tasks to finish."""
        tasks = []
        for checks in list(self._checks.values()):
            for check in list(checks):
                check.cancelled = True
                if check.task is not None and not check.task.done():
                    check.task.cancel()
                    tasks.append(check.task)
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._checks.clear()
        logger.info("escalation_scheduler_stopped", cancelled=len(tasks))


__all__ = [
    "EscalationScheduler",
    "ScheduledCheck",
    "CheckKind",
    "no_responses",
    "no_acceptances",
]
