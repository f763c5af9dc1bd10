"""
Campaign Coordinator
====================

Owns the lifecycle of emergency campaigns: creation, candidate outreach,
response intake, donor coordination, escalation and closure.

Every mutation of a campaign happens while holding that campaign's lock.
Network side effects (dispatch, facility contact) run after the lock is
released; anything they report back is applied under the lock again and
only while the campaign is still open.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

import httpx
import structlog
from pydantic import ValidationError

from cfb_core.notifications.base import (
    DeliveryAttempt,
    NotificationRecipient,
    RetryExhaustedError,
    RetryTask,
)
from cfb_core.notifications.channels import create_gateway_adapters
from cfb_core.notifications.dispatcher import BulkDispatchResult, ChannelDispatcher
from cfb_core.notifications.retry import RetryQueue

from .analytics import AnalyticsAggregator, AnalyticsSnapshot
from .base import (
    BloodRequest,
    Campaign,
    CampaignClosedError,
    CampaignNotFoundError,
    CampaignStatus,
    CampaignView,
    CandidateLookupError,
    CloseReason,
    DuplicateResponseError,
    InvalidRequestError,
    Response,
    ResponseDecision,
    SelectedRecipient,
)
from .collaborators import (
    AuditSink,
    CandidateFinder,
    FacilityContactSink,
    HttpCandidateFinder,
    HttpFacilityContactSink,
    LoggingFacilityContactSink,
)
from .config import EngineConfig
from .escalation import CheckKind, EscalationScheduler, ScheduledCheck
from .messages import EmergencyMessageBuilder
from .priority import PriorityScorer, clamp_priority, search_radius_for

logger = structlog.get_logger(__name__)

DEFAULT_DISTANCE_KM = 5.0
ARRIVAL_BASE_MINUTES = 30
ARRIVAL_MINUTES_PER_KM = 3


class CampaignStore:
    """In-memory campaign store with one lock per campaign."""

    def __init__(self):
        self._campaigns: Dict[str, Campaign] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._campaigns)

    def __contains__(self, campaign_id: object) -> bool:
        return campaign_id in self._campaigns

    def add(self, campaign: Campaign) -> None:
        self._campaigns[campaign.id] = campaign
        self._locks[campaign.id] = asyncio.Lock()

    def get(self, campaign_id: str) -> Campaign:
        campaign = self._campaigns.get(campaign_id)
        if campaign is None:
            raise CampaignNotFoundError(campaign_id)
        return campaign

    def lock(self, campaign_id: str) -> asyncio.Lock:
        self.get(campaign_id)
        return self._locks[campaign_id]

    def snapshot(self, campaign_id: str) -> CampaignView:
        return self.get(campaign_id).to_view()

    def snapshots(self) -> List[CampaignView]:
        return [c.to_view() for c in self._campaigns.values()]


class CampaignCoordinator:
    """
    Emergency campaign coordinator.

    Usage:
        coordinator = create_engine()
        coordinator.start()

        campaign_id = await coordinator.create_campaign({
            "blood_type": "O-",
            "units_needed": 1,
            "urgency": "critical",
            "facility": {"id": "h1", "name": "City Hospital"},
        })
        await coordinator.record_response(campaign_id, "donor-7", "accept")
        view = await coordinator.get_campaign(campaign_id)

        await coordinator.shutdown()
    """

    def __init__(
        self,
        dispatcher: ChannelDispatcher,
        candidate_finder: CandidateFinder,
        facility_sink: Optional[FacilityContactSink] = None,
        retry_queue: Optional[RetryQueue] = None,
        audit_sink: Optional[AuditSink] = None,
        config: Optional[EngineConfig] = None,
        store: Optional[CampaignStore] = None,
        scheduler: Optional[EscalationScheduler] = None,
        messages: Optional[EmergencyMessageBuilder] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or EngineConfig()
        self.dispatcher = dispatcher
        self.candidate_finder = candidate_finder
        self.facility_sink = facility_sink or LoggingFacilityContactSink()
        self.audit_sink = audit_sink
        self.store = store or CampaignStore()
        self.messages = messages or EmergencyMessageBuilder()
        self.scorer = PriorityScorer(clock)
        self.aggregator = AnalyticsAggregator()
        # Owned client, closed on shutdown
        self._http_client = http_client
        self._clock = clock

        self.retry_queue = retry_queue if retry_queue is not None else dispatcher.retry_queue
        if self.retry_queue is not None:
            if self.retry_queue.dispatcher is None:
                self.retry_queue.dispatcher = dispatcher
            if dispatcher.retry_queue is None:
                dispatcher.set_retry_queue(self.retry_queue)
            self.retry_queue.on_exhausted(self._on_retry_exhausted)

        self.scheduler = scheduler or EscalationScheduler(
            critical_check_delay_seconds=self.config.critical_check_delay_seconds,
            urgent_check_delay_seconds=self.config.urgent_check_delay_seconds,
            clock=clock,
            sleep=sleep,
        )
        self.scheduler.set_handler(self._on_check_due)

        dispatcher.on_attempt(self._on_delivery_attempt)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start background retry processing."""
        if self.retry_queue is not None:
            self.retry_queue.start()

    async def shutdown(self) -> None:
        """Cancel timers and stop background processing."""
        await self.scheduler.shutdown()
        if self.retry_queue is not None:
            await self.retry_queue.stop()
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        logger.info("coordinator_stopped", campaigns=len(self.store))

    # -------------------------------------------------------------------------
    # Public Operations
    # -------------------------------------------------------------------------

    async def create_campaign(self, request: Union[BloodRequest, Dict[str, Any]]) -> str:
        """
        Create a campaign and notify its first candidates.

        Args:
            request: BloodRequest or its dict form

        Returns:
            Campaign ID

        Raises:
            InvalidRequestError: if the request is malformed
        """
        request = self._validate(request)
        now = self._clock()
        priority = self.scorer.score(request, now)

        campaign = Campaign(
            id=Campaign.new_id(),
            request=request,
            created_at=now,
            priority_score=priority,
            search_radius_km=search_radius_for(priority),
            expires_at=self._deadline_for(request, now),
        )
        for recipient in request.known_recipients:
            campaign.recipients[recipient.id] = recipient
        self.store.add(campaign)

        logger.info(
            "campaign_created",
            campaign_id=campaign.id,
            blood_type=request.blood_type,
            urgency=request.urgency.value,
            priority=priority,
            radius_km=campaign.search_radius_km,
            expires_at=campaign.expires_at.isoformat(),
        )

        async with self.store.lock(campaign.id):
            candidates = await self._find_candidates(campaign, campaign.search_radius_km)
            self._register(campaign, candidates)
            recipients = list(campaign.recipients.values())
            view = campaign.to_view()
            self.scheduler.schedule_for(view)
            self.scheduler.schedule_expiry(campaign.id, campaign.expires_at)

        await self._notify(view, recipients)
        return campaign.id

    async def record_response(
        self,
        campaign_id: str,
        recipient_id: str,
        decision: Union[ResponseDecision, str],
        metadata: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
        supersede: bool = False,
    ) -> CampaignView:
        """
        Record a recipient's decision.

        Raises:
            CampaignNotFoundError: if the campaign is unknown
            CampaignClosedError: if the campaign is no longer active
            DuplicateResponseError: if the recipient already has an active
                decision and supersede is False
        """
        decision = self._parse_decision(decision)
        arrival: Optional[datetime] = None
        acknowledge: Optional[NotificationRecipient] = None
        coordinated = False
        expansion: List[NotificationRecipient] = []

        async with self.store.lock(campaign_id):
            campaign = self.store.get(campaign_id)
            if campaign.status != CampaignStatus.ACTIVE:
                raise CampaignClosedError(campaign_id, campaign.status)

            previous = campaign.active_response_for(recipient_id)
            if previous is not None:
                if not supersede:
                    raise DuplicateResponseError(campaign_id, recipient_id)
                previous.active = False
                if recipient_id in campaign.accepted_recipient_ids:
                    campaign.accepted_recipient_ids.remove(recipient_id)

            now = self._clock()
            response = Response(
                recipient_id=recipient_id,
                decision=decision,
                timestamp=now,
                latency_seconds=max(0.0, (now - campaign.created_at).total_seconds()),
                reason=reason,
                metadata=dict(metadata or {}),
            )
            campaign.responses.append(response)
            campaign.average_response_latency_seconds = (
                sum(r.latency_seconds for r in campaign.responses) / len(campaign.responses)
            )

            logger.info(
                "response_recorded",
                campaign_id=campaign_id,
                recipient_id=recipient_id,
                decision=decision.value,
                latency_seconds=response.latency_seconds,
                superseded=previous is not None,
            )

            if decision == ResponseDecision.ACCEPT:
                campaign.accepted_recipient_ids.append(recipient_id)
                arrival = self._estimated_arrival(campaign, response)
                if len(campaign.accepted_recipient_ids) >= campaign.recipients_needed:
                    self._begin_coordination(campaign, now)
                    coordinated = True
                else:
                    acknowledge = self._recipient(campaign_id, recipient_id)
            elif self._should_expand(campaign):
                radius = campaign.search_radius_km * self.config.radius_expansion_factor
                candidates = await self._find_candidates(campaign, radius)
                expansion = self._register(campaign, candidates)
                logger.info(
                    "search_expanded",
                    campaign_id=campaign_id,
                    radius_km=radius,
                    responses=len(campaign.active_responses()),
                    new_recipients=len(expansion),
                )

            view = campaign.to_view()

        if self.audit_sink is not None:
            await self._audit_response(campaign_id, response)
        if arrival is not None:
            await self._contact_facility(view, recipient_id, arrival)
        if acknowledge is not None:
            await self._acknowledge(view, acknowledge, arrival)
        if coordinated:
            await self._send_coordination(view)
        if expansion:
            await self._notify(view, expansion)

        return self.store.snapshot(campaign_id)

    async def get_campaign(self, campaign_id: str) -> CampaignView:
        """Get a read-only snapshot of a campaign."""
        return self.store.snapshot(campaign_id)

    async def list_campaigns(self, status: Optional[CampaignStatus] = None) -> List[CampaignView]:
        """List campaign snapshots, optionally filtered by status."""
        views = self.store.snapshots()
        if status is not None:
            views = [v for v in views if v.status == status]
        return views

    async def close_campaign(
        self,
        campaign_id: str,
        reason: Union[CloseReason, str] = CloseReason.CANCELLED,
    ) -> CampaignView:
        """
        Close a campaign as RESOLVED or EXPIRED.

        Idempotent: closing a closed campaign returns its unchanged view.
        """
        try:
            reason = CloseReason(reason)
        except ValueError as e:
            raise InvalidRequestError(f"Unknown close reason: {reason}") from e

        async with self.store.lock(campaign_id):
            campaign = self.store.get(campaign_id)
            if campaign.status.is_terminal:
                return campaign.to_view()

            previous = campaign.transition(reason.target_status)
            campaign.closed_at = self._clock()
            campaign.close_reason = reason

            timers = self.scheduler.cancel(campaign_id)
            dropped = self.retry_queue.drop_campaign(campaign_id) if self.retry_queue else 0

            logger.info(
                "campaign_closed",
                campaign_id=campaign_id,
                previous_status=previous.value,
                status=campaign.status.value,
                reason=reason.value,
                timers_cancelled=timers,
                retries_dropped=dropped,
            )
            return campaign.to_view()

    async def escalate(self, campaign_id: str) -> CampaignView:
        """
        Escalate a campaign now: raise priority, widen the radius and reach
        additional candidates.

        Raises:
            CampaignClosedError: if the campaign is not active
        """
        async with self.store.lock(campaign_id):
            campaign = self.store.get(campaign_id)
            if campaign.status != CampaignStatus.ACTIVE:
                raise CampaignClosedError(campaign_id, campaign.status)
            view, recipients = await self._escalate_locked(campaign)

        await self._after_escalation(view, recipients)
        return self.store.snapshot(campaign_id)

    def analytics(self) -> AnalyticsSnapshot:
        """Summarize every campaign."""
        return self.aggregator.summarize(self.store.snapshots(), now=self._clock())

    # -------------------------------------------------------------------------
    # Escalation
    # -------------------------------------------------------------------------

    async def _on_check_due(self, check: ScheduledCheck) -> None:
        if check.campaign_id not in self.store:
            return

        if check.kind == CheckKind.EXPIRY:
            if not check.cancelled:
                await self.close_campaign(check.campaign_id, CloseReason.DEADLINE_PASSED)
            return

        async with self.store.lock(check.campaign_id):
            campaign = self.store.get(check.campaign_id)
            if check.cancelled or campaign.status != CampaignStatus.ACTIVE:
                logger.info(
                    "escalation_check_skipped",
                    campaign_id=campaign.id,
                    kind=check.kind.value,
                    status=campaign.status.value,
                )
                return
            if not check.should_escalate(campaign.to_view()):
                logger.info("escalation_not_needed", campaign_id=campaign.id, kind=check.kind.value)
                return
            view, recipients = await self._escalate_locked(campaign)

        await self._after_escalation(view, recipients)

    async def _escalate_locked(
        self, campaign: Campaign
    ) -> Tuple[CampaignView, List[NotificationRecipient]]:
        previous_priority = campaign.priority_score
        previous_radius = campaign.search_radius_km

        campaign.transition(CampaignStatus.ESCALATED)
        try:
            campaign.priority_score = clamp_priority(
                campaign.priority_score + self.config.escalation_priority_step
            )
            campaign.search_radius_km = (
                max(campaign.search_radius_km, search_radius_for(campaign.priority_score))
                * self.config.radius_expansion_factor
            )
            campaign.escalation_count += 1
            candidates = await self._find_candidates(campaign, campaign.search_radius_km)
            recipients = self._register(campaign, candidates)
        finally:
            campaign.transition(CampaignStatus.ACTIVE)

        logger.warning(
            "campaign_escalated",
            campaign_id=campaign.id,
            priority_from=previous_priority,
            priority_to=campaign.priority_score,
            radius_from_km=previous_radius,
            radius_to_km=campaign.search_radius_km,
            new_recipients=len(recipients),
        )
        return campaign.to_view(), recipients

    async def _after_escalation(
        self, view: CampaignView, recipients: Sequence[NotificationRecipient]
    ) -> None:
        await self._notify(view, recipients, escalated=True)
        for side_effect in (
            self.facility_sink.notify_emergency_contacts,
            self.facility_sink.alert_nearby_facilities,
        ):
            if not self._is_open(view.id):
                logger.info("escalation_side_effects_skipped", campaign_id=view.id)
                return
            try:
                await side_effect(view)
            except Exception:
                logger.exception("escalation_side_effect_failed", campaign_id=view.id)

    def _should_expand(self, campaign: Campaign) -> bool:
        return (
            not campaign.accepted_recipient_ids
            and len(campaign.active_responses()) >= self.config.decline_fanout_threshold
        )

    # -------------------------------------------------------------------------
    # Coordination
    # -------------------------------------------------------------------------

    def _begin_coordination(self, campaign: Campaign, now: datetime) -> None:
        accepted = sorted(
            (
                r for r in campaign.active_responses()
                if r.decision == ResponseDecision.ACCEPT
                and r.recipient_id in campaign.accepted_recipient_ids
            ),
            key=lambda r: r.latency_seconds,
        )

        lead = timedelta(minutes=self.config.slot_lead_minutes)
        interval = timedelta(minutes=self.config.slot_interval_minutes)
        campaign.selected_recipients = [
            SelectedRecipient(
                recipient_id=r.recipient_id,
                latency_seconds=r.latency_seconds,
                selected_at=now,
                slot_start=now + lead + interval * i,
                slot_end=now + lead + interval * (i + 1),
            )
            for i, r in enumerate(accepted[:campaign.recipients_needed])
        ]
        campaign.transition(CampaignStatus.COORDINATING)
        campaign.coordinated_at = now
        self.scheduler.cancel(campaign.id, include_expiry=False)

        logger.info(
            "campaign_coordinating",
            campaign_id=campaign.id,
            selected=[s.recipient_id for s in campaign.selected_recipients],
        )

    async def _send_coordination(self, view: CampaignView) -> None:
        deliveries = []
        for selected in view.selected_recipients:
            recipient = self._recipient(view.id, selected.recipient_id)
            deliveries.append((recipient, self.messages.build_time_slot(view, recipient, selected)))
        await self.dispatcher.dispatch_many(deliveries, abort=self._closed_check(view.id))

        if not self._is_open(view.id):
            return
        try:
            delivered = await self.facility_sink.send_recipient_list(view, view.selected_recipients)
        except Exception:
            logger.exception("recipient_list_failed", campaign_id=view.id)
            return
        if delivered:
            await self._count_facility_contact(view.id)

    async def _contact_facility(
        self, view: CampaignView, recipient_id: str, arrival: datetime
    ) -> None:
        if not self._is_open(view.id):
            return
        try:
            delivered = await self.facility_sink.notify_facility(
                view.id, view.facility.id, recipient_id, arrival
            )
        except Exception:
            logger.exception(
                "facility_contact_failed",
                campaign_id=view.id,
                facility_id=view.facility.id,
            )
            return
        if delivered:
            await self._count_facility_contact(view.id)

    async def _acknowledge(
        self,
        view: CampaignView,
        recipient: NotificationRecipient,
        arrival: Optional[datetime],
    ) -> None:
        if not self._is_open(view.id):
            return
        await self.dispatcher.dispatch(
            recipient,
            self.messages.build_acceptance(view, recipient, arrival),
            abort=self._closed_check(view.id),
        )

    async def _count_facility_contact(self, campaign_id: str) -> None:
        async with self.store.lock(campaign_id):
            campaign = self.store.get(campaign_id)
            if not campaign.status.is_terminal:
                campaign.facility_contacts += 1

    def _estimated_arrival(self, campaign: Campaign, response: Response) -> datetime:
        supplied = response.metadata.get("estimated_arrival")
        if isinstance(supplied, datetime):
            return supplied

        recipient = campaign.recipients.get(response.recipient_id)
        distance = DEFAULT_DISTANCE_KM
        if recipient is not None and recipient.distance_km is not None:
            distance = recipient.distance_km
        minutes = ARRIVAL_BASE_MINUTES + ARRIVAL_MINUTES_PER_KM * distance
        return response.timestamp + timedelta(minutes=minutes)

    # -------------------------------------------------------------------------
    # Outreach
    # -------------------------------------------------------------------------

    async def _find_candidates(
        self, campaign: Campaign, radius_km: float
    ) -> List[NotificationRecipient]:
        try:
            return await self.candidate_finder.find(
                campaign.request.blood_type,
                campaign.request.facility.location,
                radius_km,
                exclude_ids=set(campaign.recipients),
            )
        except CandidateLookupError as e:
            logger.warning("candidate_lookup_failed", campaign_id=campaign.id, error=str(e))
        except Exception:
            logger.exception("candidate_lookup_failed", campaign_id=campaign.id)
        return []

    def _register(
        self, campaign: Campaign, candidates: Sequence[NotificationRecipient]
    ) -> List[NotificationRecipient]:
        added = []
        for candidate in candidates:
            if candidate.id not in campaign.recipients:
                campaign.recipients[candidate.id] = candidate
                added.append(candidate)
        return added

    def _is_open(self, campaign_id: str) -> bool:
        return not self.store.get(campaign_id).status.is_terminal

    def _closed_check(self, campaign_id: str) -> Callable[[], bool]:
        return lambda: not self._is_open(campaign_id)

    def _recipient(self, campaign_id: str, recipient_id: str) -> NotificationRecipient:
        recipient = self.store.get(campaign_id).recipients.get(recipient_id)
        return recipient or NotificationRecipient(id=recipient_id)

    async def _notify(
        self,
        view: CampaignView,
        recipients: Sequence[NotificationRecipient],
        escalated: bool = False,
    ) -> BulkDispatchResult:
        if not recipients:
            logger.warning("no_recipients_to_notify", campaign_id=view.id, escalated=escalated)
            return BulkDispatchResult()
        if not self._is_open(view.id):
            logger.info("campaign_notifications_skipped", campaign_id=view.id, escalated=escalated)
            return BulkDispatchResult()

        result = await self.dispatcher.dispatch_many(
            [
                (recipient, self.messages.build_request(view, recipient, escalated))
                for recipient in recipients
            ],
            abort=self._closed_check(view.id),
        )
        logger.info(
            "campaign_notifications_sent",
            campaign_id=view.id,
            escalated=escalated,
            successful=result.successful,
            failed=result.failed,
        )
        return result

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    async def _on_delivery_attempt(self, attempt: DeliveryAttempt) -> None:
        if not attempt.campaign_id or attempt.campaign_id not in self.store:
            return
        async with self.store.lock(attempt.campaign_id):
            campaign = self.store.get(attempt.campaign_id)
            if campaign.status.is_terminal:
                return
            campaign.delivery_attempts.append(attempt)
        if self.audit_sink is not None:
            await self.audit_sink.record_delivery(attempt)

    async def _on_retry_exhausted(self, task: RetryTask, error: RetryExhaustedError) -> None:
        if not task.campaign_id or task.campaign_id not in self.store:
            return
        async with self.store.lock(task.campaign_id):
            campaign = self.store.get(task.campaign_id)
            if campaign.status.is_terminal:
                return
            campaign.permanent_failures.append(error.recipient_id)
        logger.warning(
            "recipient_unreachable",
            campaign_id=task.campaign_id,
            recipient_id=error.recipient_id,
            attempts=error.attempts,
        )

    async def _audit_response(self, campaign_id: str, response: Response) -> None:
        try:
            await self.audit_sink.record_response(campaign_id, response)
        except Exception:
            logger.exception("audit_response_failed", campaign_id=campaign_id)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _validate(self, request: Union[BloodRequest, Dict[str, Any]]) -> BloodRequest:
        if isinstance(request, BloodRequest):
            return request
        try:
            return BloodRequest.model_validate(request)
        except ValidationError as e:
            raise InvalidRequestError(
                f"Invalid blood request: {e.error_count()} error(s)",
                errors=e.errors(include_url=False),
            ) from e

    def _parse_decision(self, decision: Union[ResponseDecision, str]) -> ResponseDecision:
        try:
            return ResponseDecision(decision)
        except ValueError as e:
            raise InvalidRequestError(f"Unknown decision: {decision}") from e

    def _deadline_for(self, request: BloodRequest, now: datetime) -> datetime:
        if request.needed_by is not None and request.needed_by > now:
            return request.needed_by
        return now + timedelta(hours=self.config.campaign_ttl_hours)


def create_engine(
    config: Optional[EngineConfig] = None,
    candidate_finder: Optional[CandidateFinder] = None,
    facility_sink: Optional[FacilityContactSink] = None,
    audit_sink: Optional[AuditSink] = None,
    client: Optional[httpx.AsyncClient] = None,
    clock: Callable[[], datetime] = datetime.utcnow,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> CampaignCoordinator:
    """
    Build a coordinator wired to the HTTP gateway and platform API.

    Adapters and collaborators share one httpx client. When none is passed
    in, the engine creates it and closes it on shutdown.
    """
    config = config or EngineConfig.from_env()
    gateway = config.gateway
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=gateway.timeout_seconds)

    dispatcher = ChannelDispatcher(
        create_gateway_adapters(gateway, client),
        channel_order=config.channel_order,
        max_concurrent=config.max_concurrent_deliveries,
        clock=clock,
    )
    retry_queue = RetryQueue(
        dispatcher,
        max_retries=config.retry_max_retries,
        base_delay_seconds=config.retry_base_delay_seconds,
        exponential_backoff=config.retry_exponential_backoff,
        tick_seconds=config.retry_tick_seconds,
        clock=clock,
        sleep=sleep,
    )
    dispatcher.set_retry_queue(retry_queue)

    return CampaignCoordinator(
        dispatcher,
        candidate_finder or HttpCandidateFinder(gateway, client),
        facility_sink=facility_sink or HttpFacilityContactSink(gateway, client),
        retry_queue=retry_queue,
        audit_sink=audit_sink,
        config=config,
        http_client=client if owns_client else None,
        clock=clock,
        sleep=sleep,
    )


__all__ = ["CampaignCoordinator", "CampaignStore", "create_engine"]
