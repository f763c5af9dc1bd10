"""Unit tests for the campaign coordinator."""

import asyncio
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx

from cfb_core.emergency import (
    CampaignClosedError,
    CampaignCoordinator,
    CampaignNotFoundError,
    CampaignStatus,
    CandidateLookupError,
    CloseReason,
    DuplicateResponseError,
    EngineConfig,
    InMemoryAuditSink,
    InvalidRequestError,
    InvalidTransitionError,
    LoggingFacilityContactSink,
    ResponseDecision,
    StaticCandidateFinder,
    create_engine,
)
from cfb_core.notifications import DeliveryStatus, NotificationChannel


class TestCreateCampaign:
    """Tests for campaign creation."""

    @pytest.mark.asyncio
    async def test_create_critical_campaign(self, coordinator, critical_request, finder, adapters):
        """Test scoring, radius, candidate lookup and outreach."""
        campaign_id = await coordinator.create_campaign(critical_request)

        view = await coordinator.get_campaign(campaign_id)
        assert campaign_id.startswith("cmp_")
        assert view.status == CampaignStatus.ACTIVE
        assert view.priority_score == 155
        assert view.search_radius_km == 50.0
        assert view.expires_at == critical_request["needed_by"]

        assert finder.calls[0]["blood_type"] == "O-"
        assert finder.calls[0]["radius_km"] == 50.0
        assert finder.calls[0]["location"] == (40.71, -74.0)

        assert view.notified_recipient_ids == {"donor-x", "donor-y", "donor-z"}
        # Critical outreach goes to the chat app first
        whatsapp = adapters[NotificationChannel.WHATSAPP].sent
        assert sorted(recipient_id for _, recipient_id, _ in whatsapp) == ["donor-x", "donor-y", "donor-z"]
        assert len(view.delivery_attempts) == 3
        assert all(a.status == DeliveryStatus.SENT for a in view.delivery_attempts)

    @pytest.mark.asyncio
    async def test_request_payload_content(self, coordinator, critical_request, adapters):
        """Test the outreach payload for a critical request."""
        critical_request["patient"] = {"age": 9, "condition": "surgery"}
        await coordinator.create_campaign(critical_request)

        _, _, payload = adapters[NotificationChannel.WHATSAPP].sent[0]
        assert payload.title == "URGENT: O- Blood Needed CRITICALLY"
        assert payload.require_interaction is True
        assert "Reply YES" in payload.sms_text
        assert payload.data["patient"] == {"age": 9, "condition": "surgery"}
        assert [a.action for a in payload.actions] == [
            "accept_emergency", "call_facility", "decline_emergency",
        ]

    @pytest.mark.asyncio
    async def test_normal_campaign_uses_narrow_radius(self, coordinator, normal_request, finder, clock):
        """Test normal priority searches the narrow radius and gets a TTL deadline."""
        campaign_id = await coordinator.create_campaign(normal_request)

        view = await coordinator.get_campaign(campaign_id)
        assert view.priority_score == 50
        assert view.search_radius_km == 15.0
        assert view.expires_at == clock.now + timedelta(hours=24)
        assert [c.kind.value for c in coordinator.scheduler.pending(campaign_id)] == ["expiry"]

    @pytest.mark.asyncio
    async def test_invalid_request_has_no_side_effects(self, coordinator, finder):
        """Test malformed requests are rejected before any lookup."""
        with pytest.raises(InvalidRequestError) as exc_info:
            await coordinator.create_campaign({"blood_type": "O-", "units_needed": 0})

        fields = {error["loc"][0] for error in exc_info.value.errors}
        assert {"units_needed", "facility"} <= fields
        assert finder.calls == []
        assert len(coordinator.store) == 0

    @pytest.mark.asyncio
    async def test_lookup_failure_falls_back_to_known(
        self, dispatcher, retry_queue, clock, sleeper, make_recipient, critical_request
    ):
        """Test candidate lookup failure still notifies known recipients."""
        finder = StaticCandidateFinder()
        finder.find = AsyncMock(side_effect=CandidateLookupError("matching down"))
        coordinator = CampaignCoordinator(
            dispatcher, finder, retry_queue=retry_queue, clock=clock, sleep=sleeper
        )
        critical_request["known_recipients"] = [make_recipient("known-1")]

        campaign_id = await coordinator.create_campaign(critical_request)

        view = await coordinator.get_campaign(campaign_id)
        assert view.status == CampaignStatus.ACTIVE
        assert view.notified_recipient_ids == {"known-1"}
        assert [a.recipient_id for a in view.delivery_attempts] == ["known-1"]
        await coordinator.shutdown()

    @pytest.mark.asyncio
    async def test_known_recipients_not_duplicated(self, coordinator, critical_request, make_recipient, adapters):
        """Test a known recipient also returned by the finder is notified once."""
        critical_request["known_recipients"] = [make_recipient("donor-x")]

        campaign_id = await coordinator.create_campaign(critical_request)

        view = await coordinator.get_campaign(campaign_id)
        assert view.notified_recipient_ids == {"donor-x", "donor-y", "donor-z"}
        sent_to = [r for _, r, _ in adapters[NotificationChannel.WHATSAPP].sent]
        assert sent_to.count("donor-x") == 1


class TestRecordResponse:
    """Tests for response intake."""

    @pytest.mark.asyncio
    async def test_unknown_campaign(self, coordinator):
        """Test responses to unknown campaigns fail."""
        with pytest.raises(CampaignNotFoundError):
            await coordinator.record_response("cmp_missing", "donor-x", "accept")

    @pytest.mark.asyncio
    async def test_unknown_decision(self, coordinator, critical_request):
        """Test decisions other than accept/decline are rejected."""
        campaign_id = await coordinator.create_campaign(critical_request)
        with pytest.raises(InvalidRequestError):
            await coordinator.record_response(campaign_id, "donor-x", "maybe")

    @pytest.mark.asyncio
    async def test_latency_and_average(self, coordinator, normal_request, clock):
        """Test latency is measured from creation and averaged."""
        campaign_id = await coordinator.create_campaign(normal_request)

        clock.advance(minutes=2)
        await coordinator.record_response(campaign_id, "donor-x", "decline", reason="travelling")
        clock.advance(minutes=2)
        view = await coordinator.record_response(campaign_id, "donor-y", ResponseDecision.DECLINE)

        assert [r.latency_seconds for r in view.responses] == [120.0, 240.0]
        assert view.average_response_latency_seconds == 180.0
        assert view.responses[0].reason == "travelling"

    @pytest.mark.asyncio
    async def test_duplicate_response_rejected(self, coordinator, normal_request):
        """Test a second response needs supersede=True."""
        campaign_id = await coordinator.create_campaign(normal_request)
        await coordinator.record_response(campaign_id, "donor-x", "decline")

        with pytest.raises(DuplicateResponseError):
            await coordinator.record_response(campaign_id, "donor-x", "accept")

        view = await coordinator.get_campaign(campaign_id)
        assert len(view.responses) == 1

    @pytest.mark.asyncio
    async def test_supersede_accept_with_decline(self, coordinator, normal_request):
        """Test superseding an accept removes the provisional acceptance."""
        campaign_id = await coordinator.create_campaign(normal_request)
        await coordinator.record_response(campaign_id, "donor-x", "accept")

        view = await coordinator.record_response(campaign_id, "donor-x", "decline", supersede=True)

        assert view.accepted_recipient_ids == ()
        assert [r.active for r in view.responses] == [False, True]
        assert [r.decision for r in view.active_responses] == [ResponseDecision.DECLINE]

    @pytest.mark.asyncio
    async def test_accept_contacts_facility(self, coordinator, normal_request, facility_sink, clock):
        """Test acceptance notifies the facility with an arrival estimate."""
        campaign_id = await coordinator.create_campaign(normal_request)
        clock.advance(minutes=5)

        view = await coordinator.record_response(campaign_id, "donor-y", "accept")

        assert view.status == CampaignStatus.ACTIVE
        assert view.accepted_recipient_ids == ("donor-y",)
        assert view.facility_contacts == 1
        contact = facility_sink.contacts[0]
        assert contact["facility_id"] == "hosp-2"
        assert contact["recipient_id"] == "donor-y"
        # donor-y is 10 km away: 30 + 3 * 10 minutes
        assert contact["estimated_arrival"] == clock.now + timedelta(minutes=60)

    @pytest.mark.asyncio
    async def test_arrival_defaults_for_unknown_distance(self, coordinator, normal_request, facility_sink, clock):
        """Test unknown recipients use the default 5 km distance."""
        campaign_id = await coordinator.create_campaign(normal_request)

        await coordinator.record_response(campaign_id, "walk-in", "accept")

        assert facility_sink.contacts[0]["estimated_arrival"] == clock.now + timedelta(minutes=45)

    @pytest.mark.asyncio
    async def test_facility_failure_is_absorbed(self, coordinator, normal_request, facility_sink):
        """Test facility sink errors do not fail the response."""
        facility_sink.notify_facility = AsyncMock(side_effect=RuntimeError("hospital api down"))
        campaign_id = await coordinator.create_campaign(normal_request)

        view = await coordinator.record_response(campaign_id, "donor-x", "accept")

        assert view.accepted_recipient_ids == ("donor-x",)
        assert view.facility_contacts == 0

    @pytest.mark.asyncio
    async def test_coordination_with_slots(self, coordinator, normal_request, facility_sink, adapters, clock):
        """Test reaching the units needed selects fastest responders with slots."""
        campaign_id = await coordinator.create_campaign(normal_request)
        clock.advance(minutes=3)
        await coordinator.record_response(campaign_id, "donor-z", "accept")
        clock.advance(minutes=1)
        await coordinator.record_response(campaign_id, "donor-x", "decline")
        clock.advance(minutes=1)
        view = await coordinator.record_response(campaign_id, "donor-y", "accept")

        assert view.status == CampaignStatus.COORDINATING
        assert view.coordinated_at == clock.now
        assert [s.recipient_id for s in view.selected_recipients] == ["donor-z", "donor-y"]
        assert [s.slot_start for s in view.selected_recipients] == [
            clock.now + timedelta(minutes=60),
            clock.now + timedelta(minutes=90),
        ]
        assert view.selected_recipients[0].slot_end == view.selected_recipients[1].slot_start
        assert len(view.selected_recipients) <= view.units_needed

        assert facility_sink.recipient_lists == [{
            "campaign_id": campaign_id,
            "facility_id": "hosp-2",
            "recipient_ids": ["donor-z", "donor-y"],
        }]
        # Two accepts plus the final list
        assert view.facility_contacts == 3

        slot_payloads = [
            p for _, _, p in adapters[NotificationChannel.PUSH].sent
            if p.data.get("template") == "emergency_time_slot"
        ]
        assert len(slot_payloads) == 2

    @pytest.mark.asyncio
    async def test_partial_accept_sends_acceptance(self, coordinator, normal_request, adapters, clock):
        """Test an accept that leaves units outstanding thanks the donor."""
        campaign_id = await coordinator.create_campaign(normal_request)
        clock.advance(minutes=5)

        await coordinator.record_response(campaign_id, "donor-x", "accept")

        acks = [
            (r, p) for _, r, p in adapters[NotificationChannel.PUSH].sent
            if p.data.get("template") == "emergency_acceptance"
        ]
        assert [r for r, _ in acks] == ["donor-x"]
        _, payload = acks[0]
        assert "General Hospital" in payload.body
        # donor-x is 4 km away: 30 + 3 * 4 minutes
        assert payload.data["estimated_arrival"] == (clock.now + timedelta(minutes=42)).isoformat()

    @pytest.mark.asyncio
    async def test_completing_accept_sends_slot_only(self, coordinator, critical_request, adapters):
        """Test the accept that fills the request gets the slot, not the thank-you."""
        campaign_id = await coordinator.create_campaign(critical_request)

        await coordinator.record_response(campaign_id, "donor-x", "accept")

        templates = [
            p.data.get("template")
            for adapter in adapters.values()
            for _, r, p in adapter.sent
            if r == "donor-x"
        ]
        assert "emergency_acceptance" not in templates
        assert "emergency_time_slot" in templates

    @pytest.mark.asyncio
    async def test_fractional_units(self, coordinator, normal_request):
        """Test 1.5 units needs two acceptances."""
        normal_request["units_needed"] = 1.5
        campaign_id = await coordinator.create_campaign(normal_request)

        view = await coordinator.record_response(campaign_id, "donor-x", "accept")
        assert view.status == CampaignStatus.ACTIVE

        view = await coordinator.record_response(campaign_id, "donor-y", "accept")
        assert view.status == CampaignStatus.COORDINATING
        assert len(view.selected_recipients) == 2

    @pytest.mark.asyncio
    async def test_responses_rejected_once_coordinating(self, coordinator, critical_request):
        """Test mutations fail when the campaign left ACTIVE."""
        campaign_id = await coordinator.create_campaign(critical_request)
        await coordinator.record_response(campaign_id, "donor-x", "accept")

        with pytest.raises(CampaignClosedError) as exc_info:
            await coordinator.record_response(campaign_id, "donor-y", "accept")

        assert exc_info.value.status == CampaignStatus.COORDINATING
        view = await coordinator.get_campaign(campaign_id)
        assert view.selected_recipient_ids == {"donor-x"}

    @pytest.mark.asyncio
    async def test_coordination_cancels_escalation_checks(self, coordinator, critical_request):
        """Test coordination keeps only the deadline timer."""
        campaign_id = await coordinator.create_campaign(critical_request)
        await coordinator.record_response(campaign_id, "donor-x", "accept")

        kinds = [c.kind.value for c in coordinator.scheduler.pending(campaign_id)]
        assert kinds == ["expiry"]

    @pytest.mark.asyncio
    async def test_decline_fanout_expands_search(self, coordinator, critical_request, finder):
        """Test ten declines without an acceptance widen the search once more."""
        campaign_id = await coordinator.create_campaign(critical_request)

        for i in range(9):
            await coordinator.record_response(campaign_id, f"r{i}", "decline")
        assert len(finder.calls) == 1

        view = await coordinator.record_response(campaign_id, "r9", "decline")

        assert len(finder.calls) == 2
        assert finder.calls[-1]["radius_km"] == 75.0
        assert "donor-far" in view.notified_recipient_ids
        # Fan-out does not escalate
        assert view.priority_score == 155
        assert view.search_radius_km == 50.0
        assert view.escalation_count == 0

    @pytest.mark.asyncio
    async def test_audit_sink_receives_records(
        self, dispatcher, retry_queue, finder, clock, sleeper, normal_request
    ):
        """Test deliveries and responses reach the audit sink."""
        audit = InMemoryAuditSink()
        coordinator = CampaignCoordinator(
            dispatcher, finder, retry_queue=retry_queue, audit_sink=audit, clock=clock, sleep=sleeper
        )
        campaign_id = await coordinator.create_campaign(normal_request)
        await coordinator.record_response(campaign_id, "donor-x", "decline")

        assert len(audit.deliveries) == 3
        assert audit.responses[0][0] == campaign_id
        assert audit.responses[0][1].decision == ResponseDecision.DECLINE
        await coordinator.shutdown()


class TestEscalate:
    """Tests for manual escalation."""

    @pytest.mark.asyncio
    async def test_escalate_critical(self, coordinator, critical_request, finder):
        """Test escalation raises priority by 25 and widens radius by 1.5x."""
        campaign_id = await coordinator.create_campaign(critical_request)

        view = await coordinator.escalate(campaign_id)

        assert view.priority_score == 180
        assert view.search_radius_km == 75.0
        assert view.status == CampaignStatus.ACTIVE
        assert finder.calls[-1]["exclude_ids"] == {"donor-x", "donor-y", "donor-z"}
        assert "donor-far" in view.notified_recipient_ids

    @pytest.mark.asyncio
    async def test_escalation_payload_marked(self, coordinator, critical_request, adapters):
        """Test newly reached recipients get the escalated message."""
        campaign_id = await coordinator.create_campaign(critical_request)
        await coordinator.escalate(campaign_id)

        payloads = {r: p for _, r, p in adapters[NotificationChannel.WHATSAPP].sent}
        assert payloads["donor-far"].title.startswith("STILL NEEDED")
        assert payloads["donor-far"].data["escalated"] is True

    @pytest.mark.asyncio
    async def test_priority_monotonic_and_clamped(self, coordinator, critical_request):
        """Test repeated escalation never lowers priority and stops at 200."""
        campaign_id = await coordinator.create_campaign(critical_request)

        scores = []
        for _ in range(4):
            scores.append((await coordinator.escalate(campaign_id)).priority_score)

        assert scores == [180, 200, 200, 200]
        assert scores == sorted(scores)

    @pytest.mark.asyncio
    async def test_low_priority_escalation_uses_tier_radius(self, coordinator, normal_request):
        """Test escalation takes the larger of current and tier radius before widening."""
        campaign_id = await coordinator.create_campaign(normal_request)

        view = await coordinator.escalate(campaign_id)

        assert view.priority_score == 75
        assert view.search_radius_km == 22.5

    @pytest.mark.asyncio
    async def test_escalate_closed_campaign(self, coordinator, critical_request):
        """Test closed campaigns cannot be escalated."""
        campaign_id = await coordinator.create_campaign(critical_request)
        await coordinator.close_campaign(campaign_id, "fulfilled")

        with pytest.raises(CampaignClosedError):
            await coordinator.escalate(campaign_id)


class TestCloseCampaign:
    """Tests for campaign closure."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, coordinator, critical_request, clock):
        """Test a second close leaves state unchanged."""
        campaign_id = await coordinator.create_campaign(critical_request)

        first = await coordinator.close_campaign(campaign_id, CloseReason.CANCELLED)
        clock.advance(minutes=10)
        second = await coordinator.close_campaign(campaign_id, CloseReason.CANCELLED)

        assert first.status == CampaignStatus.EXPIRED
        assert first.to_dict() == second.to_dict()

    @pytest.mark.asyncio
    async def test_fulfilled_resolves(self, coordinator, critical_request):
        """Test fulfilled closure resolves the campaign."""
        campaign_id = await coordinator.create_campaign(critical_request)
        await coordinator.record_response(campaign_id, "donor-x", "accept")

        view = await coordinator.close_campaign(campaign_id, "fulfilled")

        assert view.status == CampaignStatus.RESOLVED
        assert view.close_reason == CloseReason.FULFILLED
        assert coordinator.scheduler.pending(campaign_id) == []

    @pytest.mark.asyncio
    async def test_closed_campaign_rejects_responses(self, coordinator, critical_request):
        """Test responses after closure fail with CampaignClosedError."""
        campaign_id = await coordinator.create_campaign(critical_request)
        await coordinator.close_campaign(campaign_id)

        with pytest.raises(CampaignClosedError):
            await coordinator.record_response(campaign_id, "donor-x", "accept")

    @pytest.mark.asyncio
    async def test_close_unknown(self, coordinator):
        with pytest.raises(CampaignNotFoundError):
            await coordinator.close_campaign("cmp_missing")

    @pytest.mark.asyncio
    async def test_invalid_reason(self, coordinator, critical_request):
        campaign_id = await coordinator.create_campaign(critical_request)
        with pytest.raises(InvalidRequestError):
            await coordinator.close_campaign(campaign_id, "bored")

    @pytest.mark.asyncio
    async def test_close_drops_retries(self, coordinator, critical_request, adapters, retry_queue):
        """Test closing drops the campaign's pending retry tasks."""
        for adapter in adapters.values():
            adapter.fail = True
        campaign_id = await coordinator.create_campaign(critical_request)
        assert len(retry_queue.pending(campaign_id)) == 3

        await coordinator.close_campaign(campaign_id)

        assert retry_queue.pending(campaign_id) == []

    @pytest.mark.asyncio
    async def test_late_delivery_does_not_mutate_closed_campaign(
        self, coordinator, critical_request, dispatcher, make_recipient
    ):
        """Test delivery results arriving after closure are ignored."""
        campaign_id = await coordinator.create_campaign(critical_request)
        closed = await coordinator.close_campaign(campaign_id)
        view = await coordinator.get_campaign(campaign_id)
        recipient = make_recipient("donor-x")

        await dispatcher.dispatch(recipient, coordinator.messages.build_request(view, recipient))

        after = await coordinator.get_campaign(campaign_id)
        assert len(after.delivery_attempts) == len(closed.delivery_attempts)

    @pytest.mark.asyncio
    async def test_retry_exhaustion_recorded(self, coordinator, critical_request, adapters, retry_queue, clock):
        """Test permanently failed recipients are recorded on the campaign."""
        for adapter in adapters.values():
            adapter.fail = True
        campaign_id = await coordinator.create_campaign(critical_request)

        for seconds in (5, 10, 20):
            clock.advance(seconds=seconds)
            await retry_queue.tick()

        view = await coordinator.get_campaign(campaign_id)
        assert sorted(view.permanent_failures) == ["donor-x", "donor-y", "donor-z"]
        assert len(retry_queue) == 0


class TestListAndConfig:
    """Tests for listing and configuration."""

    @pytest.mark.asyncio
    async def test_list_campaigns(self, coordinator, critical_request, normal_request):
        first = await coordinator.create_campaign(critical_request)
        second = await coordinator.create_campaign(normal_request)
        await coordinator.close_campaign(first)

        assert {v.id for v in await coordinator.list_campaigns()} == {first, second}
        active = await coordinator.list_campaigns(CampaignStatus.ACTIVE)
        assert [v.id for v in active] == [second]

    def test_engine_config_from_env(self, monkeypatch):
        """Test EMERGENCY_* overrides."""
        monkeypatch.setenv("EMERGENCY_RETRY_MAX_RETRIES", "5")
        monkeypatch.setenv("EMERGENCY_RETRY_EXPONENTIAL_BACKOFF", "false")
        monkeypatch.setenv("EMERGENCY_CHANNEL_ORDER", "sms, email")
        monkeypatch.setenv("EMERGENCY_CRITICAL_CHECK_DELAY_SECONDS", "60")

        config = EngineConfig.from_env()

        assert config.retry_max_retries == 5
        assert config.retry_exponential_backoff is False
        assert config.channel_order == [NotificationChannel.SMS, NotificationChannel.EMAIL]
        assert config.critical_check_delay_seconds == 60.0
        assert config.decline_fanout_threshold == 10
        assert "gateway_api_key" not in config.to_dict()


class TestCampaignTransitions:
    """Tests for checked status changes."""

    @pytest.mark.asyncio
    async def test_coordinating_cannot_return_to_active(self, coordinator, critical_request):
        campaign_id = await coordinator.create_campaign(critical_request)
        await coordinator.record_response(campaign_id, "donor-x", "accept")
        campaign = coordinator.store.get(campaign_id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            campaign.transition(CampaignStatus.ACTIVE)

        assert exc_info.value.current == CampaignStatus.COORDINATING
        assert exc_info.value.target == CampaignStatus.ACTIVE
        assert campaign.status == CampaignStatus.COORDINATING

    @pytest.mark.asyncio
    async def test_terminal_states_are_final(self, coordinator, critical_request):
        """Test nothing leaves RESOLVED or EXPIRED."""
        campaign_id = await coordinator.create_campaign(critical_request)
        await coordinator.close_campaign(campaign_id, CloseReason.FULFILLED)
        campaign = coordinator.store.get(campaign_id)

        for status in CampaignStatus:
            assert campaign.can_transition(status) is False
        with pytest.raises(InvalidTransitionError):
            campaign.transition(CampaignStatus.EXPIRED)

    @pytest.mark.asyncio
    async def test_close_from_coordinating(self, coordinator, critical_request):
        campaign_id = await coordinator.create_campaign(critical_request)
        await coordinator.record_response(campaign_id, "donor-x", "accept")

        view = await coordinator.close_campaign(campaign_id, CloseReason.CANCELLED)

        assert view.status == CampaignStatus.EXPIRED


class TestConcurrency:
    """Tests for operations racing on one campaign."""

    @staticmethod
    def gate(target, name):
        """Make target.name wait on an event before running."""
        event = asyncio.Event()
        original = getattr(target, name)

        async def gated(*args, **kwargs):
            await event.wait()
            return await original(*args, **kwargs)

        setattr(target, name, gated)
        return event

    @pytest.mark.asyncio
    async def test_close_during_escalation_fanout(
        self, coordinator, critical_request, adapters, facility_sink
    ):
        """Test a closure landing while escalation notifies stops its side effects."""
        campaign_id = await coordinator.create_campaign(critical_request)

        escalated, closed = await asyncio.gather(
            coordinator.escalate(campaign_id),
            coordinator.close_campaign(campaign_id),
        )

        assert closed.status == CampaignStatus.EXPIRED
        assert escalated.status == CampaignStatus.EXPIRED
        sent_to = [r for adapter in adapters.values() for _, r, _ in adapter.sent]
        assert "donor-far" not in sent_to
        assert facility_sink.emergency_contact_alerts == []
        assert facility_sink.facility_alerts == []

    @pytest.mark.asyncio
    async def test_close_waiting_on_escalation_lock(
        self, coordinator, critical_request, finder, adapters, facility_sink, retry_queue, settle
    ):
        """Test a closure queued behind an escalation's lookup wins before delivery."""
        for adapter in adapters.values():
            adapter.fail = True
        campaign_id = await coordinator.create_campaign(critical_request)
        for adapter in adapters.values():
            adapter.sent.clear()
            adapter.fail = False
        gate = self.gate(finder, "find")

        escalating = asyncio.create_task(coordinator.escalate(campaign_id))
        await settle()
        closing = asyncio.create_task(coordinator.close_campaign(campaign_id))
        await settle()
        assert not closing.done()

        gate.set()
        await asyncio.gather(escalating, closing)

        view = await coordinator.get_campaign(campaign_id)
        assert view.status == CampaignStatus.EXPIRED
        assert view.escalation_count == 1
        assert all(adapter.sent == [] for adapter in adapters.values())
        assert facility_sink.emergency_contact_alerts == []
        assert retry_queue.pending(campaign_id) == []

    @pytest.mark.asyncio
    async def test_close_during_acceptance_followup(
        self, coordinator, normal_request, adapters, facility_sink, settle
    ):
        """Test an accept whose follow-up runs after closure sends nothing more."""
        campaign_id = await coordinator.create_campaign(normal_request)
        for adapter in adapters.values():
            adapter.sent.clear()
        gate = self.gate(facility_sink, "notify_facility")

        responding = asyncio.create_task(
            coordinator.record_response(campaign_id, "donor-x", "accept")
        )
        await settle()
        await coordinator.close_campaign(campaign_id, CloseReason.CANCELLED)
        gate.set()
        view = await responding

        assert view.status == CampaignStatus.EXPIRED
        assert view.accepted_recipient_ids == ("donor-x",)
        assert view.facility_contacts == 0
        assert all(adapter.sent == [] for adapter in adapters.values())

    @pytest.mark.asyncio
    async def test_failures_after_close_are_not_retried(
        self, coordinator, critical_request, adapters, retry_queue
    ):
        """Test deliveries failing after closure never reach the retry queue."""
        campaign_id = await coordinator.create_campaign(critical_request)
        for adapter in adapters.values():
            adapter.fail = True

        await asyncio.gather(
            coordinator.escalate(campaign_id),
            coordinator.close_campaign(campaign_id),
        )

        assert retry_queue.pending(campaign_id) == []
        assert len(retry_queue) == 0


class TestCreateEngine:
    """Tests for the engine factory."""

    @pytest.mark.asyncio
    async def test_engine_shares_and_closes_one_client(self):
        """Test adapters share one client that shutdown closes."""
        engine = create_engine(
            EngineConfig(),
            candidate_finder=StaticCandidateFinder(),
            facility_sink=LoggingFacilityContactSink(),
        )

        clients = {id(adapter._client) for adapter in engine.dispatcher._adapters.values()}
        assert len(clients) == 1
        client = next(iter(engine.dispatcher._adapters.values()))._client
        assert client.is_closed is False

        await engine.shutdown()

        assert client.is_closed is True

    @pytest.mark.asyncio
    async def test_caller_client_left_open(self):
        """Test a client passed in stays under the caller's control."""
        async with httpx.AsyncClient() as client:
            engine = create_engine(EngineConfig(), client=client)

            assert engine.candidate_finder._client is client
            assert engine.facility_sink._client is client
            await engine.shutdown()

            assert client.is_closed is False
