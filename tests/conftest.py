"""Shared pytest fixtures for testing."""

import asyncio
import os
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from cfb_core.emergency import (
    CampaignCoordinator,
    EngineConfig,
    LoggingFacilityContactSink,
    StaticCandidateFinder,
)
from cfb_core.notifications import (
    ChannelAdapter,
    ChannelDispatcher,
    DeliveryError,
    NotificationChannel,
    NotificationRecipient,
    RetryQueue,
)

# Set test environment
os.environ["ENVIRONMENT"] = "development"


# =============================================================================
# Time Control
# =============================================================================


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 6, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeSleeper:
    """Stand-in for asyncio.sleep whose waits are released by the test."""

    def __init__(self):
        self.delays: List[float] = []
        self._waiters: List[Tuple[float, asyncio.Future]] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((delay, future))
        await future

    def pending(self) -> List[float]:
        return [d for d, f in self._waiters if not f.done()]

    def release(self, delay: Optional[float] = None) -> int:
        """Wake sleepers waiting on `delay` (all when None)."""
        released = 0
        for d, future in self._waiters:
            if not future.done() and (delay is None or d == delay):
                future.set_result(None)
                released += 1
        return released


async def _settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


# =============================================================================
# Channel Fakes
# =============================================================================


class FakeAdapter(ChannelAdapter):
    """In-memory adapter that succeeds, fails or raises on demand."""

    def __init__(
        self,
        channel: NotificationChannel,
        fail: bool = False,
        raises: Optional[Exception] = None,
    ):
        self._channel = channel
        self.fail = fail
        self.raises = raises
        self.sent: List[Tuple[str, str, object]] = []

    @property
    def channel(self) -> NotificationChannel:
        return self._channel

    async def _deliver(self, destination, recipient, payload):
        self.sent.append((destination, recipient.id, payload))
        if self.raises is not None:
            raise self.raises
        if self.fail:
            raise DeliveryError("provider down", self._channel, "PROVIDER_DOWN")
        return f"{self._channel.value}-{len(self.sent)}"


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> ManualClock:
    """Manual clock starting at a fixed instant."""
    return ManualClock()


@pytest.fixture
def sleeper() -> FakeSleeper:
    """Controllable sleep."""
    return FakeSleeper()


@pytest.fixture
def settle() -> Callable:
    """Let scheduled tasks run up to their next suspension point."""
    return _settle


@pytest.fixture
def make_recipient() -> Callable[..., NotificationRecipient]:
    """Factory for recipients reachable on every channel."""

    def factory(recipient_id: str, **overrides) -> NotificationRecipient:
        suffix = f"{sum(map(ord, recipient_id)) % 10000:04d}"
        data = {
            "id": recipient_id,
            "name": recipient_id.title(),
            "phone": f"+1555000{suffix}",
            "email": f"{recipient_id}@example.com",
            "push_token": f"push-{recipient_id}",
            "compatibility_score": 0.5,
            "distance_km": 5.0,
        }
        data.update(overrides)
        return NotificationRecipient(**data)

    return factory


@pytest.fixture
def adapters() -> Dict[NotificationChannel, FakeAdapter]:
    """One succeeding fake adapter per channel."""
    return {channel: FakeAdapter(channel) for channel in NotificationChannel}


@pytest.fixture
def dispatcher(adapters, clock) -> ChannelDispatcher:
    """Dispatcher over the fake adapters."""
    return ChannelDispatcher(adapters, clock=clock)


@pytest.fixture
def retry_queue(dispatcher, clock, sleeper) -> RetryQueue:
    """Retry queue attached to the dispatcher."""
    queue = RetryQueue(dispatcher, max_retries=3, base_delay_seconds=5.0, clock=clock, sleep=sleeper)
    dispatcher.set_retry_queue(queue)
    return queue


@pytest.fixture
def donors(make_recipient) -> List[NotificationRecipient]:
    """Candidate donors at increasing distances."""
    return [
        make_recipient("donor-x", compatibility_score=0.9, distance_km=4.0),
        make_recipient("donor-y", compatibility_score=0.8, distance_km=10.0),
        make_recipient("donor-z", compatibility_score=0.7, distance_km=12.0),
        make_recipient("donor-far", compatibility_score=0.6, distance_km=60.0),
    ]


@pytest.fixture
def finder(donors) -> StaticCandidateFinder:
    """Candidate finder over the test donors."""
    return StaticCandidateFinder(donors)


@pytest.fixture
def facility_sink() -> LoggingFacilityContactSink:
    """Recording facility sink."""
    return LoggingFacilityContactSink()


@pytest_asyncio.fixture
async def coordinator(dispatcher, retry_queue, finder, facility_sink, clock, sleeper):
    """Coordinator wired to in-memory collaborators and controlled time."""
    coordinator = CampaignCoordinator(
        dispatcher,
        finder,
        facility_sink=facility_sink,
        retry_queue=retry_queue,
        config=EngineConfig(),
        clock=clock,
        sleep=sleeper,
    )
    yield coordinator
    await coordinator.shutdown()


@pytest.fixture
def critical_request(clock) -> dict:
    """Critical O- request needed within the hour."""
    return {
        "blood_type": "O-",
        "units_needed": 1,
        "urgency": "critical",
        "needed_by": clock.now + timedelta(hours=1),
        "facility": {
            "id": "hosp-1",
            "name": "City Hospital",
            "phone": "+15550100",
            "address": "1 Main St",
            "latitude": 40.71,
            "longitude": -74.0,
        },
    }


@pytest.fixture
def normal_request() -> dict:
    """Routine A+ request."""
    return {
        "blood_type": "A+",
        "units_needed": 2,
        "urgency": "normal",
        "facility": {"id": "hosp-2", "name": "General Hospital"},
    }


@pytest.fixture
def fake_adapter():
    """The fake adapter class, for tests that build their own channel set."""
    return FakeAdapter
