"""
Retry Queue
===========

In-memory queue of deliveries whose channels all failed. A background tick
replays eligible tasks through the dispatcher with exponential backoff
until they succeed or exceed the retry budget.

Best-effort and non-durable: pending retries are lost if the process exits.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from datetime import datetime, timedelta
from collections import deque
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Deque, Dict, List, Optional

import structlog

from .base import (
    DispatchOutcome,
    RetryExhaustedError,
    RetryTask,
    mask_destination,
)

if TYPE_CHECKING:
    from .dispatcher import ChannelDispatcher

logger = structlog.get_logger(__name__)

ResultListener = Callable[[RetryTask, DispatchOutcome], Any]
ExhaustedListener = Callable[[RetryTask, RetryExhaustedError], Any]

# Recent permanent failures kept for inspection
EXHAUSTED_HISTORY = 100


class RetryQueue:
    """
    Replays failed deliveries on a backoff schedule.

    Usage:
        queue = RetryQueue(dispatcher, max_retries=3, base_delay_seconds=5)
        dispatcher.set_retry_queue(queue)
        queue.start()
        ...
        await queue.stop()
    """

    def __init__(
        self,
        dispatcher: Optional["ChannelDispatcher"] = None,
        max_retries: int = 3,
        base_delay_seconds: float = 5.0,
        exponential_backoff: bool = True,
        tick_seconds: float = 30.0,
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        exhausted_history: int = EXHAUSTED_HISTORY,
    ):
        self.dispatcher = dispatcher
        self.max_retries = max_retries
        self.base_delay_seconds = base_delay_seconds
        self.exponential_backoff = exponential_backoff
        self.tick_seconds = tick_seconds
        self._clock = clock
        self._sleep = sleep

        self._tasks: Dict[str, RetryTask] = {}
        self._exhausted: Deque[RetryExhaustedError] = deque(maxlen=exhausted_history)
        self._exhausted_count = 0
        self._tick_lock = asyncio.Lock()
        self._runner: Optional[asyncio.Task] = None

        self._result_listeners: List[ResultListener] = []
        self._exhausted_listeners: List[ExhaustedListener] = []

    def __len__(self) -> int:
        return len(self._tasks)

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def backoff_delay(self, retry_number: int) -> float:
        """Delay in seconds before the given retry (1-based)."""
        if not self.exponential_backoff:
            return self.base_delay_seconds
        return self.base_delay_seconds * (2 ** (retry_number - 1))

    def on_result(self, callback: ResultListener) -> None:
        """Register callback for every completed retry dispatch."""
        self._result_listeners.append(callback)

    def on_exhausted(self, callback: ExhaustedListener) -> None:
        """Register callback for permanently failed deliveries."""
        self._exhausted_listeners.append(callback)

    # -------------------------------------------------------------------------
    # Queue Operations
    # -------------------------------------------------------------------------

    async def enqueue(self, task: RetryTask) -> None:
        """Add a task to the queue."""
        if task.attempts >= self.max_retries:
            logger.warning(
                "retry_task_rejected",
                task_id=task.id,
                attempts=task.attempts,
                max_retries=self.max_retries,
            )
            return

        self._tasks[task.id] = task
        logger.info(
            "retry_task_queued",
            task_id=task.id,
            campaign_id=task.campaign_id,
            recipient_id=task.recipient.id,
            next_eligible_at=task.next_eligible_at.isoformat(),
        )

    def get(self, task_id: str) -> Optional[RetryTask]:
        return self._tasks.get(task_id)

    def pending(self, campaign_id: Optional[str] = None) -> List[RetryTask]:
        """List pending tasks, optionally for one campaign."""
        return [
            t for t in self._tasks.values()
            if campaign_id is None or t.campaign_id == campaign_id
        ]

    def due_tasks(self, now: Optional[datetime] = None) -> List[RetryTask]:
        """Tasks whose next-eligible time has passed."""
        now = now or self._clock()
        return sorted(
            (
                t for t in self._tasks.values()
                if t.next_eligible_at <= now and t.attempts < self.max_retries
            ),
            key=lambda t: t.next_eligible_at,
        )

    def drop_campaign(self, campaign_id: str) -> int:
        """Drop all tasks for a campaign. Returns the number dropped."""
        task_ids = [t.id for t in self._tasks.values() if t.campaign_id == campaign_id]
        for task_id in task_ids:
            del self._tasks[task_id]
        if task_ids:
            logger.info("retry_tasks_dropped", campaign_id=campaign_id, count=len(task_ids))
        return len(task_ids)

    def clear(self) -> int:
        """Remove every pending task."""
        size = len(self._tasks)
        self._tasks.clear()
        logger.info("retry_queue_cleared", removed=size)
        return size

    @property
    def exhausted(self) -> List[RetryExhaustedError]:
        """Most recent permanent failures, oldest first."""
        return list(self._exhausted)

    @property
    def exhausted_count(self) -> int:
        return self._exhausted_count

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    async def tick(self) -> int:
        """Run one pass over eligible tasks. Returns the number processed."""
        if self.dispatcher is None:
            raise RuntimeError("RetryQueue has no dispatcher")

        async with self._tick_lock:
            due = self.due_tasks()
            if not due:
                return 0

            logger.info("retry_tick", due=len(due), queued=len(self._tasks))
            await asyncio.gather(*[self._retry(task) for task in due])
            return len(due)

    async def _retry(self, task: RetryTask) -> None:
        if task.id not in self._tasks:
            return

        retry_number = task.attempts + 1
        logger.info(
            "retry_attempt",
            task_id=task.id,
            retry_number=retry_number,
            recipient_id=task.recipient.id,
        )

        outcome = await self.dispatcher.dispatch(
            task.recipient,
            task.payload,
            task.channels,
            attempt_number=retry_number + 1,
            enqueue_on_failure=False,
            abort=lambda: task.id not in self._tasks,
        )

        if task.id not in self._tasks:
            # Dropped while in flight (campaign closed)
            logger.info("retry_result_discarded", task_id=task.id, campaign_id=task.campaign_id)
            return

        if outcome.success:
            del self._tasks[task.id]
            logger.info(
                "retry_succeeded",
                task_id=task.id,
                channel=outcome.channel.value if outcome.channel else None,
            )
            await self._emit(self._result_listeners, task, outcome)
            return

        task.attempts += 1
        task.last_error = outcome.error

        if task.attempts >= self.max_retries:
            del self._tasks[task.id]
            error = RetryExhaustedError(
                f"Delivery to {task.recipient.id} failed after {task.attempts} retries",
                campaign_id=task.campaign_id,
                recipient_id=task.recipient.id,
                attempts=task.attempts,
            )
            self._exhausted.append(error)
            self._exhausted_count += 1
            logger.error(
                "retry_exhausted",
                task_id=task.id,
                campaign_id=task.campaign_id,
                recipient_id=task.recipient.id,
                attempts=task.attempts,
            )
            await self._emit(self._result_listeners, task, outcome)
            await self._emit(self._exhausted_listeners, task, error)
            return

        delay = self.backoff_delay(task.attempts + 1)
        task.next_eligible_at = self._clock() + timedelta(seconds=delay)
        logger.info("retry_rescheduled", task_id=task.id, delay_seconds=delay)
        await self._emit(self._result_listeners, task, outcome)

    async def _emit(self, listeners: List[Callable[..., Any]], *args: Any) -> None:
        for callback in listeners:
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("retry_listener_failed")

    # -------------------------------------------------------------------------
    # Background Loop
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def start(self) -> None:
        """Start the background tick loop."""
        if self.is_running:
            return
        self._runner = asyncio.create_task(self._run())
        logger.info("retry_processor_started", tick_seconds=self.tick_seconds)

    async def stop(self) -> None:
        """Stop the background tick loop."""
        if self._runner is None:
            return
        self._runner.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._runner
        self._runner = None
        logger.info("retry_processor_stopped")

    async def _run(self) -> None:
        while True:
            await self._sleep(self.tick_seconds)
            try:
                await self.tick()
            except Exception:
                logger.exception("retry_tick_failed")

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def status(self) -> List[Dict[str, Any]]:
        """Per-task view with masked contact details."""
        return [
            {
                "id": t.id,
                "campaign_id": t.campaign_id,
                "recipient_id": t.recipient.id,
                "phone": mask_destination(t.recipient.phone),
                "attempts": t.attempts,
                "next_eligible_at": t.next_eligible_at.isoformat(),
                "channels": [c.value for c in t.channels],
                "last_error": t.last_error,
            }
            for t in self._tasks.values()
        ]

    def stats(self) -> Dict[str, Any]:
        return {
            "queue_size": len(self._tasks),
            "max_retries": self.max_retries,
            "base_delay_seconds": self.base_delay_seconds,
            "exponential_backoff": self.exponential_backoff,
            "tick_seconds": self.tick_seconds,
            "exhausted": self._exhausted_count,
        }


__all__ = ["RetryQueue"]
