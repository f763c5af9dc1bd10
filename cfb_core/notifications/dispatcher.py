"""
Channel Dispatcher Module

Delivers one payload to one recipient by trying an ordered list of channels
until one succeeds. Fallback order is plain data: the list is walked once,
front to back, and no channel is retried within the same call. Recipients
whose channels all fail are handed to the retry queue.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from cfb_core.core.logging import LogContext, get_context_logger

from .base import (
    DEFAULT_CHANNEL_ORDER,
    DeliveryAttempt,
    DeliveryStatus,
    DispatchOutcome,
    NotificationChannel,
    NotificationPayload,
    NotificationPriority,
    NotificationRecipient,
    RetryTask,
    SendResult,
    mask_destination,
)
from .channels import ChannelAdapter

if TYPE_CHECKING:
    from .retry import RetryQueue


logger = get_context_logger(__name__)

AttemptListener = Callable[[DeliveryAttempt], Any]
AbortCheck = Callable[[], bool]


def build_channel_order(
    channels: Sequence[NotificationChannel],
    recipient: NotificationRecipient,
    priority: NotificationPriority = NotificationPriority.NORMAL,
) -> List[NotificationChannel]:
    """Order channels for a recipient.

    Preferred channel first; critical notifications put the chat-app channel
    ahead of everything. Channels the recipient disabled or has no address
    for are dropped.
    """
    ordered: List[NotificationChannel] = []
    for channel in channels:
        if channel not in ordered:
            ordered.append(channel)

    preferred = recipient.preferred_channel
    if preferred and preferred in ordered:
        ordered = [preferred] + [c for c in ordered if c != preferred]

    if priority == NotificationPriority.CRITICAL and NotificationChannel.WHATSAPP in ordered:
        ordered = [NotificationChannel.WHATSAPP] + [
            c for c in ordered if c != NotificationChannel.WHATSAPP
        ]

    return [c for c in ordered if recipient.can_receive(c)]


@dataclass
class BulkDispatchResult:
    """Aggregate result of a bulk dispatch."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    outcomes: List[DispatchOutcome] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class ChannelDispatcher:
    """
    Dispatches notifications across channels with ordered fallback.

    Features:
    - Ordered channel fallback, stopping at the first success
    - Adapter exceptions treated as channel failures
    - Global concurrency cap on in-flight sends
    - Hand-off of fully failed deliveries to the retry queue
    """

    def __init__(
        self,
        adapters: Union[Dict[NotificationChannel, ChannelAdapter], Iterable[ChannelAdapter]],
        retry_queue: Optional["RetryQueue"] = None,
        channel_order: Optional[Sequence[NotificationChannel]] = None,
        max_concurrent: int = 50,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        if isinstance(adapters, dict):
            self._adapters = dict(adapters)
        else:
            self._adapters = {adapter.channel: adapter for adapter in adapters}

        self.retry_queue = retry_queue
        self.channel_order = list(channel_order or DEFAULT_CHANNEL_ORDER)
        self._clock = clock

        # Global rate limiting
        self._global_semaphore = asyncio.Semaphore(max_concurrent)

        # Event callbacks
        self._attempt_listeners: List[AttemptListener] = []

    @property
    def channels(self) -> List[NotificationChannel]:
        """Channels that have an adapter registered."""
        return list(self._adapters.keys())

    def register_adapter(self, adapter: ChannelAdapter) -> None:
        """Register or replace the adapter for a channel."""
        self._adapters[adapter.channel] = adapter

    def set_retry_queue(self, retry_queue: "RetryQueue") -> None:
        """Attach the retry queue used for fully failed deliveries."""
        self.retry_queue = retry_queue

    def on_attempt(self, callback: AttemptListener) -> None:
        """Register callback invoked for every delivery attempt."""
        self._attempt_listeners.append(callback)

    def order_for(
        self,
        recipient: NotificationRecipient,
        priority: NotificationPriority = NotificationPriority.NORMAL,
    ) -> List[NotificationChannel]:
        """Get the channel order for a recipient and priority."""
        return build_channel_order(self.channel_order, recipient, priority)

    async def dispatch(
        self,
        recipient: NotificationRecipient,
        payload: NotificationPayload,
        channel_order: Optional[Sequence[NotificationChannel]] = None,
        attempt_number: int = 1,
        enqueue_on_failure: bool = True,
        abort: Optional[AbortCheck] = None,
    ) -> DispatchOutcome:
        """
        Deliver a payload to a recipient.

        Args:
            recipient: Notification recipient
            payload: Content to deliver
            channel_order: Channels to try, in order. Derived from the
                recipient and payload priority when omitted.
            attempt_number: Delivery attempt number recorded on each try
            enqueue_on_failure: Hand the delivery to the retry queue when
                every channel fails
            abort: Checked before every channel and before the retry
                hand-off; delivery stops once it returns True

        Returns:
            DispatchOutcome with one DeliveryAttempt per channel tried
        """
        with LogContext(campaign_id=payload.campaign_id, recipient_id=recipient.id):
            return await self._dispatch(
                recipient, payload, channel_order, attempt_number, enqueue_on_failure, abort
            )

    async def _dispatch(
        self,
        recipient: NotificationRecipient,
        payload: NotificationPayload,
        channel_order: Optional[Sequence[NotificationChannel]],
        attempt_number: int,
        enqueue_on_failure: bool,
        abort: Optional[AbortCheck],
    ) -> DispatchOutcome:
        order = list(channel_order) if channel_order is not None else self.order_for(
            recipient, payload.priority
        )
        outcome = DispatchOutcome(
            recipient_id=recipient.id,
            campaign_id=payload.campaign_id,
            success=False,
        )

        if not order:
            outcome.error = "NO_CHANNELS"
            logger.warning(f"No usable channels for recipient {recipient.id}")
            return outcome

        errors: List[str] = []
        for channel in order:
            if abort is not None and abort():
                outcome.error = "ABORTED"
                logger.info(f"Delivery to {recipient.id} aborted before {channel.value}")
                return outcome

            result = await self._send_on(channel, recipient, payload)
            attempt = DeliveryAttempt(
                recipient_id=recipient.id,
                channel=channel,
                attempt_number=attempt_number,
                status=DeliveryStatus.SENT if result.success else DeliveryStatus.FAILED,
                timestamp=self._clock(),
                campaign_id=payload.campaign_id,
                message_id=result.message_id,
                failure_reason=None if result.success else (result.error_code or "FAILED"),
            )
            outcome.attempts.append(attempt)
            await self._notify_listeners(attempt)

            if result.success:
                outcome.success = True
                outcome.channel = channel
                outcome.message_id = result.message_id
                logger.info(
                    f"Notification for {recipient.id} sent via {channel.value}",
                    extra={"attempt_number": attempt_number},
                )
                return outcome

            errors.append(f"{channel.value}:{result.error_code or 'FAILED'}")
            logger.warning(
                f"{channel.value} failed for recipient {recipient.id}: {result.error_message or result.error_code}"
            )

        outcome.error = "ALL_CHANNELS_FAILED (" + ", ".join(errors) + ")"
        logger.error(
            f"Notification failed on all channels for {recipient.id}",
            extra={
                "phone": mask_destination(recipient.phone),
                "channels_attempted": [c.value for c in order],
            },
        )

        if abort is not None and abort():
            return outcome

        if enqueue_on_failure and self.retry_queue is not None:
            task = RetryTask(
                campaign_id=payload.campaign_id,
                recipient=recipient,
                payload=payload,
                channels=order,
                next_eligible_at=self._clock() + timedelta(
                    seconds=self.retry_queue.backoff_delay(1)
                ),
                last_error=outcome.error,
            )
            await self.retry_queue.enqueue(task)
            outcome.queued_for_retry = True

        return outcome

    async def dispatch_many(
        self,
        deliveries: Sequence[Tuple[NotificationRecipient, NotificationPayload]],
        channel_order: Optional[Sequence[NotificationChannel]] = None,
        abort: Optional[AbortCheck] = None,
    ) -> BulkDispatchResult:
        """Dispatch to many recipients concurrently.

        Outcomes are returned in input order. Concurrency is bounded by the
        global send semaphore.
        """
        outcomes = await asyncio.gather(*[
            self.dispatch(recipient, payload, channel_order, abort=abort)
            for recipient, payload in deliveries
        ])

        result = BulkDispatchResult(total=len(outcomes), outcomes=list(outcomes))
        for outcome in outcomes:
            if outcome.success:
                result.successful += 1
            else:
                result.failed += 1

        logger.info(
            f"Bulk dispatch completed: {result.successful} successful, {result.failed} failed"
        )
        return result

    async def _send_on(
        self,
        channel: NotificationChannel,
        recipient: NotificationRecipient,
        payload: NotificationPayload,
    ) -> SendResult:
        adapter = self._adapters.get(channel)
        if adapter is None:
            return SendResult.failed("NO_ADAPTER", f"No adapter registered for {channel.value}")

        async with self._global_semaphore:
            try:
                return await adapter.send(recipient, payload)
            except Exception as e:
                logger.exception(
                    f"Adapter error on {channel.value} for recipient {recipient.id}"
                )
                return SendResult.failed("CHANNEL_ERROR", str(e))

    async def _notify_listeners(self, attempt: DeliveryAttempt) -> None:
        for callback in self._attempt_listeners:
            try:
                result = callback(attempt)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Delivery attempt listener failed")


__all__ = [
    "ChannelDispatcher",
    "BulkDispatchResult",
    "build_channel_order",
]
