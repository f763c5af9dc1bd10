"""
Notifications Module

This module provides multi-channel emergency notification delivery with
ordered fallback and bounded retry.

Features:
- Channel Adapters: push, WhatsApp, SMS and email behind one interface
- Ordered Fallback: channels tried in order until one succeeds
- Channel Ordering: recipient preference, critical chat-app first
- Retry Queue: exponential backoff up to a bounded attempt count
- Delivery Tracking: one DeliveryAttempt per channel tried

Example usage:

    from cfb_core.notifications import (
        ChannelDispatcher,
        GatewayConfig,
        NotificationPayload,
        NotificationRecipient,
        RetryQueue,
        create_gateway_adapters,
    )

    dispatcher = ChannelDispatcher(create_gateway_adapters(GatewayConfig.from_env()))
    retry_queue = RetryQueue(dispatcher, max_retries=3, base_delay_seconds=5)
    dispatcher.set_retry_queue(retry_queue)
    retry_queue.start()

    outcome = await dispatcher.dispatch(
        NotificationRecipient(id="donor-1", phone="+15550101", email="a@example.com"),
        NotificationPayload(title="URGENT: O- Blood Needed", body="Emergency at City Hospital"),
    )
    print(outcome.channel, [a.status for a in outcome.attempts])
"""

from .base import (
    # Enums
    NotificationChannel,
    DeliveryStatus,
    NotificationPriority,
    DEFAULT_CHANNEL_ORDER,
    # Types
    NotificationRecipient,
    NotificationAction,
    NotificationPayload,
    SendResult,
    DeliveryAttempt,
    DispatchOutcome,
    RetryTask,
    # Provider config
    GatewayConfig,
    # Exceptions
    NotificationError,
    DeliveryError,
    RetryExhaustedError,
    # Helpers
    mask_destination,
)
from .channels import (
    ChannelAdapter,
    GatewayChannelAdapter,
    PushAdapter,
    WhatsAppAdapter,
    SMSAdapter,
    EmailAdapter,
    create_gateway_adapters,
)
from .dispatcher import (
    BulkDispatchResult,
    ChannelDispatcher,
    build_channel_order,
)
from .retry import RetryQueue


__all__ = [
    # Enums
    "NotificationChannel",
    "DeliveryStatus",
    "NotificationPriority",
    "DEFAULT_CHANNEL_ORDER",
    # Types
    "NotificationRecipient",
    "NotificationAction",
    "NotificationPayload",
    "SendResult",
    "DeliveryAttempt",
    "DispatchOutcome",
    "RetryTask",
    "GatewayConfig",
    # Adapters
    "ChannelAdapter",
    "GatewayChannelAdapter",
    "PushAdapter",
    "WhatsAppAdapter",
    "SMSAdapter",
    "EmailAdapter",
    "create_gateway_adapters",
    # Dispatch
    "ChannelDispatcher",
    "BulkDispatchResult",
    "build_channel_order",
    "RetryQueue",
    # Exceptions
    "NotificationError",
    "DeliveryError",
    "RetryExhaustedError",
    "mask_destination",
]
