"""
Channel Adapters Module

Uniform capability wrappers around one delivery mechanism each. An adapter
never raises for an ordinary delivery failure: the failure is returned as a
failed ``SendResult`` so the dispatcher can fall through to the next channel.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from .base import (
    DeliveryError,
    GatewayConfig,
    NotificationChannel,
    NotificationPayload,
    NotificationRecipient,
    SendResult,
    mask_destination,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Adapter Interface
# =============================================================================


class ChannelAdapter(ABC):
    """Abstract base class for channel adapters."""

    @property
    @abstractmethod
    def channel(self) -> NotificationChannel:
        """Get adapter channel."""
        pass

    async def send(
        self,
        recipient: NotificationRecipient,
        payload: NotificationPayload,
    ) -> SendResult:
        """Send a payload to the recipient on this channel."""
        destination = recipient.destination_for(self.channel)
        if not destination:
            return SendResult.failed(
                "NO_DESTINATION",
                f"Recipient has no {self.channel.value} address",
            )

        try:
            message_id = await self._deliver(destination, recipient, payload)
        except DeliveryError as e:
            logger.warning(
                f"{self.channel.value} delivery to {mask_destination(destination)} failed: {e}",
                extra={"recipient_id": recipient.id, "error_code": e.error_code},
            )
            return SendResult.failed(e.error_code or "DELIVERY_ERROR", str(e))

        logger.info(f"{self.channel.value} sent to {mask_destination(destination)}")
        return SendResult(success=True, message_id=message_id)

    @abstractmethod
    async def _deliver(
        self,
        destination: str,
        recipient: NotificationRecipient,
        payload: NotificationPayload,
    ) -> Optional[str]:
        """Deliver to the provider; return the provider message id.

        Raises:
            DeliveryError: if the provider rejected or could not be reached
        """
        pass


# =============================================================================
# Gateway Adapters
# =============================================================================


class GatewayChannelAdapter(ChannelAdapter):
    """Adapter that posts to the platform notification gateway.

    Each channel is served at ``{base_url}/api/v1/notifications/{channel}``;
    the gateway owns the provider credentials and wire formats.
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or GatewayConfig.from_env()
        self._client = client
        self._owns_client = client is None

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/api/v1/notifications/{self.channel.value}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @abstractmethod
    def build_body(
        self,
        destination: str,
        recipient: NotificationRecipient,
        payload: NotificationPayload,
    ) -> Dict[str, Any]:
        """Build the gateway request body."""
        pass

    async def _deliver(
        self,
        destination: str,
        recipient: NotificationRecipient,
        payload: NotificationPayload,
    ) -> Optional[str]:
        body = self.build_body(destination, recipient, payload)
        try:
            response = await self._get_client().post(
                self.endpoint,
                json=body,
                headers=self.config.headers,
            )
        except httpx.HTTPError as e:
            raise DeliveryError(str(e) or type(e).__name__, self.channel, "GATEWAY_UNREACHABLE") from e

        if response.status_code >= 400:
            raise DeliveryError(
                f"Gateway rejected {self.channel.value}: {response.status_code}",
                self.channel,
                f"HTTP_{response.status_code}",
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        if isinstance(data, dict) and data.get("success") is False:
            raise DeliveryError(
                data.get("message", "Gateway reported failure"),
                self.channel,
                data.get("error", "GATEWAY_FAILURE"),
            )

        message_id = None
        if isinstance(data, dict):
            message_id = data.get("message_id") or data.get("messageId")
        return message_id or f"{self.channel.value}_{uuid.uuid4().hex[:16]}"


class PushAdapter(GatewayChannelAdapter):
    """Web push notification adapter."""

    @property
    def channel(self) -> NotificationChannel:
        return NotificationChannel.PUSH

    def build_body(self, destination, recipient, payload):
        return {
            "token": destination,
            "title": payload.title,
            "body": payload.body,
            "tag": f"emergency-{payload.campaign_id}" if payload.campaign_id else None,
            "require_interaction": payload.require_interaction,
            "actions": [a.to_dict() for a in payload.actions],
            "data": {**payload.data, "recipient_id": recipient.id},
        }


class WhatsAppAdapter(GatewayChannelAdapter):
    """WhatsApp (chat-app) message adapter."""

    @property
    def channel(self) -> NotificationChannel:
        return NotificationChannel.WHATSAPP

    def build_body(self, destination, recipient, payload):
        return {
            "to": destination,
            "message": payload.text_for(self.channel),
            "campaign_id": payload.campaign_id,
            "recipient_id": recipient.id,
        }


class SMSAdapter(GatewayChannelAdapter):
    """SMS adapter."""

    @property
    def channel(self) -> NotificationChannel:
        return NotificationChannel.SMS

    def build_body(self, destination, recipient, payload):
        return {
            "to": destination,
            "message": payload.text_for(self.channel),
            "campaign_id": payload.campaign_id,
            "recipient_id": recipient.id,
        }


class EmailAdapter(GatewayChannelAdapter):
    """Email adapter."""

    @property
    def channel(self) -> NotificationChannel:
        return NotificationChannel.EMAIL

    def build_body(self, destination, recipient, payload):
        return {
            "to": destination,
            "subject": payload.email_subject or payload.title,
            "template": payload.data.get("template", "emergency_blood_request"),
            "data": {
                **payload.data,
                "recipient_name": recipient.name,
                "body": payload.body,
            },
        }


def create_gateway_adapters(
    config: Optional[GatewayConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[NotificationChannel, ChannelAdapter]:
    """Create one gateway adapter per channel sharing a config and client."""
    config = config or GatewayConfig.from_env()
    adapters = [
        PushAdapter(config, client),
        WhatsAppAdapter(config, client),
        SMSAdapter(config, client),
        EmailAdapter(config, client),
    ]
    return {adapter.channel: adapter for adapter in adapters}


__all__ = [
    "ChannelAdapter",
    "GatewayChannelAdapter",
    "PushAdapter",
    "WhatsAppAdapter",
    "SMSAdapter",
    "EmailAdapter",
    "create_gateway_adapters",
]
