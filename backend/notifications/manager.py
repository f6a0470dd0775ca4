"""Notification Manager: routes deliveries to the configured channels."""

import logging
from typing import Any, Optional, Union

import httpx

from app.config import Settings
from notifications.channels import (
    BaseChannel,
    ChatChannel,
    DeliveryResult,
    EmailChannel,
    NotificationChannel,
    SmsChannel,
    WebhookChannel,
)

logger = logging.getLogger(__name__)


CHANNEL_CLASSES: dict[str, type[BaseChannel]] = {
    NotificationChannel.EMAIL.value: EmailChannel,
    NotificationChannel.CHAT.value: ChatChannel,
    NotificationChannel.SMS.value: SmsChannel,
    NotificationChannel.WEBHOOK.value: WebhookChannel,
}


class NotificationManager:
    """Central delivery dispatcher.

    Holds at most one channel per ``NotificationChannel``. Sending to a
    channel that was never configured yields a failed DeliveryResult.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._channels: dict[NotificationChannel, BaseChannel] = {}
        self._transport = transport

    def register_channel(self, channel: BaseChannel) -> None:
        """Register (or replace) a delivery channel."""
        self._channels[channel.channel_type] = channel
        logger.info(f"Delivery channel registered: {channel.channel_type.value}")

    def configure_channels(self, config: Union[Settings, dict]) -> None:
        """Build channels from settings or a ``{"email": {...}, ...}`` dict.

        Channels whose config does not validate are skipped with a warning.
        """
        if isinstance(config, Settings):
            config = config.channel_config()

        for name, channel_config in config.items():
            channel_class = CHANNEL_CLASSES.get(name)
            if channel_class is None:
                logger.warning(f"Unknown delivery channel in config: {name}")
                continue
            channel = channel_class(channel_config, transport=self._transport)
            ok, error = channel.validate_config()
            if not ok:
                logger.warning(f"Delivery channel {name} not configured: {error}")
                continue
            self.register_channel(channel)

    def is_configured(self, channel: NotificationChannel) -> bool:
        return channel in self._channels

    async def send(
        self,
        channel: NotificationChannel,
        target: Any,
        content: dict[str, Any],
    ) -> DeliveryResult:
        """Send ``content`` to ``target`` through ``channel``."""
        handler = self._channels.get(channel)
        if handler is None:
            return DeliveryResult(
                success=False,
                channel=channel,
                recipient=str(target or ""),
                error=f"Channel not configured: {channel.value}",
            )

        result = await handler.send(target, content)
        if result.success:
            logger.info(f"Delivered via {channel.value} to {result.recipient}")
        return result

    def get_status(self) -> dict:
        return {"channels": sorted(ch.value for ch in self._channels)}


def create_notification_manager(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> NotificationManager:
    """Build a manager with every channel the settings carry credentials for."""
    manager = NotificationManager(transport=transport)
    manager.configure_channels(settings)
    return manager
