"""
Notification gateways (SMS / email delivery is an external collaborator).

The dispatch worker hands each pending ``trip_messages`` row to a gateway.
A gateway raises ``DeliveryError`` (or any exception) on failure; the worker
records the attempt and retries on a later cycle.

* ``LoggingNotificationGateway`` -- default; logs the message and succeeds.
* ``WebhookNotificationGateway`` -- POSTs JSON to a delivery service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from tripguard.config import settings

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """The gateway could not hand the message over."""


@dataclass(frozen=True)
class OutboundMessage:
    message_id: int
    trip_id: int
    category: str
    recipient_id: Optional[int]
    body: str


class NotificationGateway(Protocol):
    async def send(self, message: OutboundMessage) -> None: ...


class LoggingNotificationGateway:
    async def send(self, message: OutboundMessage) -> None:
        logger.info(
            "Notify recipient=%s trip=%d category=%s: %s",
            message.recipient_id,
            message.trip_id,
            message.category,
            message.body,
        )


class WebhookNotificationGateway:
    def __init__(self, url: str, timeout_seconds: float = 10.0):
        self.url = url
        self.timeout = timeout_seconds

    async def send(self, message: OutboundMessage) -> None:
        payload = {
            "message_id": message.message_id,
            "trip_id": message.trip_id,
            "category": message.category,
            "recipient_id": message.recipient_id,
            "body": message.body,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Webhook delivery failed: {exc}") from exc


def get_gateway() -> NotificationGateway:
    if settings.notification_webhook_url:
        return WebhookNotificationGateway(settings.notification_webhook_url)
    return LoggingNotificationGateway()
