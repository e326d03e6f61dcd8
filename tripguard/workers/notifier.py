"""
Background Notification Dispatch Worker
=======================================

Runs every ``NOTIFICATION_DISPATCH_INTERVAL_SECONDS`` (default 15 s) and
drains the ``trip_messages`` outbox.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance runs the dispatch
  cycle at a time across multiple API processes.
* **SELECT … FOR UPDATE SKIP LOCKED** on ``trip_messages`` keeps a cycle
  that overruns its lock TTL from double-sending a row.

Per message
-----------
1. Hand it to the configured gateway.
2. Success -> ``SENT`` with ``sent_at``.
3. Failure -> bump ``delivery_attempts`` and keep ``PENDING``; after
   ``NOTIFICATION_MAX_ATTEMPTS`` the row is parked as ``FAILED``.

The handoff transition that produced a message committed long before this
worker sees it, so a delivery failure never touches handoff state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from tripguard.config import settings
from tripguard.domain.clock import utcnow
from tripguard.domain.enums import DeliveryStatus, MessageCategory
from tripguard.infrastructure.database import async_session_factory
from tripguard.infrastructure.locks import DistributedLock
from tripguard.infrastructure.notifications import (
    NotificationGateway,
    OutboundMessage,
    get_gateway,
)
from tripguard.infrastructure.redis_client import get_redis
from tripguard.infrastructure.repositories import TripMessageRepository

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_dispatch_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Dispatch worker started (interval=%ds)",
        settings.notification_dispatch_interval_seconds,
    )


async def stop_dispatch_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Dispatch worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_dispatch_cycle()
        except Exception:
            logger.exception("Unhandled error in dispatch cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(),
                timeout=settings.notification_dispatch_interval_seconds,
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def deliver_pending(
    repo: TripMessageRepository,
    gateway: NotificationGateway,
    batch_size: int,
    max_attempts: int,
) -> int:
    """Push one batch of PENDING messages through *gateway*.  Returns sent count."""
    sent = 0
    for message in await repo.get_pending_for_update(batch_size):
        outbound = OutboundMessage(
            message_id=message.id,
            trip_id=message.trip_id,
            category=MessageCategory(message.category).value,
            recipient_id=message.recipient_id,
            body=message.body,
        )
        try:
            await gateway.send(outbound)
        except Exception as exc:
            message.delivery_attempts += 1
            message.last_error = str(exc)[:500]
            if message.delivery_attempts >= max_attempts:
                message.delivery_status = DeliveryStatus.FAILED
                logger.error(
                    "Message %d (%s) failed permanently after %d attempts: %s",
                    message.id, outbound.category, message.delivery_attempts, exc,
                )
            else:
                logger.warning(
                    "Message %d (%s) delivery attempt %d failed: %s",
                    message.id, outbound.category, message.delivery_attempts, exc,
                )
            continue

        message.delivery_attempts += 1
        message.delivery_status = DeliveryStatus.SENT
        message.sent_at = utcnow()
        message.last_error = None
        sent += 1
    await repo.session.flush()
    return sent


async def run_dispatch_cycle(gateway: Optional[NotificationGateway] = None) -> int:
    """Execute one dispatch cycle.  Returns the number of messages sent."""
    redis = await get_redis()
    lock = DistributedLock(redis, "notification_dispatch", ttl_seconds=60)

    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping cycle")
        return 0

    sent = 0
    try:
        async with async_session_factory() as session:
            sent = await deliver_pending(
                TripMessageRepository(session),
                gateway or get_gateway(),
                settings.notification_batch_size,
                settings.notification_max_attempts,
            )
            await session.commit()
            if sent:
                logger.info("Dispatch cycle: %d messages sent", sent)
    except Exception:
        logger.exception("Error in dispatch cycle")
    finally:
        await lock.release()

    return sent
