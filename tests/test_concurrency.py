"""
Concurrency safety tests.

Demonstrates:
1. The conditional handoff update lets exactly one of two racing writers win.
2. Outbox messages are created once per (trip, category) on retries.
3. Distributed lock prevents simultaneous acquire.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from tripguard.domain.enums import HandoffStatus, MessageCategory
from tripguard.infrastructure.locks import DistributedLock, LockNotAcquired
from tests.conftest import (
    TestTripMessageModel,
    TestTripMessageRepository,
    TestTripRepository,
    seed_trip,
)


class TestHandoffCompareAndSet:
    """Two sessions racing on the same trip row."""

    @pytest.mark.asyncio
    async def test_only_first_writer_wins(self, session_factory):
        async with session_factory() as setup:
            trip = await seed_trip(setup)
            await setup.commit()
        trip_id = trip.id

        async with session_factory() as first, session_factory() as second:
            won_first = await TestTripRepository(first).compare_and_set_handoff(
                trip_id, HandoffStatus.NOT_STARTED, HandoffStatus.GUEST_VERIFIED
            )
            await first.commit()
            won_second = await TestTripRepository(second).compare_and_set_handoff(
                trip_id, HandoffStatus.NOT_STARTED, HandoffStatus.GUEST_VERIFIED
            )
            await second.commit()

        assert won_first is True
        assert won_second is False

    @pytest.mark.asyncio
    async def test_stale_expected_status_is_rejected(self, db_session):
        trip = await seed_trip(db_session, handoff_status=HandoffStatus.GUEST_VERIFIED)
        repo = TestTripRepository(db_session)

        assert not await repo.compare_and_set_handoff(
            trip.id, HandoffStatus.NOT_STARTED, HandoffStatus.GUEST_VERIFIED
        )
        assert await repo.compare_and_set_handoff(
            trip.id, HandoffStatus.GUEST_VERIFIED, HandoffStatus.HANDOFF_COMPLETE
        )
        await repo.refresh(trip)
        assert trip.handoff_status == HandoffStatus.HANDOFF_COMPLETE


class TestOutboxDedupe:
    """Retried transitions must not enqueue a second message."""

    @pytest.mark.asyncio
    async def test_create_once_per_category(self, db_session):
        trip = await seed_trip(db_session)
        repo = TestTripMessageRepository(db_session)

        first, created = await repo.create_once(
            trip_id=trip.id,
            category=MessageCategory.KEY_INSTRUCTIONS,
            body="Lockbox 4471",
            recipient_id=trip.guest_id,
        )
        again, created_again = await repo.create_once(
            trip_id=trip.id,
            category=MessageCategory.KEY_INSTRUCTIONS,
            body="Different body",
            recipient_id=trip.guest_id,
        )

        assert created is True
        assert created_again is False
        assert again.id == first.id
        assert again.body == "Lockbox 4471"
        assert first.dedupe_key == f"{trip.id}:KEY_INSTRUCTIONS"

        count = await db_session.scalar(
            select(func.count()).select_from(TestTripMessageModel)
        )
        assert count == 1

    @pytest.mark.asyncio
    async def test_categories_are_independent(self, db_session):
        trip = await seed_trip(db_session)
        repo = TestTripMessageRepository(db_session)

        _, created_keys = await repo.create_once(
            trip_id=trip.id, category=MessageCategory.KEY_INSTRUCTIONS, body="keys"
        )
        _, created_arrival = await repo.create_once(
            trip_id=trip.id, category=MessageCategory.GUEST_ARRIVED, body="arrived"
        )
        assert created_keys and created_arrival


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "tripguard:lock:test-key", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_release_calls_eval(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        await lock.acquire()
        assert await lock.release() is True

        mock_redis.eval.assert_called_once()

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        with pytest.raises(LockNotAcquired, match="Could not acquire lock"):
            async with lock:
                pass

    def test_lock_not_acquired_is_runtime_error(self):
        assert issubclass(LockNotAcquired, RuntimeError)
