"""
Component Tests for Delivery Repository Queue Statements

Tests lease ownership on the queue statements with a mocked asyncpg
connection: leases carry a fresh token, and completion, retry scheduling
and terminal failure only apply while that token still holds the item.
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.contracts.campaign_delivery.data_contract import (
    DeliveryTotals,
    QueueItemStatus,
)
from core.config import InfraConfig
from microservices.campaign_delivery_service.delivery_repository import DeliveryRepository


NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class AsyncContext:
    """Async context manager yielding a fixed value"""

    def __init__(self, value=None):
        self.value = value

    async def __aenter__(self):
        return self.value

    async def __aexit__(self, *exc_info):
        return False


class FakePool:
    """Pool handing out one mocked connection"""

    def __init__(self, conn):
        self.conn = conn

    def acquire(self):
        return AsyncContext(self.conn)


@pytest.fixture
def conn():
    connection = MagicMock()
    connection.fetchrow = AsyncMock(return_value=None)
    connection.fetch = AsyncMock(return_value=[])
    connection.fetchval = AsyncMock(return_value=None)
    connection.execute = AsyncMock(return_value="UPDATE 1")
    connection.transaction = MagicMock(side_effect=lambda: AsyncContext())
    return connection


@pytest.fixture
def repo(conn):
    repository = DeliveryRepository(InfraConfig())
    repository._pool = FakePool(conn)
    return repository


def queue_row(**overrides):
    row = {
        "queue_item_id": "cqi_1",
        "campaign_id": "cmp_1",
        "store_id": "str_1",
        "status": QueueItemStatus.PROCESSING.value,
        "scheduled_at": NOW - timedelta(minutes=1),
        "started_at": NOW,
        "retry_count": 0,
    }
    row.update(overrides)
    return row


class TestLease:
    """Leasing the next due item"""

    @pytest.mark.asyncio
    async def test_each_lease_gets_a_fresh_token(self, repo, conn):
        # Given: The database echoes the token it was asked to write
        async def echo_lease(query, now, processing, pending, token):
            return queue_row(started_at=now, lease_token=token)

        conn.fetchrow.side_effect = echo_lease

        # When
        first = await repo.lease_next_item(NOW)
        second = await repo.lease_next_item(NOW)

        # Then
        assert first.lease_token
        assert second.lease_token
        assert first.lease_token != second.lease_token
        query = conn.fetchrow.await_args.args[0]
        assert "FOR UPDATE SKIP LOCKED" in query
        assert "lease_token = $4" in query

    @pytest.mark.asyncio
    async def test_nothing_due(self, repo, conn):
        assert await repo.lease_next_item(NOW) is None

    @pytest.mark.asyncio
    async def test_holds_lease(self, repo, conn):
        conn.fetchval.return_value = 1
        assert await repo.holds_lease("cqi_1", "token-a") is True

        conn.fetchval.return_value = None
        assert await repo.holds_lease("cqi_1", "token-a") is False

        args = conn.fetchval.await_args.args
        assert args[1:] == ("cqi_1", QueueItemStatus.PROCESSING.value, "token-a")


class TestCompletion:
    """Completing a run under a lease"""

    @pytest.mark.asyncio
    async def test_lost_lease_writes_no_totals(self, repo, conn):
        # Given: The queue item no longer carries this worker's token
        conn.fetchrow.return_value = None

        # When
        completed = await repo.complete_run(
            "cqi_1", "token-a", "cmp_1", DeliveryTotals(sent=4, delivered=4), NOW
        )

        # Then: The campaign totals are untouched
        assert completed is False
        conn.execute.assert_not_awaited()
        args = conn.fetchrow.await_args.args
        assert args[-2:] == (QueueItemStatus.PROCESSING.value, "token-a")

    @pytest.mark.asyncio
    async def test_owned_lease_adds_totals(self, repo, conn):
        conn.fetchrow.return_value = {"queue_item_id": "cqi_1"}

        completed = await repo.complete_run(
            "cqi_1", "token-a", "cmp_1", DeliveryTotals(sent=4, delivered=3, failed=1), NOW
        )

        assert completed is True
        conn.execute.assert_awaited_once()
        args = conn.execute.await_args.args
        assert args[1:] == ("cmp_1", "COMPLETED", 4, 3, 1, NOW)


class TestRetryStatements:
    """Retry scheduling and terminal failure under a lease"""

    @pytest.mark.asyncio
    async def test_schedule_retry_requires_lease(self, repo, conn):
        retry_at = NOW + timedelta(minutes=1)

        assert await repo.schedule_retry("cqi_1", "token-a", 1, retry_at, "timeout", NOW) is False

        conn.fetchrow.return_value = {"queue_item_id": "cqi_1"}
        assert await repo.schedule_retry("cqi_1", "token-a", 1, retry_at, "timeout", NOW) is True
        query = conn.fetchrow.await_args.args[0]
        assert "lease_token = $8" in query
        assert "lease_token = NULL" in query

    @pytest.mark.asyncio
    async def test_mark_failed_requires_lease(self, repo, conn):
        assert await repo.mark_failed("cqi_1", "token-a", 3, "timeout", NOW) is False

        conn.fetchrow.return_value = {"queue_item_id": "cqi_1"}
        assert await repo.mark_failed("cqi_1", "token-a", 3, "timeout", NOW) is True
        assert conn.fetchrow.await_args.args[-1] == "token-a"


class TestReclaim:
    """Reclaiming expired leases"""

    @pytest.mark.asyncio
    async def test_reclaim_stamps_worker_time_and_returns_items(self, repo, conn):
        cutoff = NOW - timedelta(minutes=5)
        conn.fetch.return_value = [
            queue_row(queue_item_id="cqi_1", status="PENDING", retry_count=1, last_error="lease expired"),
            queue_row(queue_item_id="cqi_2", status="FAILED", retry_count=3, last_error="lease expired"),
        ]

        reclaimed = await repo.reclaim_stale_items(cutoff, 3, NOW)

        assert [item.status for item in reclaimed] == [QueueItemStatus.PENDING, QueueItemStatus.FAILED]
        args = conn.fetch.await_args.args
        assert args[1] == cutoff
        assert args[5] == NOW
        assert "lease_token = NULL" in args[0]
