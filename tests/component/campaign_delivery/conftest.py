"""
Component Test Fixtures for Campaign Delivery Service

Provides in-memory fakes for the repository, store data source, channel
transports, audit sink and event publisher, and a worker wired to them.
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set, Tuple
from uuid import uuid4

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.contracts.campaign_delivery.data_contract import (
    # Enums
    CampaignStatus,
    LogStatus,
    QueueItemStatus,
    # Models
    Campaign,
    CampaignLog,
    CampaignQueueItem,
    DeliveryTotals,
    ProviderResponse,
    Segment,
    StoreCredentials,
    UsageMetric,
    # Factory
    DeliveryTestDataFactory,
)
from core.config import WorkerConfig
from microservices.campaign_delivery_service.delivery_worker import DeliveryWorker
from microservices.campaign_delivery_service.dispatcher import ChannelDispatcher
from microservices.campaign_delivery_service.pacer import Pacer


# ====================
# Fake Repository
# ====================


class FakeDeliveryRepository:
    """In-memory repository for component testing"""

    def __init__(self):
        self.queue: Dict[str, CampaignQueueItem] = {}
        self.campaigns: Dict[str, Campaign] = {}
        self.segments: Dict[str, Segment] = {}
        self.credentials: Dict[str, StoreCredentials] = {}
        self.logs: List[CampaignLog] = []
        self.usage: Dict[Tuple[str, str], UsageMetric] = {}
        self.status_history: List[Tuple[str, CampaignStatus]] = []
        self.fail_on: Dict[str, Exception] = {}
        self.healthy = True

    def _maybe_fail(self, operation: str):
        error = self.fail_on.get(operation)
        if error is not None:
            raise error

    async def initialize(self):
        pass

    async def close(self):
        pass

    async def health_check(self) -> bool:
        return self.healthy

    # Queue operations
    async def enqueue(self, item: CampaignQueueItem) -> CampaignQueueItem:
        self.queue[item.queue_item_id] = item
        return item

    async def get_queue_item(self, queue_item_id: str) -> Optional[CampaignQueueItem]:
        return self.queue.get(queue_item_id)

    async def lease_next_item(self, now: datetime) -> Optional[CampaignQueueItem]:
        self._maybe_fail("lease_next_item")
        # Yield first so concurrent steps interleave; selection and update stay atomic
        await asyncio.sleep(0)
        due = [
            item for item in self.queue.values()
            if item.status == QueueItemStatus.PENDING and item.scheduled_at <= now
        ]
        if not due:
            return None
        item = min(due, key=lambda i: i.scheduled_at)
        item.status = QueueItemStatus.PROCESSING
        item.started_at = now
        item.lease_token = uuid4().hex
        return item.model_copy()

    def _owns(self, queue_item_id: str, lease_token: Optional[str]) -> bool:
        item = self.queue.get(queue_item_id)
        return (
            item is not None
            and item.status == QueueItemStatus.PROCESSING
            and item.lease_token == lease_token
        )

    async def holds_lease(self, queue_item_id: str, lease_token: str) -> bool:
        return self._owns(queue_item_id, lease_token)

    async def reclaim_stale_items(
        self, cutoff: datetime, max_retries: int, now: datetime
    ) -> List[CampaignQueueItem]:
        reclaimed = []
        for item in self.queue.values():
            if item.status != QueueItemStatus.PROCESSING or item.started_at >= cutoff:
                continue
            item.retry_count += 1
            item.lease_token = None
            item.last_error = "lease expired"
            item.last_attempt = now
            item.scheduled_at = now
            item.status = (
                QueueItemStatus.FAILED if item.retry_count >= max_retries else QueueItemStatus.PENDING
            )
            reclaimed.append(item.model_copy())
        return reclaimed

    async def schedule_retry(
        self,
        queue_item_id: str,
        lease_token: str,
        retry_count: int,
        scheduled_at: datetime,
        last_error: str,
        attempted_at: datetime,
    ) -> bool:
        if not self._owns(queue_item_id, lease_token):
            return False
        item = self.queue[queue_item_id]
        item.status = QueueItemStatus.PENDING
        item.lease_token = None
        item.retry_count = retry_count
        item.scheduled_at = scheduled_at
        item.last_error = last_error
        item.last_attempt = attempted_at
        return True

    async def mark_failed(
        self,
        queue_item_id: str,
        lease_token: str,
        retry_count: int,
        last_error: str,
        attempted_at: datetime,
    ) -> bool:
        if not self._owns(queue_item_id, lease_token):
            return False
        item = self.queue[queue_item_id]
        item.status = QueueItemStatus.FAILED
        item.lease_token = None
        item.retry_count = retry_count
        item.last_error = last_error
        item.last_attempt = attempted_at
        return True

    # Context lookups
    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        self._maybe_fail("get_campaign")
        return self.campaigns.get(campaign_id)

    async def update_campaign_status(self, campaign_id: str, status: CampaignStatus) -> None:
        self.campaigns[campaign_id].status = status
        self.status_history.append((campaign_id, status))

    async def get_store_credentials(self, store_id: str) -> Optional[StoreCredentials]:
        return self.credentials.get(store_id)

    async def get_segment(self, segment_id: str) -> Optional[Segment]:
        return self.segments.get(segment_id)

    # Delivery log
    async def append_log(self, log: CampaignLog) -> CampaignLog:
        self._maybe_fail("append_log")
        self.logs.append(log)
        return log

    async def get_logged_customer_ids(self, queue_item_id: str) -> Set[str]:
        return {log.customer_id for log in self.logs if log.queue_item_id == queue_item_id}

    async def summarize_logs(self, queue_item_id: str) -> DeliveryTotals:
        logs = [log for log in self.logs if log.queue_item_id == queue_item_id]
        return DeliveryTotals(
            sent=sum(1 for log in logs if log.dispatched),
            delivered=sum(1 for log in logs if log.status == LogStatus.SUCCESS),
            failed=sum(1 for log in logs if log.status == LogStatus.FAILED),
        )

    async def list_logs(
        self, campaign_id: str, limit: int = 100, offset: int = 0
    ) -> Tuple[List[CampaignLog], int]:
        logs = [log for log in self.logs if log.campaign_id == campaign_id]
        return logs[offset:offset + limit], len(logs)

    # Completion and metering
    async def complete_run(
        self,
        queue_item_id: str,
        lease_token: str,
        campaign_id: str,
        totals: DeliveryTotals,
        completed_at: datetime,
    ) -> bool:
        self._maybe_fail("complete_run")
        if not self._owns(queue_item_id, lease_token):
            return False
        campaign = self.campaigns[campaign_id]
        campaign.status = CampaignStatus.COMPLETED
        campaign.totals = campaign.totals + totals
        campaign.executed_at = completed_at
        campaign.completed_at = completed_at
        item = self.queue[queue_item_id]
        item.status = QueueItemStatus.COMPLETED
        item.lease_token = None
        item.completed_at = completed_at
        return True

    async def upsert_usage(
        self,
        store_id: str,
        period: str,
        messages_sent: int,
        campaigns_executed: int = 1,
    ) -> None:
        self._maybe_fail("upsert_usage")
        metric = self.usage.get((store_id, period)) or UsageMetric(store_id=store_id, period=period)
        metric.messages_sent += messages_sent
        metric.campaigns_executed += campaigns_executed
        self.usage[(store_id, period)] = metric


# ====================
# Fake Collaborators
# ====================


class FakeStoreClient:
    """Store data source returning a fixed customer list"""

    def __init__(self):
        self.customers: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None
        self.calls: List[StoreCredentials] = []

    async def fetch_customers(self, credentials: StoreCredentials) -> List[Dict[str, Any]]:
        self.calls.append(credentials)
        if self.error is not None:
            raise self.error
        return list(self.customers)


class FakeEmailTransport:
    """E-mail transport recording every send"""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.reject: Set[str] = set()

    async def send_email(self, to, subject, html, text=None):
        if to in self.reject:
            raise RuntimeError(f"Provider rejected {to}")
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return f"email_{len(self.sent)}"


class FakeMessagingTransport:
    """WhatsApp transport returning queued provider responses"""

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.sent: List[Tuple[str, str]] = []
        self.responses: List[ProviderResponse] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def send_text(self, phone: str, body: str) -> ProviderResponse:
        self.sent.append((phone, body))
        if self.responses:
            return self.responses.pop(0)
        return ProviderResponse(
            status_code=200,
            payload={"messages": [{"id": f"wamid.{len(self.sent)}"}]},
        )


class FakeAuditSink:
    """Audit sink recording error entries"""

    def __init__(self):
        self.entries: List[Dict[str, Any]] = []

    async def log_error(self, message, stack, context):
        self.entries.append({"message": message, "stack": stack, "context": context})


class FakeEventPublisher:
    """Event publisher recording lifecycle events"""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    async def publish_started(self, queue_item, campaign):
        self.events.append(("started", {"queue_item_id": queue_item.queue_item_id}))

    async def publish_completed(self, queue_item, campaign, totals):
        self.events.append(("completed", {"queue_item_id": queue_item.queue_item_id, "totals": totals}))

    async def publish_retry_scheduled(self, queue_item, retry_count, scheduled_at, error):
        self.events.append(("retry_scheduled", {
            "queue_item_id": queue_item.queue_item_id,
            "retry_count": retry_count,
            "scheduled_at": scheduled_at,
            "error": error,
        }))

    async def publish_failed(self, queue_item, retry_count, error):
        self.events.append(("failed", {
            "queue_item_id": queue_item.queue_item_id,
            "retry_count": retry_count,
            "error": error,
        }))

    @property
    def kinds(self) -> List[str]:
        return [kind for kind, _ in self.events]


class RecordingSleep:
    """Sleep replacement recording requested delays"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FixedClock:
    """Settable clock"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# ====================
# Fixtures
# ====================


@pytest.fixture
def factory():
    """Provide test data factory"""
    return DeliveryTestDataFactory()


@pytest.fixture
def repository():
    return FakeDeliveryRepository()


@pytest.fixture
def store_client():
    return FakeStoreClient()


@pytest.fixture
def email_transport():
    return FakeEmailTransport()


@pytest.fixture
def messaging_transport():
    return FakeMessagingTransport()


@pytest.fixture
def dispatcher(email_transport, messaging_transport):
    return ChannelDispatcher(
        email_transport=email_transport,
        messaging_transport=messaging_transport,
    )


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def audit_sink():
    return FakeAuditSink()


@pytest.fixture
def event_publisher():
    return FakeEventPublisher()


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def worker_config():
    return WorkerConfig(max_retries=3, retry_backoff_seconds=60)


@pytest.fixture
def worker(repository, store_client, dispatcher, sleep, audit_sink, event_publisher, worker_config, clock):
    """Delivery worker wired to in-memory fakes"""
    return DeliveryWorker(
        repository=repository,
        store_client=store_client,
        dispatcher=dispatcher,
        pacer=Pacer(sleep=sleep),
        audit_sink=audit_sink,
        event_publisher=event_publisher,
        config=worker_config,
        clock=clock,
    )


@pytest.fixture
def make_worker(repository, store_client, dispatcher, audit_sink, event_publisher, clock):
    """Build further workers sharing the same fakes"""

    def _make(config: Optional[WorkerConfig] = None, sleep=None) -> DeliveryWorker:
        return DeliveryWorker(
            repository=repository,
            store_client=store_client,
            dispatcher=dispatcher,
            pacer=Pacer(sleep=sleep or RecordingSleep()),
            audit_sink=audit_sink,
            event_publisher=event_publisher,
            config=config or WorkerConfig(max_retries=3, retry_backoff_seconds=60),
            clock=clock,
        )

    return _make


@pytest.fixture
def seed_run(repository, store_client, factory, clock):
    """Store a campaign, its segments, credentials and customers, and queue one send"""

    def _seed(
        campaign: Optional[Campaign] = None,
        customers: Optional[List[Dict[str, Any]]] = None,
        segments: Optional[List[Segment]] = None,
        with_credentials: bool = True,
        retry_count: int = 0,
    ) -> Tuple[Campaign, CampaignQueueItem]:
        segments = segments or []
        campaign = campaign or factory.make_campaign()
        if segments and not campaign.segment_ids:
            campaign.segment_ids = [s.segment_id for s in segments]

        repository.campaigns[campaign.campaign_id] = campaign
        for segment in segments:
            repository.segments[segment.segment_id] = segment
        if with_credentials:
            repository.credentials[campaign.store_id] = factory.make_credentials(campaign.store_id)
        store_client.customers = customers or []

        item = factory.make_queue_item(
            campaign_id=campaign.campaign_id,
            store_id=campaign.store_id,
            scheduled_at=clock() - timedelta(minutes=1),
            retry_count=retry_count,
        )
        repository.queue[item.queue_item_id] = item
        return campaign, item

    return _seed
