"""
Campaign Delivery Worker

Queue worker loop: leases one due queue item per step, resolves the
campaign's audience, sends to each recipient with pacing, records every
outcome and finalizes totals. Setup and infrastructure failures are retried
with linear backoff until the retry limit is reached.
"""

import asyncio
import hashlib
import json
import logging
import traceback
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from core.config import WorkerConfig

from .audience import resolve
from .models import (
    Campaign,
    CampaignLog,
    CampaignQueueItem,
    CampaignStatus,
    Customer,
    DeliveryTotals,
    LogStatus,
    QueueItemStatus,
    Segment,
    StoreCredentials,
    WorkerResult,
)
from .pacer import Pacer
from .personalizer import render
from .protocols import (
    AuditSinkProtocol,
    CampaignNotFoundError,
    ChannelDispatcherProtocol,
    DeliveryRepositoryProtocol,
    EventPublisherProtocol,
    LeaseLostError,
    SegmentNotFoundError,
    StoreCredentialsError,
    StoreDataClientProtocol,
)

logger = logging.getLogger(__name__)

LEASE_EXPIRED_ERROR = "lease expired"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def customer_key(customer: Customer) -> str:
    """
    Stable recipient identifier used in delivery logs.

    Falls back to id, then email, then phone. Records with none of these are
    keyed by a digest of their content so each stays distinct across runs.
    """
    identifier = customer.get("id")
    if identifier is None or identifier == "":
        identifier = customer.get("email") or customer.get("phone")
    if identifier is None or identifier == "":
        encoded = json.dumps(customer, sort_keys=True, default=str).encode("utf-8")
        return f"anon_{hashlib.sha256(encoded).hexdigest()[:16]}"
    return str(identifier)


def usage_period(moment: datetime) -> str:
    """Billing period key, e.g. "2024-05" """
    return moment.strftime("%Y-%m")


class DeliveryWorker:
    """
    Campaign queue worker.

    Each step processes at most one queue item. Steps may run concurrently
    across processes; the repository's lease guarantees a given item is
    processed by one worker at a time.
    """

    def __init__(
        self,
        repository: DeliveryRepositoryProtocol,
        store_client: StoreDataClientProtocol,
        dispatcher: ChannelDispatcherProtocol,
        pacer: Optional[Pacer] = None,
        audit_sink: Optional[AuditSinkProtocol] = None,
        event_publisher: Optional[EventPublisherProtocol] = None,
        config: Optional[WorkerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.store_client = store_client
        self.dispatcher = dispatcher
        self.pacer = pacer or Pacer()
        self.audit_sink = audit_sink
        self.event_publisher = event_publisher
        self.config = config or WorkerConfig()
        self._clock = clock or _utcnow

    # ====================
    # Worker Step
    # ====================

    async def run_once(self, now: Optional[datetime] = None) -> WorkerResult:
        """
        Process at most one due queue item.

        Args:
            now: Lease reference time (defaults to the worker clock)

        Returns:
            WorkerResult with processed=0 when nothing was due
        """
        now = now or self._clock()
        reclaimed = await self._reclaim_stale(now)

        item = await self.repository.lease_next_item(now)
        if item is None:
            logger.debug("No due campaign queue items")
            return WorkerResult(processed=0, reclaimed=reclaimed)

        logger.info(
            f"Leased queue item {item.queue_item_id} for campaign {item.campaign_id} "
            f"(attempt {item.retry_count + 1})"
        )

        try:
            campaign, credentials, segments = await self._resolve_context(item)
            await self.repository.update_campaign_status(campaign.campaign_id, CampaignStatus.RUNNING)
            if self.event_publisher:
                await self.event_publisher.publish_started(item, campaign)

            await self._deliver(item, campaign, credentials, segments, now)

            totals = await self.repository.summarize_logs(item.queue_item_id)
            completed = await self.repository.complete_run(
                item.queue_item_id, item.lease_token, campaign.campaign_id, totals, self._clock()
            )
            if not completed:
                raise LeaseLostError(
                    f"Lease on {item.queue_item_id} lost before completion",
                    queue_item_id=item.queue_item_id,
                )
        except LeaseLostError as e:
            return self._abandon(item, e, reclaimed)
        except Exception as e:
            return await self._handle_failure(item, e, reclaimed)

        logger.info(
            f"Campaign {campaign.campaign_id} completed: sent={totals.sent} "
            f"delivered={totals.delivered} failed={totals.failed}"
        )
        await self._record_usage(campaign.store_id, totals)
        if self.event_publisher:
            await self.event_publisher.publish_completed(item, campaign, totals)

        return WorkerResult(
            processed=1,
            queue_item_id=item.queue_item_id,
            campaign_id=campaign.campaign_id,
            status=QueueItemStatus.COMPLETED,
            sent=totals.sent,
            delivered=totals.delivered,
            failed=totals.failed,
            reclaimed=reclaimed,
        )

    async def run_forever(
        self,
        interval: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        """Run worker steps until stop_event is set; drains due items back to back"""
        interval = interval if interval is not None else self.config.poll_interval_seconds
        stop_event = stop_event or asyncio.Event()
        logger.info(f"Campaign delivery worker started (interval {interval}s)")

        while not stop_event.is_set():
            processed = 0
            try:
                result = await self.run_once()
                processed = result.processed
            except Exception as e:
                logger.error(f"Worker step failed: {e}", exc_info=True)

            if processed:
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Campaign delivery worker stopped")

    # ====================
    # Context Resolution
    # ====================

    async def _resolve_context(
        self, item: CampaignQueueItem
    ) -> Tuple[Campaign, StoreCredentials, List[Segment]]:
        campaign = await self.repository.get_campaign(item.campaign_id)
        if campaign is None:
            raise CampaignNotFoundError(f"Campaign not found: {item.campaign_id}")

        credentials = await self.repository.get_store_credentials(campaign.store_id)
        if credentials is None or not credentials.is_complete:
            raise StoreCredentialsError("Store or access token missing")

        segments: List[Segment] = []
        for segment_id in campaign.segment_ids:
            segment = await self.repository.get_segment(segment_id)
            if segment is None:
                raise SegmentNotFoundError(f"Segment not found: {segment_id}", segment_id=segment_id)
            segments.append(segment)

        return campaign, credentials, segments

    # ====================
    # Delivery
    # ====================

    async def _deliver(
        self,
        item: CampaignQueueItem,
        campaign: Campaign,
        credentials: StoreCredentials,
        segments: List[Segment],
        now: datetime,
    ) -> None:
        customers = await self.store_client.fetch_customers(credentials)
        audience = resolve(customers, segments, now)

        already_logged = await self.repository.get_logged_customer_ids(item.queue_item_id)
        recipients = [c for c in audience if customer_key(c) not in already_logged]
        if already_logged:
            logger.info(
                f"Resuming queue item {item.queue_item_id}: "
                f"{len(audience) - len(recipients)} recipients already processed"
            )

        logger.info(
            f"Sending campaign {campaign.campaign_id} via {campaign.campaign_type.value} "
            f"to {len(recipients)} recipients"
        )

        for index, customer in enumerate(recipients):
            if index:
                await self.pacer.delay(campaign.sending_speed)
            await self._ensure_lease(item)
            await self._send_to(item, campaign, customer)

    async def _ensure_lease(self, item: CampaignQueueItem) -> None:
        if not await self.repository.holds_lease(item.queue_item_id, item.lease_token):
            raise LeaseLostError(
                f"Lease on {item.queue_item_id} was reclaimed by another worker",
                queue_item_id=item.queue_item_id,
            )

    async def _send_to(
        self,
        item: CampaignQueueItem,
        campaign: Campaign,
        customer: Customer,
    ) -> CampaignLog:
        template = campaign.message_template
        body = render(template.body, customer)
        subject = render(template.subject, customer) if template.subject else None

        result = await self.dispatcher.send(campaign.campaign_type, customer, body, subject)

        log = CampaignLog(
            campaign_id=campaign.campaign_id,
            queue_item_id=item.queue_item_id,
            customer_id=customer_key(customer),
            status=LogStatus.SUCCESS if result.ok else LogStatus.FAILED,
            message=result.message,
            error=result.error,
            dispatched=result.attempted,
        )
        if not result.ok:
            logger.info(f"Send to customer {log.customer_id} failed: {result.error}")

        return await self.repository.append_log(log)

    # ====================
    # Finalization
    # ====================

    async def _record_usage(self, store_id: str, totals: DeliveryTotals) -> None:
        period = usage_period(self._clock())
        try:
            await self.repository.upsert_usage(
                store_id=store_id,
                period=period,
                messages_sent=totals.sent,
                campaigns_executed=1,
            )
        except Exception as e:
            logger.warning(f"Failed to record usage for store {store_id} ({period}): {e}")

    async def _reclaim_stale(self, now: datetime) -> int:
        if self.config.lease_timeout_seconds <= 0:
            return 0
        cutoff = now - timedelta(seconds=self.config.lease_timeout_seconds)
        try:
            reclaimed = await self.repository.reclaim_stale_items(
                cutoff, self.config.max_retries, now
            )
        except Exception as e:
            logger.warning(f"Failed to reclaim expired leases: {e}")
            return 0
        if not reclaimed:
            return 0

        logger.warning(f"Reclaimed {len(reclaimed)} queue items with expired leases")
        for item in reclaimed:
            if item.status == QueueItemStatus.FAILED:
                logger.error(
                    f"Queue item {item.queue_item_id} for campaign {item.campaign_id} "
                    f"exhausted its retries after its lease expired"
                )
                await self._escalate(
                    item,
                    item.retry_count,
                    LEASE_EXPIRED_ERROR,
                    f"Lease started at {item.started_at} expired before {cutoff}",
                )
        return len(reclaimed)

    async def _handle_failure(
        self,
        item: CampaignQueueItem,
        error: Exception,
        reclaimed: int,
    ) -> WorkerResult:
        retry_count = item.retry_count + 1
        message = str(error) or error.__class__.__name__
        attempted_at = self._clock()

        logger.error(
            f"Queue item {item.queue_item_id} for campaign {item.campaign_id} failed: {message}",
            exc_info=error,
        )

        if retry_count >= self.config.max_retries:
            owned = await self.repository.mark_failed(
                item.queue_item_id, item.lease_token, retry_count, message, attempted_at
            )
            if not owned:
                return self._abandon(item, self._lost_while_failing(item, message), reclaimed)
            await self._escalate(
                item,
                retry_count,
                message,
                "".join(traceback.format_exception(type(error), error, error.__traceback__)),
            )
            status = QueueItemStatus.FAILED
        else:
            scheduled_at = attempted_at + timedelta(
                seconds=self.config.retry_backoff_seconds * retry_count
            )
            owned = await self.repository.schedule_retry(
                item.queue_item_id, item.lease_token, retry_count, scheduled_at, message, attempted_at
            )
            if not owned:
                return self._abandon(item, self._lost_while_failing(item, message), reclaimed)
            logger.info(f"Queue item {item.queue_item_id} rescheduled for {scheduled_at.isoformat()}")
            if self.event_publisher:
                await self.event_publisher.publish_retry_scheduled(item, retry_count, scheduled_at, message)
            status = QueueItemStatus.PENDING

        return WorkerResult(
            processed=1,
            queue_item_id=item.queue_item_id,
            campaign_id=item.campaign_id,
            status=status,
            error=message,
            reclaimed=reclaimed,
        )

    async def _escalate(
        self,
        item: CampaignQueueItem,
        retry_count: int,
        message: str,
        stack: Optional[str],
    ) -> None:
        """Audit and announce a queue item that ran out of retries"""
        if self.audit_sink:
            await self.audit_sink.log_error(
                f"Campaign {item.campaign_id} failed after {retry_count} retries",
                stack,
                {"campaign_id": item.campaign_id, "queue_item_id": item.queue_item_id},
            )
        if self.event_publisher:
            await self.event_publisher.publish_failed(item, retry_count, message)

    def _lost_while_failing(self, item: CampaignQueueItem, message: str) -> LeaseLostError:
        return LeaseLostError(
            f"Lease on {item.queue_item_id} lost while recording failure: {message}",
            queue_item_id=item.queue_item_id,
        )

    def _abandon(self, item: CampaignQueueItem, error: LeaseLostError, reclaimed: int) -> WorkerResult:
        # The item belongs to another worker now; leave its state alone
        logger.warning(f"Abandoning queue item {item.queue_item_id}: {error}")
        return WorkerResult(
            processed=1,
            queue_item_id=item.queue_item_id,
            campaign_id=item.campaign_id,
            error=str(error),
            reclaimed=reclaimed,
        )
