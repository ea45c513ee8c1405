"""
Campaign Delivery Data Repository

Data access layer - PostgreSQL (asyncpg)
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple
from uuid import uuid4

import asyncpg

from core.config import InfraConfig

from .models import (
    Campaign,
    CampaignLog,
    CampaignQueueItem,
    CampaignStatus,
    DeliveryTotals,
    LogStatus,
    QueueItemStatus,
    Segment,
    StoreCredentials,
)
from .protocols import RepositoryError, SegmentDefinitionError
from .segment_matcher import load_filter_tree

logger = logging.getLogger(__name__)


def _json_field(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


class DeliveryRepository:
    """Campaign delivery data repository - PostgreSQL (asyncpg)"""

    def __init__(self, config: Optional[InfraConfig] = None):
        self.config = config or InfraConfig.from_env()
        self._pool: Optional[asyncpg.Pool] = None
        self.schema = "campaign_delivery"

        # Table names
        self.campaigns_table = "campaigns"
        self.segments_table = "segments"
        self.stores_table = "stores"
        self.queue_table = "campaign_queue_items"
        self.logs_table = "campaign_logs"
        self.usage_table = "usage_metrics"

    async def initialize(self):
        """Initialize database connection pool"""
        logger.info(f"Connecting to PostgreSQL at {self.config.postgres_host}:{self.config.postgres_port}")
        self._pool = await asyncpg.create_pool(
            dsn=self.config.postgres_dsn,
            min_size=self.config.postgres_min_pool,
            max_size=self.config.postgres_max_pool,
        )
        logger.info("Delivery repository initialized with PostgreSQL")

    async def close(self):
        """Close database connection pool"""
        if self._pool:
            await self._pool.close()
            self._pool = None
        logger.info("Delivery repository database connection closed")

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RepositoryError("Repository not initialized. Call initialize() first.")
        return self._pool

    async def health_check(self) -> bool:
        """Check repository health"""
        try:
            async with self.pool.acquire() as conn:
                result = await conn.fetchval("SELECT 1")
                return result == 1
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

    # ====================
    # Queue Operations
    # ====================

    async def enqueue(self, item: CampaignQueueItem) -> CampaignQueueItem:
        """Insert a new PENDING queue item"""
        try:
            query = f'''
                INSERT INTO {self.schema}.{self.queue_table} (
                    queue_item_id, campaign_id, store_id, status,
                    scheduled_at, retry_count, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING *
            '''
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    query,
                    item.queue_item_id,
                    item.campaign_id,
                    item.store_id,
                    QueueItemStatus.PENDING.value,
                    item.scheduled_at,
                    item.retry_count,
                    item.created_at,
                )
            return self._row_to_queue_item(row)

        except asyncpg.PostgresError as e:
            logger.error(f"Error enqueueing campaign {item.campaign_id}: {e}")
            raise RepositoryError(f"Failed to enqueue campaign: {e}") from e

    async def get_queue_item(self, queue_item_id: str) -> Optional[CampaignQueueItem]:
        """Get queue item by ID"""
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.queue_table}
                WHERE queue_item_id = $1
            '''
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, queue_item_id)
            return self._row_to_queue_item(row) if row else None

        except asyncpg.PostgresError as e:
            logger.error(f"Error getting queue item {queue_item_id}: {e}")
            raise RepositoryError(str(e)) from e

    async def lease_next_item(self, now: datetime) -> Optional[CampaignQueueItem]:
        """
        Lease the oldest due PENDING item.

        The status check is repeated in the outer UPDATE so the transition
        happens at most once even under concurrent workers. Each lease gets a
        fresh token; later writes for the item are conditional on it.
        """
        try:
            query = f'''
                UPDATE {self.schema}.{self.queue_table}
                SET status = $2, started_at = $1, lease_token = $4
                WHERE queue_item_id = (
                    SELECT queue_item_id FROM {self.schema}.{self.queue_table}
                    WHERE status = $3 AND scheduled_at <= $1
                    ORDER BY scheduled_at ASC
                    FOR UPDATE SKIP LOCKED
                    LIMIT 1
                )
                AND status = $3
                RETURNING *
            '''
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    query,
                    now,
                    QueueItemStatus.PROCESSING.value,
                    QueueItemStatus.PENDING.value,
                    uuid4().hex,
                )
            return self._row_to_queue_item(row) if row else None

        except asyncpg.PostgresError as e:
            logger.error(f"Error leasing queue item: {e}")
            raise RepositoryError(f"Failed to lease queue item: {e}") from e

    async def holds_lease(self, queue_item_id: str, lease_token: str) -> bool:
        """Whether the item is still PROCESSING under the given lease"""
        try:
            query = f'''
                SELECT 1 FROM {self.schema}.{self.queue_table}
                WHERE queue_item_id = $1 AND status = $2 AND lease_token = $3
            '''
            async with self.pool.acquire() as conn:
                held = await conn.fetchval(
                    query, queue_item_id, QueueItemStatus.PROCESSING.value, lease_token
                )
            return held is not None

        except asyncpg.PostgresError as e:
            logger.error(f"Error checking lease on {queue_item_id}: {e}")
            raise RepositoryError(str(e)) from e

    async def reclaim_stale_items(
        self, cutoff: datetime, max_retries: int, now: datetime
    ) -> List[CampaignQueueItem]:
        """Return PROCESSING items started before cutoff to PENDING, or FAILED when exhausted"""
        try:
            query = f'''
                UPDATE {self.schema}.{self.queue_table}
                SET status = CASE WHEN retry_count + 1 >= $2 THEN $3 ELSE $4 END,
                    retry_count = retry_count + 1,
                    lease_token = NULL,
                    last_error = 'lease expired',
                    last_attempt = $5,
                    scheduled_at = $5
                WHERE status = $6 AND started_at < $1
                RETURNING *
            '''
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    query,
                    cutoff,
                    max_retries,
                    QueueItemStatus.FAILED.value,
                    QueueItemStatus.PENDING.value,
                    now,
                    QueueItemStatus.PROCESSING.value,
                )
            return [self._row_to_queue_item(row) for row in rows]

        except asyncpg.PostgresError as e:
            logger.error(f"Error reclaiming stale queue items: {e}")
            raise RepositoryError(str(e)) from e

    async def schedule_retry(
        self,
        queue_item_id: str,
        lease_token: str,
        retry_count: int,
        scheduled_at: datetime,
        last_error: str,
        attempted_at: datetime,
    ) -> bool:
        """Put a leased queue item back to PENDING for a later attempt"""
        query = f'''
            UPDATE {self.schema}.{self.queue_table}
            SET status = $2, retry_count = $3, scheduled_at = $4,
                last_error = $5, last_attempt = $6, lease_token = NULL
            WHERE queue_item_id = $1 AND status = $7 AND lease_token = $8
            RETURNING queue_item_id
        '''
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    query,
                    queue_item_id,
                    QueueItemStatus.PENDING.value,
                    retry_count,
                    scheduled_at,
                    last_error,
                    attempted_at,
                    QueueItemStatus.PROCESSING.value,
                    lease_token,
                )
            return row is not None

        except asyncpg.PostgresError as e:
            logger.error(f"Error scheduling retry for {queue_item_id}: {e}")
            raise RepositoryError(str(e)) from e

    async def mark_failed(
        self,
        queue_item_id: str,
        lease_token: str,
        retry_count: int,
        last_error: str,
        attempted_at: datetime,
    ) -> bool:
        """Mark a leased queue item as terminally FAILED"""
        query = f'''
            UPDATE {self.schema}.{self.queue_table}
            SET status = $2, retry_count = $3, last_error = $4,
                last_attempt = $5, lease_token = NULL
            WHERE queue_item_id = $1 AND status = $6 AND lease_token = $7
            RETURNING queue_item_id
        '''
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    query,
                    queue_item_id,
                    QueueItemStatus.FAILED.value,
                    retry_count,
                    last_error,
                    attempted_at,
                    QueueItemStatus.PROCESSING.value,
                    lease_token,
                )
            return row is not None

        except asyncpg.PostgresError as e:
            logger.error(f"Error marking {queue_item_id} failed: {e}")
            raise RepositoryError(str(e)) from e

    # ====================
    # Context Lookups
    # ====================

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        """Get campaign by ID"""
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.campaigns_table}
                WHERE campaign_id = $1
            '''
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, campaign_id)
            return self._row_to_campaign(row) if row else None

        except asyncpg.PostgresError as e:
            logger.error(f"Error getting campaign {campaign_id}: {e}")
            raise RepositoryError(str(e)) from e

    async def update_campaign_status(self, campaign_id: str, status: CampaignStatus) -> None:
        """Update campaign status"""
        query = f'''
            UPDATE {self.schema}.{self.campaigns_table}
            SET status = $2, updated_at = $3
            WHERE campaign_id = $1
        '''
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(query, campaign_id, status.value, datetime.now(timezone.utc))
        except asyncpg.PostgresError as e:
            logger.error(f"Error updating campaign {campaign_id} status: {e}")
            raise RepositoryError(str(e)) from e

    async def get_store_credentials(self, store_id: str) -> Optional[StoreCredentials]:
        """Get store data credentials"""
        try:
            query = f'''
                SELECT store_id, shop_domain, access_token
                FROM {self.schema}.{self.stores_table}
                WHERE store_id = $1
            '''
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, store_id)
            if not row:
                return None
            return StoreCredentials(
                store_id=row["store_id"],
                shop_domain=row["shop_domain"],
                access_token=row["access_token"],
            )

        except asyncpg.PostgresError as e:
            logger.error(f"Error getting store {store_id}: {e}")
            raise RepositoryError(str(e)) from e

    async def get_segment(self, segment_id: str) -> Optional[Segment]:
        """Get segment; an unloadable filter tree is recorded on the segment"""
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.segments_table}
                WHERE segment_id = $1
            '''
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, segment_id)
            return self._row_to_segment(row) if row else None

        except asyncpg.PostgresError as e:
            logger.error(f"Error getting segment {segment_id}: {e}")
            raise RepositoryError(str(e)) from e

    # ====================
    # Delivery Log
    # ====================

    async def append_log(self, log: CampaignLog) -> CampaignLog:
        """Append a per-recipient delivery record"""
        query = f'''
            INSERT INTO {self.schema}.{self.logs_table} (
                log_id, campaign_id, queue_item_id, customer_id,
                status, message, error, dispatched, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
        '''
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    query,
                    log.log_id,
                    log.campaign_id,
                    log.queue_item_id,
                    log.customer_id,
                    log.status.value,
                    log.message,
                    log.error,
                    log.dispatched,
                    log.created_at,
                )
            return log

        except asyncpg.PostgresError as e:
            logger.error(f"Error writing log for customer {log.customer_id}: {e}")
            raise RepositoryError(str(e)) from e

    async def get_logged_customer_ids(self, queue_item_id: str) -> Set[str]:
        """Customers already logged for a queue item"""
        query = f'''
            SELECT DISTINCT customer_id FROM {self.schema}.{self.logs_table}
            WHERE queue_item_id = $1
        '''
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, queue_item_id)
            return {row["customer_id"] for row in rows}

        except asyncpg.PostgresError as e:
            logger.error(f"Error reading logs of {queue_item_id}: {e}")
            raise RepositoryError(str(e)) from e

    async def summarize_logs(self, queue_item_id: str) -> DeliveryTotals:
        """Tally sent/delivered/failed from a queue item's logs"""
        query = f'''
            SELECT
                COUNT(*) FILTER (WHERE dispatched) AS sent,
                COUNT(*) FILTER (WHERE status = $2) AS delivered,
                COUNT(*) FILTER (WHERE status = $3) AS failed
            FROM {self.schema}.{self.logs_table}
            WHERE queue_item_id = $1
        '''
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    query, queue_item_id, LogStatus.SUCCESS.value, LogStatus.FAILED.value
                )
            return DeliveryTotals(
                sent=row["sent"] or 0,
                delivered=row["delivered"] or 0,
                failed=row["failed"] or 0,
            )

        except asyncpg.PostgresError as e:
            logger.error(f"Error summarizing logs of {queue_item_id}: {e}")
            raise RepositoryError(str(e)) from e

    async def list_logs(
        self, campaign_id: str, limit: int = 100, offset: int = 0
    ) -> Tuple[List[CampaignLog], int]:
        """List logs for a campaign, newest first"""
        try:
            count_query = f'''
                SELECT COUNT(*) FROM {self.schema}.{self.logs_table}
                WHERE campaign_id = $1
            '''
            query = f'''
                SELECT * FROM {self.schema}.{self.logs_table}
                WHERE campaign_id = $1
                ORDER BY created_at DESC
                LIMIT $2 OFFSET $3
            '''
            async with self.pool.acquire() as conn:
                total = await conn.fetchval(count_query, campaign_id)
                rows = await conn.fetch(query, campaign_id, limit, offset)
            return [self._row_to_log(row) for row in rows], total or 0

        except asyncpg.PostgresError as e:
            logger.error(f"Error listing logs for campaign {campaign_id}: {e}")
            raise RepositoryError(str(e)) from e

    # ====================
    # Completion and Metering
    # ====================

    async def complete_run(
        self,
        queue_item_id: str,
        lease_token: str,
        campaign_id: str,
        totals: DeliveryTotals,
        completed_at: datetime,
    ) -> bool:
        """
        Complete the queue item and campaign and add the run's totals, in one
        transaction. Nothing is written unless the caller still holds the lease.
        """
        queue_query = f'''
            UPDATE {self.schema}.{self.queue_table}
            SET status = $2, completed_at = $3, lease_token = NULL
            WHERE queue_item_id = $1 AND status = $4 AND lease_token = $5
            RETURNING queue_item_id
        '''
        campaign_query = f'''
            UPDATE {self.schema}.{self.campaigns_table}
            SET status = $2,
                total_sent = total_sent + $3,
                total_delivered = total_delivered + $4,
                total_failed = total_failed + $5,
                executed_at = $6,
                completed_at = $6,
                updated_at = $6
            WHERE campaign_id = $1
        '''
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    owned = await conn.fetchrow(
                        queue_query,
                        queue_item_id,
                        QueueItemStatus.COMPLETED.value,
                        completed_at,
                        QueueItemStatus.PROCESSING.value,
                        lease_token,
                    )
                    if owned is None:
                        return False
                    await conn.execute(
                        campaign_query,
                        campaign_id,
                        CampaignStatus.COMPLETED.value,
                        totals.sent,
                        totals.delivered,
                        totals.failed,
                        completed_at,
                    )
            return True

        except asyncpg.PostgresError as e:
            logger.error(f"Error completing run {queue_item_id}: {e}")
            raise RepositoryError(f"Failed to complete run: {e}") from e

    async def upsert_usage(
        self,
        store_id: str,
        period: str,
        messages_sent: int,
        campaigns_executed: int = 1,
    ) -> None:
        """Increment per-period usage counters"""
        query = f'''
            INSERT INTO {self.schema}.{self.usage_table} (
                store_id, period, messages_sent, campaigns_executed, updated_at
            ) VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (store_id, period) DO UPDATE SET
                messages_sent = {self.usage_table}.messages_sent + EXCLUDED.messages_sent,
                campaigns_executed = {self.usage_table}.campaigns_executed + EXCLUDED.campaigns_executed,
                updated_at = EXCLUDED.updated_at
        '''
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    query,
                    store_id,
                    period,
                    messages_sent,
                    campaigns_executed,
                    datetime.now(timezone.utc),
                )
        except asyncpg.PostgresError as e:
            logger.error(f"Error updating usage for store {store_id}: {e}")
            raise RepositoryError(str(e)) from e

    # ====================
    # Row Mapping
    # ====================

    def _row_to_campaign(self, row: Dict[str, Any]) -> Campaign:
        """Convert database row to Campaign model"""
        return Campaign(
            campaign_id=row["campaign_id"],
            store_id=row["store_id"],
            name=row.get("name") or "",
            campaign_type=row["campaign_type"],
            segment_ids=_json_field(row.get("segment_ids"), []),
            message_template=_json_field(row.get("message_template"), {}),
            sending_speed=row.get("sending_speed") or "MEDIUM",
            status=row["status"],
            totals=DeliveryTotals(
                sent=row.get("total_sent") or 0,
                delivered=row.get("total_delivered") or 0,
                failed=row.get("total_failed") or 0,
            ),
            created_at=row.get("created_at") or datetime.now(timezone.utc),
            updated_at=row.get("updated_at") or datetime.now(timezone.utc),
            executed_at=row.get("executed_at"),
            completed_at=row.get("completed_at"),
        )

    def _row_to_segment(self, row: Dict[str, Any]) -> Segment:
        """Convert database row to Segment model"""
        segment = Segment(
            segment_id=row["segment_id"],
            store_id=row.get("store_id"),
            name=row.get("name") or "",
            is_catch_all=bool(row.get("is_catch_all")),
            created_at=row.get("created_at") or datetime.now(timezone.utc),
            updated_at=row.get("updated_at") or datetime.now(timezone.utc),
        )
        try:
            segment.filters = load_filter_tree(_json_field(row.get("filters"), None))
        except (SegmentDefinitionError, ValueError) as e:
            logger.warning(f"Segment {segment.segment_id} has an invalid filter tree: {e}")
            segment.definition_error = str(e)
        return segment

    def _row_to_queue_item(self, row: Dict[str, Any]) -> CampaignQueueItem:
        """Convert database row to CampaignQueueItem model"""
        return CampaignQueueItem(
            queue_item_id=row["queue_item_id"],
            campaign_id=row["campaign_id"],
            store_id=row.get("store_id"),
            status=row["status"],
            scheduled_at=row["scheduled_at"],
            started_at=row.get("started_at"),
            lease_token=row.get("lease_token"),
            completed_at=row.get("completed_at"),
            retry_count=row.get("retry_count") or 0,
            last_error=row.get("last_error"),
            last_attempt=row.get("last_attempt"),
            created_at=row.get("created_at") or datetime.now(timezone.utc),
        )

    def _row_to_log(self, row: Dict[str, Any]) -> CampaignLog:
        """Convert database row to CampaignLog model"""
        return CampaignLog(
            log_id=row["log_id"],
            campaign_id=row["campaign_id"],
            queue_item_id=row.get("queue_item_id"),
            customer_id=row["customer_id"],
            status=row["status"],
            message=row.get("message"),
            error=row.get("error"),
            dispatched=bool(row.get("dispatched")),
            created_at=row["created_at"],
        )
