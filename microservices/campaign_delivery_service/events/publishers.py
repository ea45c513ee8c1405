"""
Campaign Delivery Event Publishers

Publishes delivery lifecycle events to NATS. Publishing is best-effort:
failures are logged and reported as False, never raised.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.nats_client import NATSEventBus, create_event

from ..models import Campaign, CampaignQueueItem, DeliveryTotals
from .models import (
    DeliveryEventType,
    DeliveryStartedEventData,
    DeliveryCompletedEventData,
    DeliveryRetryScheduledEventData,
    DeliveryFailedEventData,
)

logger = logging.getLogger(__name__)


class DeliveryEventPublisher:
    """Publisher for campaign delivery events"""

    def __init__(self, event_bus: Optional[NATSEventBus] = None):
        self.event_bus = event_bus
        self.source = "campaign_delivery_service"

    async def publish(
        self,
        event_type: DeliveryEventType,
        data: Dict[str, Any],
    ) -> bool:
        """
        Publish an event to NATS.

        Args:
            event_type: The event type enum
            data: Event data payload

        Returns:
            True if published successfully, False otherwise
        """
        if not self.event_bus:
            logger.debug(f"NATS client not configured, skipping publish: {event_type.value}")
            return False

        try:
            event = create_event(
                event_type=event_type.value,
                source=self.source,
                data=data,
            )
            return await self.event_bus.publish_event(event)

        except Exception as e:
            logger.error(f"Failed to publish event {event_type.value}: {e}")
            return False

    # ====================
    # Delivery Lifecycle Events
    # ====================

    async def publish_started(
        self,
        queue_item: CampaignQueueItem,
        campaign: Campaign,
    ) -> bool:
        """Publish campaign.delivery.started event"""
        data = DeliveryStartedEventData(
            queue_item_id=queue_item.queue_item_id,
            campaign_id=campaign.campaign_id,
            store_id=campaign.store_id,
            channel=campaign.campaign_type.value,
            retry_count=queue_item.retry_count,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(DeliveryEventType.STARTED, data.model_dump(mode="json"))

    async def publish_completed(
        self,
        queue_item: CampaignQueueItem,
        campaign: Campaign,
        totals: DeliveryTotals,
    ) -> bool:
        """Publish campaign.delivery.completed event"""
        data = DeliveryCompletedEventData(
            queue_item_id=queue_item.queue_item_id,
            campaign_id=campaign.campaign_id,
            store_id=campaign.store_id,
            sent=totals.sent,
            delivered=totals.delivered,
            failed=totals.failed,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(DeliveryEventType.COMPLETED, data.model_dump(mode="json"))

    async def publish_retry_scheduled(
        self,
        queue_item: CampaignQueueItem,
        retry_count: int,
        scheduled_at: datetime,
        error: str,
    ) -> bool:
        """Publish campaign.delivery.retry_scheduled event"""
        data = DeliveryRetryScheduledEventData(
            queue_item_id=queue_item.queue_item_id,
            campaign_id=queue_item.campaign_id,
            retry_count=retry_count,
            scheduled_at=scheduled_at,
            error=error,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(DeliveryEventType.RETRY_SCHEDULED, data.model_dump(mode="json"))

    async def publish_failed(
        self,
        queue_item: CampaignQueueItem,
        retry_count: int,
        error: str,
    ) -> bool:
        """Publish campaign.delivery.failed event"""
        data = DeliveryFailedEventData(
            queue_item_id=queue_item.queue_item_id,
            campaign_id=queue_item.campaign_id,
            retry_count=retry_count,
            error=error,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(DeliveryEventType.FAILED, data.model_dump(mode="json"))
