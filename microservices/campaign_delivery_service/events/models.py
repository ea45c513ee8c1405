"""
Campaign Delivery Event Data Models

Event type definitions and data structures for campaign delivery events.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Event Type Definitions
# =============================================================================


class DeliveryEventType(str, Enum):
    """
    Events published by campaign_delivery_service.

    These are the authoritative event types for this service.
    Other services should reference these when subscribing.
    """
    STARTED = "campaign.delivery.started"
    COMPLETED = "campaign.delivery.completed"
    RETRY_SCHEDULED = "campaign.delivery.retry_scheduled"
    FAILED = "campaign.delivery.failed"


# =============================================================================
# Event Data Models - Published Events
# =============================================================================


class DeliveryStartedEventData(BaseModel):
    """campaign.delivery.started event data"""
    queue_item_id: str = Field(..., description="Queue item ID")
    campaign_id: str = Field(..., description="Campaign ID")
    store_id: str = Field(..., description="Store ID")
    channel: str = Field(..., description="Campaign channel")
    retry_count: int = Field(0, description="Attempts already made")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")


class DeliveryCompletedEventData(BaseModel):
    """campaign.delivery.completed event data"""
    queue_item_id: str = Field(..., description="Queue item ID")
    campaign_id: str = Field(..., description="Campaign ID")
    store_id: str = Field(..., description="Store ID")
    sent: int = Field(..., description="Messages handed to a channel transport")
    delivered: int = Field(..., description="Successful sends")
    failed: int = Field(..., description="Failed sends")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")


class DeliveryRetryScheduledEventData(BaseModel):
    """campaign.delivery.retry_scheduled event data"""
    queue_item_id: str = Field(..., description="Queue item ID")
    campaign_id: str = Field(..., description="Campaign ID")
    retry_count: int = Field(..., description="Attempts made so far")
    scheduled_at: datetime = Field(..., description="Next attempt time")
    error: str = Field(..., description="Error of the failed attempt")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")


class DeliveryFailedEventData(BaseModel):
    """campaign.delivery.failed event data"""
    queue_item_id: str = Field(..., description="Queue item ID")
    campaign_id: str = Field(..., description="Campaign ID")
    retry_count: int = Field(..., description="Attempts made")
    error: str = Field(..., description="Error of the last attempt")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")
