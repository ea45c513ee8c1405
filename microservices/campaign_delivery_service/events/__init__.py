"""
Campaign Delivery Service Events

Event models and publisher for campaign delivery.
"""

from .models import (
    DeliveryEventType,
    DeliveryStartedEventData,
    DeliveryCompletedEventData,
    DeliveryRetryScheduledEventData,
    DeliveryFailedEventData,
)
from .publishers import DeliveryEventPublisher

__all__ = [
    # Event Types
    "DeliveryEventType",
    # Event Data Models
    "DeliveryStartedEventData",
    "DeliveryCompletedEventData",
    "DeliveryRetryScheduledEventData",
    "DeliveryFailedEventData",
    # Publisher
    "DeliveryEventPublisher",
]
