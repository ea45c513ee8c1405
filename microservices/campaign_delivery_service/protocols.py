"""
Campaign Delivery Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple

from .models import (
    Campaign,
    CampaignLog,
    CampaignQueueItem,
    CampaignStatus,
    CampaignType,
    Customer,
    DeliveryTotals,
    ProviderResponse,
    Segment,
    SendResult,
    StoreCredentials,
)


# ====================
# Repository Protocol
# ====================


class DeliveryRepositoryProtocol(Protocol):
    """Protocol for campaign delivery persistence"""

    async def initialize(self) -> None:
        """Initialize repository connection"""
        ...

    async def close(self) -> None:
        """Close repository connection"""
        ...

    async def health_check(self) -> bool:
        """Check repository health"""
        ...

    # Queue operations
    async def enqueue(self, item: CampaignQueueItem) -> CampaignQueueItem:
        """Insert a new PENDING queue item"""
        ...

    async def get_queue_item(self, queue_item_id: str) -> Optional[CampaignQueueItem]:
        """Get queue item by ID"""
        ...

    async def lease_next_item(self, now: datetime) -> Optional[CampaignQueueItem]:
        """Atomically move the oldest due PENDING item to PROCESSING under a fresh lease token"""
        ...

    async def holds_lease(self, queue_item_id: str, lease_token: str) -> bool:
        """Whether the item is still PROCESSING under the given lease"""
        ...

    async def reclaim_stale_items(
        self, cutoff: datetime, max_retries: int, now: datetime
    ) -> List[CampaignQueueItem]:
        """Return PROCESSING items started before cutoff to PENDING (or FAILED); returns them"""
        ...

    async def schedule_retry(
        self,
        queue_item_id: str,
        lease_token: str,
        retry_count: int,
        scheduled_at: datetime,
        last_error: str,
        attempted_at: datetime,
    ) -> bool:
        """Put a leased queue item back to PENDING; False when the lease was lost"""
        ...

    async def mark_failed(
        self,
        queue_item_id: str,
        lease_token: str,
        retry_count: int,
        last_error: str,
        attempted_at: datetime,
    ) -> bool:
        """Mark a leased queue item terminally FAILED; False when the lease was lost"""
        ...

    # Context lookups
    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        """Get campaign by ID"""
        ...

    async def update_campaign_status(
        self, campaign_id: str, status: CampaignStatus
    ) -> None:
        """Update campaign status"""
        ...

    async def get_store_credentials(self, store_id: str) -> Optional[StoreCredentials]:
        """Get store data credentials"""
        ...

    async def get_segment(self, segment_id: str) -> Optional[Segment]:
        """Get segment with its loaded filter tree"""
        ...

    # Delivery log
    async def append_log(self, log: CampaignLog) -> CampaignLog:
        """Append a per-recipient delivery record"""
        ...

    async def get_logged_customer_ids(self, queue_item_id: str) -> Set[str]:
        """Customers already logged for a queue item"""
        ...

    async def summarize_logs(self, queue_item_id: str) -> DeliveryTotals:
        """Tally sent/delivered/failed from a queue item's logs"""
        ...

    async def list_logs(
        self, campaign_id: str, limit: int = 100, offset: int = 0
    ) -> Tuple[List[CampaignLog], int]:
        """List logs for a campaign"""
        ...

    # Completion and metering
    async def complete_run(
        self,
        queue_item_id: str,
        lease_token: str,
        campaign_id: str,
        totals: DeliveryTotals,
        completed_at: datetime,
    ) -> bool:
        """Atomically complete the campaign and queue item and add totals; False when the lease was lost"""
        ...

    async def upsert_usage(
        self,
        store_id: str,
        period: str,
        messages_sent: int,
        campaigns_executed: int = 1,
    ) -> None:
        """Increment per-period usage counters"""
        ...


# ====================
# Collaborator Protocols
# ====================


class StoreDataClientProtocol(Protocol):
    """Protocol for the store customer data source"""

    async def fetch_customers(self, credentials: StoreCredentials) -> List[Customer]:
        """Fetch every customer of the store"""
        ...


class EmailTransportProtocol(Protocol):
    """Protocol for the e-mail provider"""

    async def send_email(
        self, to: str, subject: str, html: str, text: Optional[str] = None
    ) -> Optional[str]:
        """Send an e-mail; returns the provider message id, raises on failure"""
        ...


class MessagingTransportProtocol(Protocol):
    """Protocol for the WhatsApp messaging provider"""

    @property
    def is_configured(self) -> bool:
        ...

    async def send_text(self, phone: str, body: str) -> ProviderResponse:
        """Send a text message and return the raw provider response"""
        ...


class ChannelDispatcherProtocol(Protocol):
    """Protocol for the channel dispatcher"""

    async def send(
        self,
        channel: CampaignType,
        customer: Customer,
        body: str,
        subject: Optional[str] = None,
    ) -> SendResult:
        ...


class AuditSinkProtocol(Protocol):
    """Protocol for the error audit sink"""

    async def log_error(
        self, message: str, stack: Optional[str], context: Dict[str, Any]
    ) -> None:
        """Record an error; must not raise"""
        ...


class EventPublisherProtocol(Protocol):
    """Protocol for delivery event publishing"""

    async def publish_started(self, queue_item: CampaignQueueItem, campaign: Campaign) -> None:
        ...

    async def publish_completed(
        self, queue_item: CampaignQueueItem, campaign: Campaign, totals: DeliveryTotals
    ) -> None:
        ...

    async def publish_retry_scheduled(
        self, queue_item: CampaignQueueItem, retry_count: int, scheduled_at: datetime, error: str
    ) -> None:
        ...

    async def publish_failed(
        self, queue_item: CampaignQueueItem, retry_count: int, error: str
    ) -> None:
        ...


# ====================
# Custom Exceptions
# ====================


class CampaignDeliveryError(Exception):
    """Base exception for campaign delivery errors"""
    pass


class QueueSetupError(CampaignDeliveryError):
    """Raised when a leased queue item's context cannot be resolved"""
    pass


class CampaignNotFoundError(QueueSetupError):
    """Raised when campaign is not found"""
    pass


class SegmentNotFoundError(QueueSetupError):
    """Raised when a selected segment is not found"""

    def __init__(self, message: str, segment_id: Optional[str] = None):
        super().__init__(message)
        self.segment_id = segment_id


class StoreCredentialsError(QueueSetupError):
    """Raised when store domain or access token is missing"""
    pass


class SegmentDefinitionError(CampaignDeliveryError):
    """Raised when a stored filter tree cannot be loaded"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class StoreDataError(CampaignDeliveryError):
    """Raised when the store data source fails"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RepositoryError(CampaignDeliveryError):
    """Raised when persistence fails"""
    pass


class LeaseLostError(CampaignDeliveryError):
    """Raised when a worker no longer holds the lease on its queue item"""

    def __init__(self, message: str, queue_item_id: Optional[str] = None):
        super().__init__(message)
        self.queue_item_id = queue_item_id


__all__ = [
    # Protocols
    "DeliveryRepositoryProtocol",
    "StoreDataClientProtocol",
    "EmailTransportProtocol",
    "MessagingTransportProtocol",
    "ChannelDispatcherProtocol",
    "AuditSinkProtocol",
    "EventPublisherProtocol",
    # Exceptions
    "CampaignDeliveryError",
    "QueueSetupError",
    "CampaignNotFoundError",
    "SegmentNotFoundError",
    "StoreCredentialsError",
    "SegmentDefinitionError",
    "StoreDataError",
    "RepositoryError",
    "LeaseLostError",
]
