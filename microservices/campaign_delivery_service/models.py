"""
Campaign Delivery Service Data Models

Canonical data structures for the delivery engine: filter trees, segments,
campaigns, queue items, per-recipient logs, usage metering and the
value types passed between the engine's stages.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


# Customer records are supplied wholesale by the store data source
# (Shopify-shaped JSON) and addressed by dotted path.
Customer = Dict[str, Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class CampaignType(str, Enum):
    """Outbound channel a campaign sends through"""
    EMAIL = "EMAIL"
    WHATSAPP = "WHATSAPP"
    SMS = "SMS"
    PUSH = "PUSH"


class CampaignStatus(str, Enum):
    """Campaign lifecycle status"""
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class SendingSpeed(str, Enum):
    """Sending speed tier (see pacer.SENDING_SPEED_DELAYS)"""
    FAST = "FAST"
    MEDIUM = "MEDIUM"
    SLOW = "SLOW"


class QueueItemStatus(str, Enum):
    """Campaign queue item status"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class LogStatus(str, Enum):
    """Per-recipient outcome"""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class FieldType(str, Enum):
    """Declared type of a customer field"""
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    ARRAY = "array"
    BOOLEAN = "boolean"


class ConditionOperator(str, Enum):
    """Condition operators; which ones apply depends on the field type"""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    BETWEEN = "between"
    IN_LIST = "in_list"
    IN_LAST_DAYS = "in_last_days"
    IS_SET = "is_set"
    IS_NOT_SET = "is_not_set"
    IS_TRUE = "is_true"
    IS_FALSE = "is_false"


# Spellings used by older segment definitions and the journey builder
OPERATOR_ALIASES: Dict[str, ConditionOperator] = {
    "is_empty": ConditionOperator.IS_NOT_SET,
    "is_not_empty": ConditionOperator.IS_SET,
    "after_date": ConditionOperator.GREATER_THAN,
    "before_date": ConditionOperator.LESS_THAN,
    "gt": ConditionOperator.GREATER_THAN,
    "lt": ConditionOperator.LESS_THAN,
    "gte": ConditionOperator.GREATER_THAN_OR_EQUAL,
    "lte": ConditionOperator.LESS_THAN_OR_EQUAL,
    "in": ConditionOperator.IN_LIST,
}


class Combinator(str, Enum):
    """Boolean combinator of a condition group"""
    AND = "AND"
    OR = "OR"


# =============================================================================
# BASE MODELS
# =============================================================================

class BaseContract(BaseModel):
    """Base model for all contracts"""

    model_config = {
        "from_attributes": True,
        "populate_by_name": True,
    }


# =============================================================================
# FILTER TREE
# =============================================================================

class Condition(BaseContract):
    """One field/operator/value test against a customer record"""
    field: str = Field(..., min_length=1, description="Dotted field path or derived field name")
    operator: ConditionOperator
    value: Any = None
    value_to: Any = Field(None, alias="valueTo", description="Upper bound for between")
    field_type: Optional[FieldType] = Field(None, alias="fieldType")
    case_insensitive: Optional[bool] = Field(None, alias="caseInsensitive")

    @field_validator("operator", mode="before")
    @classmethod
    def normalize_operator(cls, v):
        if isinstance(v, str):
            key = v.strip().lower()
            if key in OPERATOR_ALIASES:
                return OPERATOR_ALIASES[key]
            return key
        return v

    @model_validator(mode="after")
    def validate_range(self):
        if self.operator != ConditionOperator.BETWEEN:
            return self
        # Older definitions store the range as [min, max] or "min,max" in value
        if self.value_to is None:
            bounds = self.value
            if isinstance(bounds, str) and "," in bounds:
                bounds = [part.strip() for part in bounds.split(",")]
            if isinstance(bounds, (list, tuple)) and len(bounds) == 2:
                self.value, self.value_to = bounds[0], bounds[1]
        if self.value in (None, "") or self.value_to in (None, ""):
            raise ValueError("between requires both value and value_to")
        return self


class ConditionGroup(BaseContract):
    """AND/OR composition of conditions and nested groups"""
    combinator: Combinator = Combinator.AND
    conditions: List[Condition] = Field(default_factory=list)
    groups: List["ConditionGroup"] = Field(default_factory=list)

    @field_validator("combinator", mode="before")
    @classmethod
    def normalize_combinator(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @property
    def is_empty(self) -> bool:
        return not self.conditions and not self.groups


ConditionGroup.model_rebuild()


class Segment(BaseContract):
    """Named, persisted audience filter"""
    segment_id: str = Field(default_factory=lambda: f"seg_{uuid4().hex[:16]}")
    store_id: Optional[str] = None
    name: str = ""
    filters: ConditionGroup = Field(default_factory=ConditionGroup)
    is_catch_all: bool = False
    # Set when the stored filter tree could not be loaded; such a segment matches nobody
    definition_error: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# =============================================================================
# CAMPAIGN MODELS
# =============================================================================

class MessageTemplate(BaseContract):
    """Message body and optional subject, with {{token}} placeholders"""
    body: str = ""
    subject: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def unwrap_message_content(cls, data):
        # Wizard-created campaigns nest the content under messageContent
        if isinstance(data, dict) and not data.get("body"):
            content = data.get("messageContent") or data.get("message_content") or {}
            if isinstance(content, dict) and content.get("body"):
                data = {
                    **data,
                    "body": content.get("body"),
                    "subject": data.get("subject") or content.get("subject"),
                }
        return data


class DeliveryTotals(BaseContract):
    """Aggregate delivery counters"""
    sent: int = Field(default=0, ge=0)
    delivered: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)

    def __add__(self, other: "DeliveryTotals") -> "DeliveryTotals":
        return DeliveryTotals(
            sent=self.sent + other.sent,
            delivered=self.delivered + other.delivered,
            failed=self.failed + other.failed,
        )


class Campaign(BaseContract):
    """Channel-specific message send targeting one or more segments"""
    campaign_id: str = Field(default_factory=lambda: f"cmp_{uuid4().hex[:16]}")
    store_id: str
    name: str = ""
    campaign_type: CampaignType
    segment_ids: List[str] = Field(default_factory=list)
    message_template: MessageTemplate = Field(default_factory=MessageTemplate)
    sending_speed: SendingSpeed = SendingSpeed.MEDIUM
    status: CampaignStatus = CampaignStatus.DRAFT
    totals: DeliveryTotals = Field(default_factory=DeliveryTotals)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    executed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def normalize_segment_ids(cls, data):
        # Single-segment campaigns carry segment_id instead of a list
        if isinstance(data, dict) and not data.get("segment_ids"):
            segment_id = data.get("segment_id")
            if segment_id:
                data = {**data, "segment_ids": [segment_id]}
        return data


class CampaignQueueItem(BaseContract):
    """One attempt to execute a campaign's send; never deleted"""
    queue_item_id: str = Field(default_factory=lambda: f"cqi_{uuid4().hex[:16]}")
    campaign_id: str
    store_id: Optional[str] = None
    status: QueueItemStatus = QueueItemStatus.PENDING
    scheduled_at: datetime = Field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    # Identifies the current PROCESSING lease; cleared when the lease ends
    lease_token: Optional[str] = None
    completed_at: Optional[datetime] = None
    retry_count: int = Field(default=0, ge=0)
    last_error: Optional[str] = None
    last_attempt: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)


class CampaignLog(BaseContract):
    """Immutable per-recipient delivery record"""
    log_id: str = Field(default_factory=lambda: f"clog_{uuid4().hex[:16]}")
    campaign_id: str
    queue_item_id: Optional[str] = None
    customer_id: str
    status: LogStatus
    message: Optional[str] = None
    error: Optional[str] = None
    # True when the message reached a channel transport (counts toward "sent")
    dispatched: bool = False
    created_at: datetime = Field(default_factory=_utcnow)


class UsageMetric(BaseContract):
    """Per-store, per-billing-period usage counters"""
    store_id: str
    period: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    messages_sent: int = Field(default=0, ge=0)
    campaigns_executed: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=_utcnow)


class StoreCredentials(BaseContract):
    """Store data access credentials"""
    store_id: str
    shop_domain: Optional[str] = None
    access_token: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.shop_domain and self.access_token)


# =============================================================================
# ENGINE VALUE TYPES
# =============================================================================

class SendResult(BaseContract):
    """Outcome of one dispatch attempt"""
    ok: bool
    error: Optional[str] = None
    message: Optional[str] = None
    # False when the message never reached a transport (e.g. missing address)
    attempted: bool = True
    provider_message_id: Optional[str] = None

    @classmethod
    def success(
        cls,
        message: Optional[str] = None,
        provider_message_id: Optional[str] = None,
    ) -> "SendResult":
        return cls(ok=True, message=message, provider_message_id=provider_message_id)

    @classmethod
    def failure(cls, error: str, attempted: bool = True) -> "SendResult":
        return cls(ok=False, error=error, attempted=attempted)


class ProviderResponse(BaseContract):
    """Raw response of a messaging provider call"""
    status_code: int
    payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class WorkerResult(BaseContract):
    """Result of one worker invocation"""
    processed: int = 0
    queue_item_id: Optional[str] = None
    campaign_id: Optional[str] = None
    status: Optional[QueueItemStatus] = None
    error: Optional[str] = None
    sent: int = 0
    delivered: int = 0
    failed: int = 0
    reclaimed: int = 0


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class EnqueueRequest(BaseContract):
    """Request to queue a campaign send"""
    campaign_id: str = Field(..., min_length=1)
    scheduled_at: Optional[datetime] = None


class QueueItemResponse(BaseContract):
    """Queue item response"""
    queue_item: CampaignQueueItem
    message: str = "Success"


class CampaignLogListResponse(BaseContract):
    """Paginated per-recipient logs"""
    logs: List[CampaignLog]
    total: int
    limit: int
    offset: int
    has_more: bool


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    service: str
    port: int
    version: str
    dependencies: Dict[str, str] = Field(default_factory=dict)


class ReadinessResponse(BaseModel):
    """Readiness check response"""
    ready: bool
    checks: Dict[str, bool] = Field(default_factory=dict)
    details: Dict[str, str] = Field(default_factory=dict)


class LivenessResponse(BaseModel):
    """Liveness check response"""
    alive: bool
    uptime_seconds: float


class ErrorResponse(BaseModel):
    """Standard error response"""
    detail: str
    error_code: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


__all__ = [
    "Customer",
    # Enums
    "CampaignType",
    "CampaignStatus",
    "SendingSpeed",
    "QueueItemStatus",
    "LogStatus",
    "FieldType",
    "ConditionOperator",
    "OPERATOR_ALIASES",
    "Combinator",
    # Filter tree
    "Condition",
    "ConditionGroup",
    "Segment",
    # Campaign
    "MessageTemplate",
    "DeliveryTotals",
    "Campaign",
    "CampaignQueueItem",
    "CampaignLog",
    "UsageMetric",
    "StoreCredentials",
    # Engine values
    "SendResult",
    "ProviderResponse",
    "WorkerResult",
    # Request/Response
    "EnqueueRequest",
    "QueueItemResponse",
    "CampaignLogListResponse",
    "HealthResponse",
    "ReadinessResponse",
    "LivenessResponse",
    "ErrorResponse",
]
