"""
Campaign Delivery Service Data Contract

Test data factories for the Campaign Delivery Service. The Pydantic models
themselves live in microservices.campaign_delivery_service.models and are
re-exported here so every test layer imports data structures from one place.
"""

import random
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from microservices.campaign_delivery_service.models import (
    # Enums
    CampaignType,
    CampaignStatus,
    SendingSpeed,
    QueueItemStatus,
    LogStatus,
    FieldType,
    ConditionOperator,
    Combinator,
    # Models
    Condition,
    ConditionGroup,
    Segment,
    MessageTemplate,
    DeliveryTotals,
    Campaign,
    CampaignQueueItem,
    CampaignLog,
    UsageMetric,
    StoreCredentials,
    SendResult,
    ProviderResponse,
    WorkerResult,
)


class DeliveryTestDataFactory:
    """Factory for generating test data for campaign delivery tests

    Usage:
        factory = DeliveryTestDataFactory()
        customer = factory.make_customer(tags="vip")
        campaign = factory.make_campaign(campaign_type=CampaignType.EMAIL)
        item = factory.make_queue_item(campaign_id=campaign.campaign_id)
    """

    _customer_seq = 1000

    @staticmethod
    def make_id(prefix: str = "cmp") -> str:
        """Generate a unique ID with prefix"""
        return f"{prefix}_{uuid4().hex[:16]}"

    @staticmethod
    def make_store_id() -> str:
        """Generate store ID"""
        return f"str_{uuid4().hex[:16]}"

    @staticmethod
    def make_email() -> str:
        """Generate random email"""
        local = "".join(random.choices(string.ascii_lowercase, k=8))
        return f"{local}@example.com"

    @staticmethod
    def make_phone() -> str:
        """Generate random phone number"""
        return f"+91 {''.join(random.choices(string.digits, k=5))} {''.join(random.choices(string.digits, k=5))}"

    @classmethod
    def make_customer(
        cls,
        customer_id: Optional[int] = None,
        first_name: Optional[str] = "Asha",
        last_name: Optional[str] = "Rao",
        email: Optional[str] = "",
        phone: Optional[str] = "",
        tags: str = "",
        orders_count: int = 0,
        total_spent: str = "0.00",
        **extra: Any,
    ) -> Dict[str, Any]:
        """Generate a Shopify-shaped customer record; email/phone None means absent"""
        if customer_id is None:
            cls._customer_seq += 1
            customer_id = cls._customer_seq
        customer = {
            "id": customer_id,
            "first_name": first_name,
            "last_name": last_name,
            "email": cls.make_email() if email == "" else email,
            "phone": cls.make_phone() if phone == "" else phone,
            "tags": tags,
            "orders_count": orders_count,
            "total_spent": total_spent,
            "accepts_marketing": False,
            "verified_email": False,
            "created_at": "2023-06-01T10:00:00Z",
            "updated_at": "2024-05-01T10:00:00Z",
            "addresses": [],
        }
        customer.update(extra)
        return customer

    @classmethod
    def make_customers(cls, count: int, **kwargs: Any) -> List[Dict[str, Any]]:
        """Generate several customers"""
        return [cls.make_customer(**kwargs) for _ in range(count)]

    @staticmethod
    def make_condition(
        field: str = "total_spent",
        operator: Any = ConditionOperator.GREATER_THAN,
        value: Any = 500,
        **kwargs: Any,
    ) -> Condition:
        """Generate a condition"""
        return Condition(field=field, operator=operator, value=value, **kwargs)

    @staticmethod
    def make_group(
        *conditions: Condition,
        combinator: Combinator = Combinator.AND,
        groups: Optional[List[ConditionGroup]] = None,
    ) -> ConditionGroup:
        """Generate a condition group"""
        return ConditionGroup(
            combinator=combinator,
            conditions=list(conditions),
            groups=groups or [],
        )

    @classmethod
    def make_segment(
        cls,
        name: str = "High spenders",
        filters: Optional[ConditionGroup] = None,
        store_id: Optional[str] = None,
        **kwargs: Any,
    ) -> Segment:
        """Generate a segment"""
        return Segment(
            segment_id=cls.make_id("seg"),
            store_id=store_id,
            name=name,
            filters=filters or ConditionGroup(),
            **kwargs,
        )

    @classmethod
    def make_campaign(
        cls,
        campaign_type: CampaignType = CampaignType.EMAIL,
        segment_ids: Optional[List[str]] = None,
        body: str = "<p>Hi {{first_name}}, new arrivals are in!</p>",
        subject: Optional[str] = "Hello {{name}}",
        sending_speed: SendingSpeed = SendingSpeed.FAST,
        status: CampaignStatus = CampaignStatus.SCHEDULED,
        store_id: Optional[str] = None,
    ) -> Campaign:
        """Generate a campaign"""
        return Campaign(
            campaign_id=cls.make_id("cmp"),
            store_id=store_id or cls.make_store_id(),
            name="Spring launch",
            campaign_type=campaign_type,
            segment_ids=segment_ids or [],
            message_template=MessageTemplate(body=body, subject=subject),
            sending_speed=sending_speed,
            status=status,
        )

    @staticmethod
    def make_credentials(
        store_id: str,
        shop_domain: Optional[str] = "acme.myshopify.com",
        access_token: Optional[str] = "shpat_test_token",
    ) -> StoreCredentials:
        """Generate store credentials"""
        return StoreCredentials(
            store_id=store_id,
            shop_domain=shop_domain,
            access_token=access_token,
        )

    @classmethod
    def make_queue_item(
        cls,
        campaign_id: str,
        store_id: Optional[str] = None,
        status: QueueItemStatus = QueueItemStatus.PENDING,
        scheduled_at: Optional[datetime] = None,
        retry_count: int = 0,
    ) -> CampaignQueueItem:
        """Generate a queue item"""
        return CampaignQueueItem(
            queue_item_id=cls.make_id("cqi"),
            campaign_id=campaign_id,
            store_id=store_id,
            status=status,
            scheduled_at=scheduled_at or datetime.now(timezone.utc) - timedelta(minutes=1),
            retry_count=retry_count,
        )

    @classmethod
    def make_log(
        cls,
        campaign_id: str,
        queue_item_id: str,
        customer_id: str,
        status: LogStatus = LogStatus.SUCCESS,
        dispatched: bool = True,
    ) -> CampaignLog:
        """Generate a delivery log"""
        return CampaignLog(
            campaign_id=campaign_id,
            queue_item_id=queue_item_id,
            customer_id=customer_id,
            status=status,
            message="Email sent" if status == LogStatus.SUCCESS else None,
            error=None if status == LogStatus.SUCCESS else "Send failed",
            dispatched=dispatched,
        )

    @staticmethod
    def make_whatsapp_success(message_id: str = "wamid.HBgMOTE5ODc2NTQzMjEw") -> Dict[str, Any]:
        """WhatsApp Cloud API success body"""
        return {
            "messaging_product": "whatsapp",
            "contacts": [{"input": "919876543210", "wa_id": "919876543210"}],
            "messages": [{"id": message_id}],
        }

    @staticmethod
    def make_whatsapp_error(message: str = "Invalid parameter") -> Dict[str, Any]:
        """WhatsApp Cloud API error body"""
        return {"error": {"message": message, "type": "OAuthException", "code": 100}}


__all__ = [
    # Enums
    "CampaignType",
    "CampaignStatus",
    "SendingSpeed",
    "QueueItemStatus",
    "LogStatus",
    "FieldType",
    "ConditionOperator",
    "Combinator",
    # Models
    "Condition",
    "ConditionGroup",
    "Segment",
    "MessageTemplate",
    "DeliveryTotals",
    "Campaign",
    "CampaignQueueItem",
    "CampaignLog",
    "UsageMetric",
    "StoreCredentials",
    "SendResult",
    "ProviderResponse",
    "WorkerResult",
    # Factory
    "DeliveryTestDataFactory",
]
