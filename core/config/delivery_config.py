#!/usr/bin/env python3
"""Campaign delivery configuration

Worker retry policy, store data API, and channel provider settings.
Combines the infrastructure and logging sub-configs.
"""
import os
from dataclasses import dataclass, field
from typing import Optional

from .infra_config import InfraConfig
from .logging_config import LoggingConfig


def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default


@dataclass
class WorkerConfig:
    """Queue worker retry and scheduling policy"""
    max_retries: int = 3
    retry_backoff_seconds: int = 60
    # 0 disables reclaiming of PROCESSING items left behind by a crashed worker
    lease_timeout_seconds: int = 0
    poll_interval_seconds: float = 60.0
    # Run the polling loop inside the API process instead of relying on an external cron
    background_enabled: bool = False

    @classmethod
    def from_env(cls) -> 'WorkerConfig':
        return cls(
            max_retries=max(1, _int(os.getenv("CAMPAIGN_RETRY_LIMIT", "3"), 3)),
            retry_backoff_seconds=_int(os.getenv("CAMPAIGN_RETRY_BACKOFF_SECONDS", "60"), 60),
            lease_timeout_seconds=_int(os.getenv("CAMPAIGN_LEASE_TIMEOUT_SECONDS", "0"), 0),
            poll_interval_seconds=_float(os.getenv("CAMPAIGN_WORKER_INTERVAL_SECONDS", "60"), 60.0),
            background_enabled=os.getenv("CAMPAIGN_WORKER_ENABLED", "false").lower() == "true",
        )


@dataclass
class StoreApiConfig:
    """Store data (Shopify Admin REST) settings"""
    api_version: str = "2024-01"
    page_size: int = 250
    timeout: float = 30.0

    @classmethod
    def from_env(cls) -> 'StoreApiConfig':
        return cls(
            api_version=os.getenv("STORE_API_VERSION", "2024-01"),
            page_size=min(250, max(1, _int(os.getenv("STORE_PAGE_SIZE", "250"), 250))),
            timeout=_float(os.getenv("STORE_API_TIMEOUT", "30"), 30.0),
        )


@dataclass
class ChannelConfig:
    """Outbound channel provider credentials"""
    # WhatsApp Cloud API
    whatsapp_phone_number_id: Optional[str] = None
    whatsapp_access_token: Optional[str] = None
    whatsapp_api_version: str = "v18.0"
    whatsapp_base_url: str = "https://graph.facebook.com"

    # Resend e-mail API
    resend_api_key: Optional[str] = None
    resend_base_url: str = "https://api.resend.com"
    email_from: str = "noreply@example.com"

    timeout: float = 30.0

    @property
    def whatsapp_configured(self) -> bool:
        return bool(self.whatsapp_phone_number_id and self.whatsapp_access_token)

    @property
    def email_configured(self) -> bool:
        return bool(self.resend_api_key)

    @classmethod
    def from_env(cls) -> 'ChannelConfig':
        return cls(
            whatsapp_phone_number_id=os.getenv("WHATSAPP_PHONE_NUMBER_ID"),
            whatsapp_access_token=os.getenv("WHATSAPP_ACCESS_TOKEN"),
            whatsapp_api_version=os.getenv("WHATSAPP_API_VERSION", "v18.0"),
            whatsapp_base_url=os.getenv("WHATSAPP_BASE_URL", "https://graph.facebook.com"),
            resend_api_key=os.getenv("RESEND_API_KEY"),
            resend_base_url=os.getenv("RESEND_BASE_URL", "https://api.resend.com"),
            email_from=os.getenv("EMAIL_FROM", "noreply@example.com"),
            timeout=_float(os.getenv("CHANNEL_TIMEOUT", "30"), 30.0),
        )


@dataclass
class DeliveryConfig:
    """Campaign delivery service main configuration"""
    service_name: str = "campaign_delivery_service"
    service_port: int = 8241
    environment: str = "development"

    # Peer services
    audit_service_url: str = "http://localhost:8205"

    # Event bus
    nats_enabled: bool = False

    worker: WorkerConfig = field(default_factory=WorkerConfig)
    store_api: StoreApiConfig = field(default_factory=StoreApiConfig)
    channels: ChannelConfig = field(default_factory=ChannelConfig)
    infrastructure: InfraConfig = field(default_factory=InfraConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> 'DeliveryConfig':
        """Load delivery configuration from environment variables"""
        return cls(
            service_name=os.getenv("SERVICE_NAME", "campaign_delivery_service"),
            service_port=_int(os.getenv("SERVICE_PORT", "8241"), 8241),
            environment=os.getenv("ENV") or os.getenv("ENVIRONMENT", "development"),
            audit_service_url=os.getenv("AUDIT_SERVICE_URL", "http://localhost:8205").rstrip("/"),
            nats_enabled=os.getenv("NATS_ENABLED", "false").lower() == "true",
            worker=WorkerConfig.from_env(),
            store_api=StoreApiConfig.from_env(),
            channels=ChannelConfig.from_env(),
            infrastructure=InfraConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )
