"""
Campaign Delivery Service Factory

Factory for creating campaign delivery components with proper dependency injection.
"""

import logging
from typing import Optional

from core.config import DeliveryConfig, get_settings
from core.nats_client import NATSEventBus

from .clients.audit_client import AuditClient
from .clients.email_client import ResendEmailClient
from .clients.store_client import ShopifyStoreClient
from .clients.whatsapp_client import WhatsAppClient
from .delivery_repository import DeliveryRepository
from .delivery_worker import DeliveryWorker
from .dispatcher import ChannelDispatcher
from .events.publishers import DeliveryEventPublisher
from .pacer import Pacer

logger = logging.getLogger(__name__)


class DeliveryServiceFactory:
    """Factory for creating campaign delivery components"""

    def __init__(self, config: Optional[DeliveryConfig] = None):
        self.config = config or get_settings()
        self._repository: Optional[DeliveryRepository] = None
        self._nats_client: Optional[NATSEventBus] = None
        self._event_publisher: Optional[DeliveryEventPublisher] = None
        self._dispatcher: Optional[ChannelDispatcher] = None
        self._worker: Optional[DeliveryWorker] = None

    async def initialize(self) -> None:
        """Initialize all components"""
        logger.info("Initializing Campaign Delivery Service components...")

        # Initialize repository
        self._repository = DeliveryRepository(self.config.infrastructure)
        await self._repository.initialize()

        # Initialize NATS client
        if self.config.nats_enabled:
            try:
                self._nats_client = NATSEventBus(
                    service_name=self.config.service_name,
                    config=self.config.infrastructure,
                )
                await self._nats_client.connect()
                logger.info("NATS client connected")
            except Exception as e:
                logger.warning(f"NATS client initialization failed: {e}")
                self._nats_client = None
        self._event_publisher = DeliveryEventPublisher(self._nats_client)

        # Initialize channel transports
        channels = self.config.channels
        if not channels.whatsapp_configured:
            logger.warning("WhatsApp provider not configured")
        if not channels.email_configured:
            logger.warning("Email provider not configured")
        self._dispatcher = ChannelDispatcher(
            email_transport=ResendEmailClient(channels) if channels.email_configured else None,
            messaging_transport=WhatsAppClient(channels),
        )

        # Initialize worker
        self._worker = DeliveryWorker(
            repository=self._repository,
            store_client=ShopifyStoreClient(self.config.store_api),
            dispatcher=self._dispatcher,
            pacer=Pacer(),
            audit_sink=AuditClient(
                base_url=self.config.audit_service_url,
                service_name=self.config.service_name,
            ),
            event_publisher=self._event_publisher,
            config=self.config.worker,
        )

        logger.info("Campaign Delivery Service components initialized")

    async def close(self) -> None:
        """Close all components"""
        logger.info("Closing Campaign Delivery Service components...")

        if self._nats_client:
            await self._nats_client.close()

        if self._repository:
            await self._repository.close()

        logger.info("Campaign Delivery Service components closed")

    @property
    def repository(self) -> DeliveryRepository:
        """Get delivery repository"""
        if not self._repository:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._repository

    @property
    def worker(self) -> DeliveryWorker:
        """Get delivery worker"""
        if not self._worker:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._worker

    @property
    def dispatcher(self) -> ChannelDispatcher:
        """Get channel dispatcher"""
        if not self._dispatcher:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._dispatcher

    @property
    def nats_client(self) -> Optional[NATSEventBus]:
        """Get NATS client"""
        return self._nats_client


__all__ = ["DeliveryServiceFactory"]
