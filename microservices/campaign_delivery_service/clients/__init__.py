"""
Campaign Delivery Service Clients

HTTP clients for the store data source, channel providers and the audit sink.
"""

from .audit_client import AuditClient
from .email_client import ResendEmailClient
from .store_client import ShopifyStoreClient
from .whatsapp_client import WhatsAppClient

__all__ = [
    "AuditClient",
    "ResendEmailClient",
    "ShopifyStoreClient",
    "WhatsAppClient",
]
