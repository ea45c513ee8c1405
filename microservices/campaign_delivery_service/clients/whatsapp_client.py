"""
WhatsApp Client

Sends text messages through the WhatsApp Cloud API (Meta Graph API).
"""

import logging
from typing import Optional

import httpx

from core.config import ChannelConfig

from ..models import ProviderResponse

logger = logging.getLogger(__name__)


class WhatsAppClient:
    """Client for the WhatsApp Cloud API messages endpoint"""

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = config or ChannelConfig.from_env()
        self.phone_number_id = config.whatsapp_phone_number_id
        self.access_token = config.whatsapp_access_token
        self.base_url = f"{config.whatsapp_base_url.rstrip('/')}/{config.whatsapp_api_version}"
        self.timeout = config.timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)

    async def send_text(self, phone: str, body: str) -> ProviderResponse:
        """
        Send a plain text message.

        The raw status and JSON body are returned without interpretation;
        non-2xx responses are not raised.
        """
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": phone,
            "type": "text",
            "text": {"preview_url": False, "body": body},
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.base_url}/{self.phone_number_id}/messages",
                json=payload,
                headers={"Authorization": f"Bearer {self.access_token}"},
            )

        try:
            data = response.json()
        except ValueError:
            logger.warning(f"Non-JSON response from WhatsApp API ({response.status_code})")
            data = {}

        if not response.is_success:
            logger.debug(f"WhatsApp API returned {response.status_code}: {response.text}")

        return ProviderResponse(
            status_code=response.status_code,
            payload=data if isinstance(data, dict) else {},
        )
