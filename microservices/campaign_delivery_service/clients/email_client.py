"""
Email Client

Sends campaign e-mail through the Resend HTTP API.
"""

import logging
from typing import Optional

import httpx

from core.config import ChannelConfig

logger = logging.getLogger(__name__)


class ResendEmailClient:
    """Client for the Resend e-mail API"""

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = config or ChannelConfig.from_env()
        self.api_key = config.resend_api_key
        self.base_url = config.resend_base_url.rstrip("/")
        self.sender = config.email_from
        self.timeout = config.timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def send_email(
        self,
        to: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
    ) -> Optional[str]:
        """
        Send an e-mail.

        Args:
            to: Recipient address
            subject: Subject line
            html: HTML body
            text: Plain-text body

        Returns:
            Provider message id

        Raises:
            RuntimeError: If no API key is configured
            httpx.HTTPError: If the provider rejects the request
        """
        if not self.api_key:
            raise RuntimeError("Email provider not configured")

        payload = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/emails",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
                return response.json().get("id")

        except httpx.HTTPStatusError as e:
            logger.error(f"Error sending email: {e.response.text}")
            raise

        except Exception as e:
            logger.error(f"Error sending email: {e}")
            raise
