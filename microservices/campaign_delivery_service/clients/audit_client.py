"""
Audit Client

Error sink for terminal delivery failures. Posts an error event to the
audit service; never raises.
"""

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class AuditClient:
    """Audit service HTTP client"""

    def __init__(
        self,
        base_url: str = "http://localhost:8205",
        service_name: str = "campaign_delivery_service",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.service_name = service_name
        self.timeout = 10.0
        self._transport = transport

    async def log_error(
        self,
        message: str,
        stack: Optional[str],
        context: Dict[str, Any],
    ) -> None:
        """
        Record an error event

        Args:
            message: Error summary
            stack: Formatted traceback (optional)
            context: Identifiers of the failed work (campaign_id, queue_item_id)
        """
        event_data = {
            "event_type": "campaign_delivery_failed",
            "category": "system",
            "action": message,
            "severity": "high",
            "status": "error",
            "resource_type": "campaign",
            "resource_id": context.get("campaign_id"),
            "description": message,
            "metadata": {
                "service": self.service_name,
                "stack": stack,
                **context,
            },
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/api/v1/audit/events",
                    json=event_data,
                )
                response.raise_for_status()

        except httpx.HTTPStatusError as e:
            logger.error(f"Failed to log audit event: {e.response.status_code}")
        except Exception as e:
            logger.error(f"Error logging audit event: {e}")
