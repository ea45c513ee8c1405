"""
Store Data Client

Fetches a store's customers from the Shopify Admin REST API, following
cursor pagination through the Link header.
"""

import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from core.config import StoreApiConfig

from ..models import Customer, StoreCredentials
from ..protocols import StoreCredentialsError, StoreDataError

logger = logging.getLogger(__name__)

# Upper bound on pages per fetch (250 customers each)
MAX_PAGES = 2000


def normalize_shop_domain(shop: str) -> str:
    """Strip scheme and path; bare shop names get the myshopify.com suffix"""
    domain = re.sub(r"^https?://", "", shop.strip()).split("/")[0]
    if "." not in domain:
        domain = f"{domain}.myshopify.com"
    return domain


def next_page_info(response: httpx.Response) -> Optional[str]:
    """Cursor of the rel="next" page from the Link header, if any"""
    link = response.links.get("next")
    if not link or not link.get("url"):
        return None
    return httpx.URL(link["url"]).params.get("page_info")


class ShopifyStoreClient:
    """Client for the Shopify Admin customers resource"""

    def __init__(
        self,
        config: Optional[StoreApiConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or StoreApiConfig.from_env()
        self.timeout = self.config.timeout
        self._transport = transport

    def _base_url(self, credentials: StoreCredentials) -> str:
        domain = normalize_shop_domain(credentials.shop_domain or "")
        return f"https://{domain}/admin/api/{self.config.api_version}"

    async def fetch_customers(self, credentials: StoreCredentials) -> List[Customer]:
        """
        Fetch every customer of the store.

        Args:
            credentials: Store domain and Admin API access token

        Returns:
            Customer records in store order

        Raises:
            StoreCredentialsError: If domain or token is missing
            StoreDataError: If the store API fails
        """
        if not credentials.is_complete:
            raise StoreCredentialsError("Store or access token missing")

        url = f"{self._base_url(credentials)}/customers.json"
        headers = {
            "X-Shopify-Access-Token": credentials.access_token,
            "Content-Type": "application/json",
        }
        customers: List[Customer] = []
        page_info: Optional[str] = None
        seen_cursors = set()

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                for _ in range(MAX_PAGES):
                    params: Dict[str, Any] = {"limit": self.config.page_size}
                    if page_info:
                        params["page_info"] = page_info

                    response = await client.get(url, params=params, headers=headers)
                    response.raise_for_status()
                    customers.extend(self._page_items(response.json()))

                    page_info = next_page_info(response)
                    if not page_info or page_info in seen_cursors:
                        break
                    seen_cursors.add(page_info)
                else:
                    logger.warning(f"Stopped customer fetch for {credentials.store_id} after {MAX_PAGES} pages")

        except httpx.HTTPStatusError as e:
            logger.error(f"Error fetching customers: {e.response.text}")
            raise StoreDataError(
                f"Store API returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e

        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error fetching customers: {e}")
            raise StoreDataError(f"Store API request failed: {e}") from e

        logger.info(f"Fetched {len(customers)} customers for store {credentials.store_id}")
        return customers

    @staticmethod
    def _page_items(data: Any) -> List[Customer]:
        if not isinstance(data, dict):
            return []
        items = data.get("customers")
        if items is None and data:
            items = next(iter(data.values()))
        if not isinstance(items, list):
            return []
        return [item for item in items if isinstance(item, dict)]
