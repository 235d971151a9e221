"""Lemon Squeezy REST API client (JSON:API).

Covers what the storefront needs: paginated product and variant listing
for variant sync, single-variant lookup, and hosted checkout creation.
Prices from the API are integer cents.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from storefront.config import Settings
from storefront.errors import AuthenticationError, ConfigurationError, ProcessingError
from storefront.retry import retry_with_backoff

logger = logging.getLogger(__name__)

_JSONAPI = "application/vnd.api+json"
_PAGE_SIZE = 100


def to_cents(dollars: float) -> int:
    return round(dollars * 100)


def to_dollars(cents: int) -> float:
    return cents / 100


class LemonSqueezyClient:
    """Thin synchronous client over the Lemon Squeezy v1 API."""

    def __init__(self, settings: Settings, http: httpx.Client | None = None):
        if not settings.lemonsqueezy_api_key or not settings.lemonsqueezy_store_id:
            raise ConfigurationError(
                "Lemon Squeezy credentials not configured "
                "(LEMONSQUEEZY_API_KEY, LEMONSQUEEZY_STORE_ID)"
            )
        self._store_id = settings.lemonsqueezy_store_id
        self._http = http or httpx.Client(
            base_url=settings.lemonsqueezy_base_url,
            timeout=30.0,
        )
        self._headers = {
            "Accept": _JSONAPI,
            "Content-Type": _JSONAPI,
            "Authorization": f"Bearer {settings.lemonsqueezy_api_key}",
        }

    @retry_with_backoff(max_retries=3, base_delay=1.0, max_delay=30.0)
    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = self._http.request(method, path, headers=self._headers, **kwargs)
        response.raise_for_status()
        return response

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._send(method, path, **kwargs)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("Lemon Squeezy API error: %s %s -> HTTP %d", method, path, status)
            if status == 401:
                raise AuthenticationError("Lemon Squeezy authentication failed") from None
            raise ProcessingError(_error_detail(e.response)) from None
        except httpx.HTTPError as e:
            logger.error("Lemon Squeezy request failed: %s %s (%s)", method, path, type(e).__name__)
            raise ProcessingError("Lemon Squeezy API request failed") from None
        return response.json()

    def _paginate(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Follow meta.page until the last page; return all data items."""
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            data = self._request(
                "GET",
                path,
                params={**params, "page[number]": page, "page[size]": _PAGE_SIZE},
            )
            page_items = data.get("data") or []
            items.extend(page_items)
            logger.debug("Retrieved %d items from %s (page %d)", len(page_items), path, page)

            page_meta = (data.get("meta") or {}).get("page") or {}
            current = page_meta.get("currentPage") or page
            last = page_meta.get("lastPage") or page
            if current >= last:
                return items
            page += 1

    def get_products(self) -> list[dict[str, Any]]:
        return self._paginate("/products", {"filter[store_id]": self._store_id})

    def get_variants(self, product_id: str) -> list[dict[str, Any]]:
        return self._paginate("/variants", {"filter[product_id]": product_id})

    def get_product(self, product_id: str) -> dict[str, Any]:
        return self._request("GET", f"/products/{product_id}")

    def create_checkout_url(self, variant_id: str, custom_data: dict[str, Any] | None = None) -> str:
        """Create a hosted checkout for one variant and return its URL."""
        body = {
            "data": {
                "type": "checkouts",
                "attributes": {"checkout_data": {"custom": custom_data or {}}},
                "relationships": {
                    "store": {"data": {"type": "stores", "id": self._store_id}},
                    "variant": {"data": {"type": "variants", "id": variant_id}},
                },
            }
        }
        data = self._request("POST", "/checkouts", json=body)
        try:
            url = data["data"]["attributes"]["url"]
        except (KeyError, TypeError):
            raise ProcessingError("Lemon Squeezy checkout response missing url") from None
        logger.info("Checkout created for variant %s", variant_id)
        return url

    def close(self) -> None:
        self._http.close()


def _error_detail(response: httpx.Response) -> str:
    try:
        errors = response.json().get("errors") or []
    except ValueError:
        errors = []
    if errors and isinstance(errors[0], dict) and errors[0].get("detail"):
        return str(errors[0]["detail"])
    return "Lemon Squeezy API request failed"
