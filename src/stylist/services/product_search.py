"""Product catalog search backed by the RapidAPI Amazon data service."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..schemas.moodboard import Product

logger = logging.getLogger(__name__)

FASHION_CATEGORIES = (
    "fashion,fashion-womens,fashion-mens,fashion-girls,fashion-boys,fashion-baby"
)
MAX_RESULTS = 8


class ProductSearchError(RuntimeError):
    """Raised when the catalog cannot be queried."""


class ProductSearchClient:
    """Query the catalog and translate results into `Product` models."""

    def __init__(
        self,
        *,
        api_key: str | None,
        host: str | None,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._host = host
        self._timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None
        self._client_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProductSearchClient":
        api_key = settings.rapidapi_key
        return cls(
            api_key=api_key.get_secret_value() if api_key is not None else None,
            host=settings.rapidapi_host,
            timeout=min(settings.request_timeout, 30.0),
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._host)

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client

        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self._timeout, connect=10.0),
                    limits=httpx.Limits(
                        max_connections=20,
                        max_keepalive_connections=10,
                    ),
                    http2=True,
                )
        return self._client

    async def search(self, query: str) -> list[Product]:
        """Return up to eight products matching ``query``.

        An empty list means the catalog had no match; failures raise
        `ProductSearchError`.
        """

        if not self.configured:
            raise ProductSearchError("Product search API key or host is not configured")

        params = {
            "query": query,
            "page": "1",
            "country": "US",
            "sort_by": "RELEVANCE",
            "category_id": FASHION_CATEGORIES,
        }

        headers = {
            "x-rapidapi-key": self._api_key or "",
            "x-rapidapi-host": self._host or "",
        }

        client = await self._get_http_client()
        logger.info("Searching catalog for %r", query)
        try:
            response = await client.get(
                f"https://{self._host}/search", params=params, headers=headers
            )
        except httpx.HTTPError as exc:
            raise ProductSearchError(f"Catalog request failed: {exc}") from exc

        if response.status_code >= 400:
            raise ProductSearchError(
                f"Catalog returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProductSearchError("Catalog returned invalid JSON") from exc

        products = transform_search_response(payload)
        logger.info("Catalog search for %r returned %d products", query, len(products))
        return products

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def _parse_rating(value: Any) -> float | None:
    try:
        rating = float(value)
    except (TypeError, ValueError):
        return None
    return rating or None


def transform_search_response(payload: Any) -> list[Product]:
    """Map the raw catalog response onto `Product` models (top eight)."""

    data = payload.get("data") if isinstance(payload, Mapping) else None
    raw_products = data.get("products") if isinstance(data, Mapping) else None
    if not isinstance(raw_products, list):
        return []

    products: list[Product] = []
    for item in raw_products:
        if len(products) >= MAX_RESULTS:
            break
        if not isinstance(item, Mapping):
            continue
        try:
            products.append(
                Product(
                    id=item.get("asin"),
                    name=item.get("product_title"),
                    image_url=item.get("product_photo"),
                    buy_link=item.get("product_url") or "",
                    price=item.get("product_price"),
                    original_price=item.get("product_original_price"),
                    rating=_parse_rating(item.get("product_star_rating")),
                    rating_count=item.get("product_num_ratings") or None,
                    is_prime=bool(item.get("is_prime")),
                )
            )
        except ValidationError as exc:
            logger.debug("Skipping catalog entry %r: %s", item.get("asin"), exc)
    return products


__all__ = [
    "FASHION_CATEGORIES",
    "ProductSearchClient",
    "ProductSearchError",
    "transform_search_response",
]
