from __future__ import annotations

from typing import Any

import httpx
import pytest

from stylist.services.product_search import (
    FASHION_CATEGORIES,
    ProductSearchClient,
    ProductSearchError,
    transform_search_response,
)


def raw_product(asin: str, **overrides: Any) -> dict[str, Any]:
    item = {
        "asin": asin,
        "product_title": f"Shirt {asin}",
        "product_photo": f"https://m.media.example/{asin}.jpg",
        "product_url": f"https://www.amazon.com/dp/{asin}",
        "product_price": "$25.99",
        "product_original_price": "$39.99",
        "product_star_rating": "4.4",
        "product_num_ratings": 120,
        "is_prime": True,
    }
    item.update(overrides)
    return item


def make_client(handler) -> ProductSearchClient:
    return ProductSearchClient(
        api_key="rapid-key",
        host="amazon-data.example.com",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def test_transform_maps_fields_and_keeps_top_eight() -> None:
    payload = {"data": {"products": [raw_product(f"A{i}") for i in range(12)]}}

    products = transform_search_response(payload)

    assert len(products) == 8
    first = products[0]
    assert first.id == "A0"
    assert first.name == "Shirt A0"
    assert first.image_url == "https://m.media.example/A0.jpg"
    assert first.buy_link == "https://www.amazon.com/dp/A0"
    assert first.price == "$25.99"
    assert first.original_price == "$39.99"
    assert first.rating == pytest.approx(4.4)
    assert first.rating_count == 120
    assert first.is_prime is True


def test_transform_handles_missing_ratings_and_bad_shapes() -> None:
    payload = {
        "data": {
            "products": [
                raw_product("B1", product_star_rating=None, product_num_ratings=0, is_prime=None),
                {"product_title": "no asin"},
                "junk",
            ]
        }
    }

    [item] = transform_search_response(payload)

    assert item.rating is None
    assert item.rating_count is None
    assert item.is_prime is False
    assert transform_search_response({"status": "ERROR"}) == []


@pytest.mark.asyncio
async def test_search_sends_catalog_query_and_headers() -> None:
    seen: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["headers"] = request.headers
        return httpx.Response(200, json={"data": {"products": [raw_product("D1")]}})

    client = make_client(handler)
    products = await client.search("linen shirt")

    assert [p.id for p in products] == ["D1"]
    url: httpx.URL = seen["url"]
    assert url.host == "amazon-data.example.com"
    assert url.path == "/search"
    assert url.params["query"] == "linen shirt"
    assert url.params["country"] == "US"
    assert url.params["sort_by"] == "RELEVANCE"
    assert url.params["category_id"] == FASHION_CATEGORIES
    assert url.params["page"] == "1"
    assert seen["headers"]["x-rapidapi-key"] == "rapid-key"
    assert seen["headers"]["x-rapidapi-host"] == "amazon-data.example.com"


@pytest.mark.asyncio
async def test_search_raises_on_upstream_error() -> None:
    client = make_client(lambda request: httpx.Response(403, text="forbidden"))

    with pytest.raises(ProductSearchError):
        await client.search("jeans")


@pytest.mark.asyncio
async def test_search_requires_configuration() -> None:
    client = ProductSearchClient(api_key=None, host=None)

    with pytest.raises(ProductSearchError):
        await client.search("jeans")
