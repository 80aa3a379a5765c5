"""
Catalog Service - product records used as Add metadata.

Talks to the Fake Store API the storefront browses. Records are treated as
immutable snapshots: the cart copies title, image, category and price at
add-time and never re-fetches them.
"""
import os
from decimal import Decimal
from typing import Optional

import httpx
from pydantic import BaseModel, field_validator

from cartsync.logging import get_logger
from cartsync.services.money import to_decimal as _to_decimal

logger = get_logger(__name__)

CATALOG_API_URL = os.environ.get("CATALOG_API_URL", "https://fakestoreapi.com")
CATALOG_TIMEOUT_SECS = float(os.environ.get("CATALOG_TIMEOUT_SECS", "10"))


class RatingSummary(BaseModel):
    """Average rating and number of votes."""
    rate: float = 0.0
    count: int = 0


class CatalogProduct(BaseModel):
    """Product record as served by the catalog."""
    id: str
    title: str
    price: Decimal
    description: str = ""
    category: str = ""
    image: str = ""
    rating: Optional[RatingSummary] = None

    class Config:
        extra = "ignore"  # Ignore unknown fields from the API

    @field_validator("id", mode="before")
    @classmethod
    def convert_id_to_str(cls, v):
        # Fake Store ids are integers
        return str(v) if isinstance(v, int) else v

    @field_validator("price", mode="before")
    @classmethod
    def convert_price_to_decimal(cls, v):
        return _to_decimal(v) if isinstance(v, float) else v

    # Names the mutation coordinator reads when building a line item
    @property
    def product_id(self) -> str:
        return self.id

    @property
    def image_ref(self) -> str:
        return self.image

    @property
    def unit_price(self) -> Decimal:
        return self.price


class CatalogClient:
    """Async client for the product catalog."""

    def __init__(self, base_url: str = CATALOG_API_URL, client: Optional[httpx.AsyncClient] = None):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=CATALOG_TIMEOUT_SECS)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "CatalogClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def list_products(self, category: Optional[str] = None) -> list[CatalogProduct]:
        """List products, optionally limited to one category."""
        path = f"/products/category/{category}" if category and category != "all" else "/products"
        response = await self._client.get(path)
        response.raise_for_status()
        return [CatalogProduct(**row) for row in response.json()]

    async def list_categories(self) -> list[str]:
        """List category names, with the synthetic "all" first."""
        response = await self._client.get("/products/categories")
        response.raise_for_status()
        return ["all", *response.json()]

    async def get_product(self, product_id: str) -> Optional[CatalogProduct]:
        """Get one product, or None when the catalog does not know it."""
        response = await self._client.get(f"/products/{product_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        # Fake Store answers unknown ids with 200 and an empty body
        if not response.content.strip():
            logger.debug(f"Catalog has no product {product_id}")
            return None
        return CatalogProduct(**response.json())
