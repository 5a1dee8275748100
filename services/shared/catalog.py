"""
Catalog Snapshot
================
The lifecycle only ever asks the catalog one question: "what does this product
cost right now, who sells it, and how many are left?" The answer is frozen
into the event's line items at create/edit time and never consulted again.

Production reads the products table; tests pass any object with a matching
`lookup` method.
"""
from __future__ import annotations

import logging
from typing import Protocol

from botocore.exceptions import ClientError
import pydantic
from pydantic import BaseModel

from shared.dynamodb import decimal_to_python
from shared.errors import ValidationError

logger = logging.getLogger(__name__)


class ProductSnapshot(BaseModel):
    product_id: str
    name: str = ""
    seller_id: str
    unit_price_cents: int
    available_stock: int
    active: bool = True


class Catalog(Protocol):
    def lookup(self, product_id: str) -> ProductSnapshot:
        """Raise ValidationError if the product cannot be resolved."""
        ...


class DynamoCatalog:
    """Products table, PK: product_id."""

    def __init__(self, table):
        self._table = table

    def lookup(self, product_id: str) -> ProductSnapshot:
        try:
            resp = self._table.get_item(Key={"product_id": product_id})
        except ClientError as e:
            logger.warning("Catalog lookup failed", extra={"product_id": product_id})
            raise ValidationError(f"Catalog unavailable for product {product_id!r}") from e

        item = resp.get("Item")
        if not item:
            raise ValidationError(f"Product not found: {product_id!r}")

        item = decimal_to_python(item)
        try:
            return ProductSnapshot(
                product_id=product_id,
                name=item.get("name", ""),
                seller_id=item["seller_id"],
                unit_price_cents=item["unit_price_cents"],
                available_stock=item.get("quantity", 0),
                active=item.get("active", True),
            )
        except (KeyError, pydantic.ValidationError) as e:
            logger.warning("Malformed catalog entry", extra={"product_id": product_id})
            raise ValidationError(f"Catalog entry for {product_id!r} is malformed") from e
