"""
Product Catalog
===============
Read-only product feed loaded once from a static JSON file.

Search is a case-insensitive substring match over name, description and
category. An empty query returns the full feed in file order.
"""
import json
import logging
from pathlib import Path

from .config import get_catalog_path
from .models import Product

logger = logging.getLogger(__name__)


class ProductCatalog:
    def __init__(self, products: list[Product]):
        self._products = list(products)
        self._by_id = {p.id: p for p in self._products}

    @classmethod
    def from_json(cls, path: Path | str) -> "ProductCatalog":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        products = [Product.model_validate(item) for item in data]
        logger.info("[catalog] Loaded %d products from %s", len(products), path)
        return cls(products)

    def get(self, product_id: str) -> Product | None:
        return self._by_id.get(product_id)

    def search(self, query: str | None = None) -> list[Product]:
        if not query or not query.strip():
            return list(self._products)

        needle = query.strip().lower()
        return [
            p for p in self._products
            if needle in p.name.lower()
            or needle in p.description.lower()
            or (p.category is not None and needle in p.category.lower())
        ]


def default_catalog() -> ProductCatalog:
    return ProductCatalog.from_json(get_catalog_path())
