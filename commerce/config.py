"""
Commerce Configuration
======================
Fixed business constants and storage locations.

Tax rate, currency and the shipping catalog are constants, never supplied by a
request. Paths are read from the environment through getter functions so
tests can override them per call.
"""
import os
from decimal import Decimal
from pathlib import Path

from .models import FulfillmentOption

DEFAULT_CURRENCY = "usd"
TAX_RATE = Decimal("0.0875")   # 8.75% sales tax, applied to the subtotal only

FULFILLMENT_OPTIONS: tuple[FulfillmentOption, ...] = (
    FulfillmentOption(id="standard",  name="Standard Shipping",  amount=500,  description="5-7 business days"),
    FulfillmentOption(id="express",   name="Express Shipping",   amount=1500, description="2-3 business days"),
    FulfillmentOption(id="overnight", name="Overnight Shipping", amount=2500, description="Next business day"),
)

SPT_EXPIRY_MINUTES = 30

DEFAULT_DB_PATH = "commerce.db"
DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent / "data" / "products.json"


def get_db_path() -> str:
    """
    Return the SQLite file holding checkout sessions and orders.

    Resolution order:
      1. COMMERCE_DB_PATH environment variable
      2. DEFAULT_DB_PATH ("commerce.db" in the cwd)
    """
    return os.getenv("COMMERCE_DB_PATH", DEFAULT_DB_PATH)


def get_catalog_path() -> Path:
    """Return the product feed JSON file (CATALOG_PATH overrides the bundled one)."""
    override = os.getenv("CATALOG_PATH")
    return Path(override) if override else DEFAULT_CATALOG_PATH
