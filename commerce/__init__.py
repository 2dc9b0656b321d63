"""
commerce — in-process ACP commerce backend
==========================================

Package layout:

    models.py    Pydantic models: Product, CheckoutSession, Order, PaymentStatus
    errors.py    Error taxonomy (NotFound, InvalidState, AmountMismatch, ...)
    config.py    Tax rate, currency, shipping catalog, storage paths
    catalog.py   ProductCatalog — static product feed with substring search
    store.py     KeyedStore backends: MemoryStore, SqliteStore
    payments.py  PaymentProvider (Stripe) and reconcile_payment()
    checkout.py  CheckoutService — the checkout session state machine
"""
from .catalog import ProductCatalog, default_catalog
from .checkout import CheckoutService
from .errors import (
    AmountMismatch,
    CheckoutError,
    CurrencyMismatch,
    InvalidInput,
    InvalidState,
    LoopExceeded,
    NotFound,
    PaymentFailed,
    UpstreamFailure,
)
from .payments import StripePaymentProvider, reconcile_payment
from .store import MemoryStore, SqliteStore, memory_stores, put_together, sqlite_stores

__all__ = [
    "CheckoutService",
    "ProductCatalog",
    "default_catalog",
    "StripePaymentProvider",
    "reconcile_payment",
    "MemoryStore",
    "SqliteStore",
    "memory_stores",
    "sqlite_stores",
    "put_together",
    "CheckoutError",
    "NotFound",
    "InvalidInput",
    "InvalidState",
    "AmountMismatch",
    "CurrencyMismatch",
    "PaymentFailed",
    "UpstreamFailure",
    "LoopExceeded",
]
