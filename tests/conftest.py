"""
pytest configuration for the ACP shopping agent test suite.

Sets PYTHONPATH so tests can import from the project root.
Prevents real LLM and Stripe calls: the model is always a mock, and payments go
through FakePaymentProvider.

asyncio_mode = "auto" (pyproject.toml) means all async test functions are
collected as asyncio tests — no @pytest.mark.asyncio needed.
"""
import asyncio
import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure the project root is on sys.path so `import commerce` and `import api` work
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

os.environ.setdefault("GROQ_API_KEY", "test-key")
os.environ.setdefault("LLM_PROVIDER", "groq")
os.environ["STREAM_CHUNK_DELAY"] = "0"

from commerce.catalog import ProductCatalog  # noqa: E402
from commerce.checkout import CheckoutService  # noqa: E402
from commerce.errors import UpstreamFailure  # noqa: E402
from commerce.models import FulfillmentAddress, PaymentStatus, Product  # noqa: E402
from commerce.store import memory_stores  # noqa: E402


# ── Payment provider double ─────────────────────────────────────────────────

class FakePaymentProvider:
    """
    In-memory stand-in for StripePaymentProvider.

    Register what the provider should report with `record(reference, ...)`;
    unknown references fail the way a provider outage would.
    """

    def __init__(self):
        self.payments: dict[str, PaymentStatus] = {}
        self.lookups: list[str] = []
        self.intents: list[tuple[int, str]] = []
        self.tokens: list[dict] = []

    def record(self, reference: str, amount: int, currency: str = "usd", status: str = "succeeded"):
        self.payments[reference] = PaymentStatus(
            reference=reference, status=status, amount=amount, currency=currency
        )

    async def create_payment_intent(self, amount: int, currency: str) -> str:
        self.intents.append((amount, currency))
        return f"pi_test_{len(self.intents)}_secret"

    async def retrieve_payment_status(self, reference: str) -> PaymentStatus:
        self.lookups.append(reference)
        # Suspend like a network call would, so concurrent callers interleave.
        await asyncio.sleep(0)
        if reference not in self.payments:
            raise UpstreamFailure(f"Failed to retrieve payment {reference}: no such payment")
        return self.payments[reference]

    async def issue_shared_payment_token(
        self, payment_method_id: str, amount: int, currency: str, expires_at: int
    ) -> str:
        self.tokens.append({
            "payment_method_id": payment_method_id,
            "amount":            amount,
            "currency":          currency,
            "expires_at":        expires_at,
        })
        return f"spt_test_{len(self.tokens)}"


# ── Fixtures ────────────────────────────────────────────────────────────────

@pytest.fixture
def catalog() -> ProductCatalog:
    return ProductCatalog([
        Product(id="prod_1", name="Trail Runner Shoes", description="Shoes for mixed terrain.",
                price=1000, currency="usd", category="shoes"),
        Product(id="prod_2", name="Running Socks", description="Merino wool socks.",
                price=500, currency="usd", category="apparel"),
        Product(id="prod_3", name="Water Bottle", description="Insulated, 750 ml.",
                price=333, currency="usd", category="accessories"),
        Product(id="prod_eur", name="Euro Cap", description="Priced in euros.",
                price=900, currency="eur", category="apparel"),
    ])


@pytest.fixture
def payments() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture
def stores():
    return memory_stores()


@pytest.fixture
def service(catalog, stores, payments) -> CheckoutService:
    sessions, orders = stores
    return CheckoutService(catalog, sessions, orders, payments)


@pytest.fixture
def address() -> FulfillmentAddress:
    return FulfillmentAddress(
        name="Sam Doe", line_one="1 Main St", city="Springfield",
        state="IL", country="US", postal_code="62701",
    )


def make_llm(*responses):
    """A mock chat model that returns `responses` from successive ainvoke() calls."""
    llm = MagicMock()
    llm.bind_tools.return_value = llm
    llm.ainvoke = AsyncMock(side_effect=list(responses))
    return llm
