"""
Tests for commerce/payments.py and commerce/catalog.py
======================================================
reconcile_payment() against a session total, StripePaymentProvider with the
Stripe SDK and the SharedPaymentToken endpoint mocked, and catalog search.

No network: stripe.PaymentIntent is patched and httpx runs on a MockTransport.
"""
import json
from urllib.parse import parse_qs
from unittest.mock import MagicMock, patch

import httpx
import pytest
import stripe

from commerce.catalog import ProductCatalog, default_catalog
from commerce.errors import AmountMismatch, CurrencyMismatch, PaymentFailed, UpstreamFailure
from commerce.models import CheckoutSession, PaymentStatus, TotalItem
from commerce.payments import SPT_URL, StripePaymentProvider, reconcile_payment


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _session(total: int = 2675, currency: str = "usd") -> CheckoutSession:
    return CheckoutSession(
        id="checkout_1", currency=currency, line_items=[], fulfillment_options=[],
        totals=[TotalItem(label="Total", amount=total)],
    )


def _status(amount: int = 2675, currency: str = "usd", status: str = "succeeded") -> PaymentStatus:
    return PaymentStatus(reference="pi_1", status=status, amount=amount, currency=currency)


def _mock_transport_client(handler):
    real_client = httpx.AsyncClient

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    return patch("commerce.payments.httpx.AsyncClient", side_effect=factory)


# ---------------------------------------------------------------------------
# reconcile_payment
# ---------------------------------------------------------------------------

class TestReconcilePayment:
    def test_exact_match_passes(self):
        reconcile_payment(_session(), _status())

    def test_status_checked_first(self):
        with pytest.raises(PaymentFailed):
            reconcile_payment(_session(), _status(amount=1, status="processing"))

    def test_amount_must_match_exactly(self):
        with pytest.raises(AmountMismatch):
            reconcile_payment(_session(), _status(amount=2676))

    def test_currency_must_match(self):
        with pytest.raises(CurrencyMismatch):
            reconcile_payment(_session(), _status(currency="eur"))

    def test_currency_case_ignored(self):
        reconcile_payment(_session(currency="usd"), _status(currency="USD"))


# ---------------------------------------------------------------------------
# StripePaymentProvider
# ---------------------------------------------------------------------------

class TestStripePaymentProvider:
    async def test_missing_key_is_upstream_failure(self, monkeypatch):
        monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
        provider = StripePaymentProvider()
        with pytest.raises(UpstreamFailure, match="STRIPE_SECRET_KEY"):
            await provider.retrieve_payment_status("pi_1")

    async def test_retrieve_maps_intent_fields(self):
        intent = MagicMock(id="pi_1", status="succeeded", amount=2675, currency="usd")
        with patch("commerce.payments.stripe.PaymentIntent.retrieve", return_value=intent) as retrieve:
            status = await StripePaymentProvider(api_key="sk_test").retrieve_payment_status("pi_1")

        assert status == _status()
        retrieve.assert_called_once_with("pi_1", api_key="sk_test")

    async def test_stripe_error_is_upstream_failure(self):
        with patch(
            "commerce.payments.stripe.PaymentIntent.retrieve",
            side_effect=stripe.StripeError("no such payment_intent"),
        ):
            with pytest.raises(UpstreamFailure, match="no such payment_intent"):
                await StripePaymentProvider(api_key="sk_test").retrieve_payment_status("pi_x")

    async def test_create_payment_intent_returns_client_secret(self):
        intent = MagicMock(client_secret="pi_1_secret_abc")
        with patch("commerce.payments.stripe.PaymentIntent.create", return_value=intent) as create:
            secret = await StripePaymentProvider(api_key="sk_test").create_payment_intent(2675, "usd")

        assert secret == "pi_1_secret_abc"
        kwargs = create.call_args.kwargs
        assert kwargs["amount"] == 2675
        assert kwargs["currency"] == "usd"
        assert kwargs["automatic_payment_methods"] == {"enabled": True}

    async def test_issue_shared_payment_token_posts_usage_limits(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"]  = str(request.url)
            captured["auth"] = request.headers["Authorization"]
            captured["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"id": "spt_123"})

        with _mock_transport_client(handler):
            token = await StripePaymentProvider(api_key="sk_test").issue_shared_payment_token(
                "pm_card", 2675, "usd", 1_700_000_000
            )

        assert token == "spt_123"
        assert captured["url"] == SPT_URL
        assert captured["auth"] == "Bearer sk_test"
        assert captured["form"]["payment_method"] == ["pm_card"]
        assert captured["form"]["usage_limits[max_amount]"] == ["2675"]
        assert captured["form"]["usage_limits[currency]"] == ["usd"]
        assert captured["form"]["usage_limits[expires_at]"] == ["1700000000"]

    async def test_spt_http_error_is_upstream_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, content=json.dumps({"error": {"message": "bad"}}))

        with _mock_transport_client(handler):
            with pytest.raises(UpstreamFailure):
                await StripePaymentProvider(api_key="sk_test").issue_shared_payment_token(
                    "pm_card", 2675, "usd", 1_700_000_000
                )


# ---------------------------------------------------------------------------
# ProductCatalog
# ---------------------------------------------------------------------------

class TestProductCatalog:
    def test_search_is_case_insensitive_substring(self, catalog):
        assert [p.id for p in catalog.search("SOCK")] == ["prod_2"]

    def test_search_matches_category(self, catalog):
        assert [p.id for p in catalog.search("accessories")] == ["prod_3"]

    def test_empty_query_returns_everything(self, catalog):
        assert len(catalog.search()) == 4
        assert len(catalog.search("   ")) == 4

    def test_no_match(self, catalog):
        assert catalog.search("kayak") == []

    def test_get(self, catalog):
        assert catalog.get("prod_1").price == 1000
        assert catalog.get("prod_missing") is None

    def test_from_json(self, tmp_path):
        path = tmp_path / "feed.json"
        path.write_text(json.dumps([{
            "id": "p1", "name": "Cap", "description": "A cap", "price": 1200, "currency": "usd",
        }]))
        catalog = ProductCatalog.from_json(path)
        assert catalog.get("p1").name == "Cap"

    def test_bundled_feed_loads(self):
        products = default_catalog().search()
        assert products
        assert all(p.currency == "usd" for p in products)
