"""
Tests for mcp_server.py
========================
Tests the MCP tool implementations directly — no MCP protocol needed.
@mcp.tool() registers the functions and returns them unchanged, so they can
be awaited like any coroutine function.

Covers:
  - search_products: query / no query
  - create_checkout → update_checkout → complete_checkout
  - error payloads for unknown sessions and bad arguments
"""
import json

import pytest

import mcp_server as srv

ADDRESS = {
    "line_one": "1 Main St", "city": "Springfield", "state": "IL",
    "country": "US", "postal_code": "62701",
}


@pytest.fixture(autouse=True)
def configured(service, monkeypatch):
    monkeypatch.setattr(srv, "_dispatcher", None)
    srv.configure(service)


# ---------------------------------------------------------------------------
# search_products
# ---------------------------------------------------------------------------

class TestSearchProducts:
    async def test_query_filters(self):
        data = json.loads(await srv.search_products("bottle"))
        assert data["total"] == 1
        assert data["products"][0]["id"] == "prod_3"

    async def test_no_query_lists_all(self):
        data = json.loads(await srv.search_products())
        assert data["total"] == 4


# ---------------------------------------------------------------------------
# Checkout tools
# ---------------------------------------------------------------------------

class TestCheckoutTools:
    async def test_full_purchase(self, payments):
        created = json.loads(await srv.create_checkout([{"id": "prod_2", "quantity": 2}]))
        assert created["status"] == "not_ready_for_payment"

        updated = json.loads(await srv.update_checkout(
            created["id"], fulfillment_address=ADDRESS, fulfillment_option_id="express",
        ))
        assert updated["status"] == "ready_for_payment"
        total = next(t["amount"] for t in updated["totals"] if t["label"] == "Total")
        # 1000 subtotal + 1500 express + 88 tax (87.5 rounded half up)
        assert total == 2588

        payments.record("pi_paid", amount=total)
        completed = json.loads(await srv.complete_checkout(created["id"], "pi_paid"))
        assert completed["checkout"]["status"] == "completed"
        assert completed["order"]["checkout_id"] == created["id"]

    async def test_update_unknown_session(self):
        data = json.loads(await srv.update_checkout("checkout_missing", fulfillment_option_id="standard"))
        assert data["type"] == "not_found"

    async def test_create_with_no_items(self):
        data = json.loads(await srv.create_checkout([]))
        assert data["type"] == "invalid_input"

    async def test_complete_before_ready(self, payments):
        created = json.loads(await srv.create_checkout([{"id": "prod_1", "quantity": 1}]))
        payments.record("pi_paid", amount=1000)

        data = json.loads(await srv.complete_checkout(created["id"], "pi_paid"))

        assert data["type"] == "invalid_state"
        assert payments.lookups == []
