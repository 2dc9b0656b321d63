"""
MCP Server: ACP Commerce
========================
Exposes the checkout tools via the Model Context Protocol, so any MCP client
(an IDE assistant, another agent) can shop against this backend.

Tools:
  - search_products    → Read-only. Search the product catalog.
  - create_checkout    → Start a checkout session.
  - update_checkout    → Add buyer, address and shipping option.
  - complete_checkout  → Verify the payment and create the order.

The tools run through the same ToolDispatcher as the in-process agent, so
they return identical JSON, including {"error": ..., "type": ...} payloads.

Storage is in-memory unless configure() is given a service; payments go to
Stripe with STRIPE_SECRET_KEY.

Run standalone:   python mcp_server.py
"""
import logging

from mcp.server.fastmcp import FastMCP

from commerce import CheckoutService, StripePaymentProvider, default_catalog, memory_stores
from shopping_agent.tools import ToolDispatcher, build_acp_dispatcher

logger = logging.getLogger(__name__)

mcp = FastMCP("ACP Commerce")

_dispatcher: ToolDispatcher | None = None


def configure(service: CheckoutService) -> None:
    """Point the tools at `service`."""
    global _dispatcher
    _dispatcher = build_acp_dispatcher(service)


def _get_dispatcher() -> ToolDispatcher:
    if _dispatcher is None:
        sessions, orders = memory_stores()
        configure(CheckoutService(default_catalog(), sessions, orders, StripePaymentProvider()))
        logger.info("[mcp_server] Using in-memory checkout store")
    return _dispatcher


def _args(**kwargs) -> dict:
    return {key: value for key, value in kwargs.items() if value is not None}


# ---------------------------------------------------------------------------
# Read-only tools
# ---------------------------------------------------------------------------

@mcp.tool()
async def search_products(query: str | None = None) -> str:
    """
    Search the product catalog.

    Matches the query case-insensitively against product name, description
    and category. Omit the query to list every product. Prices are integers
    in cents.

    Args:
        query: Search text (e.g., "shoes", "socks", "water bottle")
    """
    return await _get_dispatcher().dispatch("search_products", _args(query=query))


# ---------------------------------------------------------------------------
# Checkout tools
# ---------------------------------------------------------------------------

@mcp.tool()
async def create_checkout(
    items: list[dict],
    buyer: dict | None = None,
    fulfillment_address: dict | None = None,
) -> str:
    """
    Create a checkout session.

    Args:
        items:               [{"id": "prod_1", "quantity": 2}, ...]
        buyer:               Optional {first_name, last_name, email, phone_number}
        fulfillment_address: Optional {name, line_one, line_two, city, state, postal_code, country}
    """
    return await _get_dispatcher().dispatch(
        "create_checkout",
        _args(items=items, buyer=buyer, fulfillment_address=fulfillment_address),
    )


@mcp.tool()
async def update_checkout(
    checkout_id: str,
    buyer: dict | None = None,
    fulfillment_address: dict | None = None,
    fulfillment_option_id: str | None = None,
) -> str:
    """
    Update a checkout session. Once both an address and a shipping option are
    set, the session becomes ready_for_payment with tax and shipping in its totals.

    Args:
        checkout_id:           The checkout session ID
        buyer:                 Buyer fields to merge into the session
        fulfillment_address:   Shipping address
        fulfillment_option_id: standard | express | overnight
    """
    return await _get_dispatcher().dispatch(
        "update_checkout",
        _args(
            checkout_id=checkout_id,
            buyer=buyer,
            fulfillment_address=fulfillment_address,
            fulfillment_option_id=fulfillment_option_id,
        ),
    )


@mcp.tool()
async def complete_checkout(checkout_id: str, payment_token: str) -> str:
    """
    Complete a checkout after the buyer has paid.

    The payment is confirmed with the provider and must match the session
    Total and currency exactly; otherwise nothing is written.

    Args:
        checkout_id:   The checkout session ID
        payment_token: PaymentIntent ID or SharedPaymentToken
    """
    return await _get_dispatcher().dispatch(
        "complete_checkout",
        _args(checkout_id=checkout_id, payment_token=payment_token),
    )


if __name__ == "__main__":
    mcp.run()
