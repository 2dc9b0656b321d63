"""
Conversation Replay
===================
Reconstructs display state from a stored conversation, for the payment form:
is there a checkout waiting to be paid, and for how much?

Walks the tool results backwards. The newest create_checkout/update_checkout
result with status ready_for_payment is the candidate, unless a later
complete_checkout result refers to the same checkout. Tool results that are
not valid JSON (error text, truncated output) are skipped.
"""
import json
import logging

from langchain_core.messages import ToolMessage

from commerce.config import DEFAULT_CURRENCY
from commerce.models import CheckoutStatus

logger = logging.getLogger(__name__)

_CHECKOUT_TOOLS = frozenset({"create_checkout", "update_checkout"})


def _load(message: ToolMessage) -> dict | None:
    try:
        data = json.loads(message.content)
    except (TypeError, ValueError):
        logger.debug("[replay] Skipping unparsable %s result", message.name)
        return None
    return data if isinstance(data, dict) else None


def find_pending_checkout(messages) -> dict | None:
    """Return {checkout_id, amount, currency} for the checkout awaiting payment, or None."""
    tool_messages = [m for m in messages if isinstance(m, ToolMessage)]

    for index in range(len(tool_messages) - 1, -1, -1):
        message = tool_messages[index]
        if message.name not in _CHECKOUT_TOOLS:
            continue
        checkout = _load(message)
        if not checkout or checkout.get("status") != CheckoutStatus.READY_FOR_PAYMENT.value:
            continue

        for later in tool_messages[index + 1:]:
            if later.name != "complete_checkout":
                continue
            completed = _load(later) or {}
            if (completed.get("checkout") or {}).get("id") == checkout.get("id"):
                return None

        amount = next(
            (t.get("amount") for t in checkout.get("totals") or [] if t.get("label") == "Total"),
            None,
        )
        if not amount:
            return None
        return {
            "checkout_id": checkout.get("id"),
            "amount":      amount,
            "currency":    checkout.get("currency") or DEFAULT_CURRENCY,
        }

    return None
