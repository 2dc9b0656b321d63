"""
Checkout Session State Machine
==============================
Owns the checkout lifecycle and keeps line items and totals consistent with
the address and shipping selection.

Lifecycle:

    create ──► not_ready_for_payment ──(address + shipping option)──► ready_for_payment
                                                                          │
                                          complete (payment reconciled)   ▼
                                                                       completed

Rules:
  - Totals are derived on every write: [Subtotal, Shipping, Tax, Total] with
    Total == Subtotal + Shipping + Tax.
  - Tax is charged on the subtotal only, and only once an address is set.
    Shipping is charged only once a shipping option is selected.
  - Per-item tax is floor(tax / n); the last item absorbs the remainder, so the
    items always add up to the session Tax exactly.
  - Status never moves backwards. completed/canceled sessions are read-only.
  - update() and complete() run their read-validate-write sequence under a
    per-session asyncio.Lock. Two concurrent completions produce one Order;
    the second sees the completed session and fails with InvalidState.
  - complete() writes the Order and the completed session in one store
    transaction: both or neither.
"""
import asyncio
import logging
import time
import uuid
import weakref
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from .catalog import ProductCatalog
from .config import DEFAULT_CURRENCY, FULFILLMENT_OPTIONS, SPT_EXPIRY_MINUTES, TAX_RATE
from .errors import AmountMismatch, InvalidInput, InvalidState, NotFound
from .models import (
    TERMINAL_STATUSES,
    Buyer,
    CartItem,
    CheckoutSession,
    CheckoutStatus,
    CompleteCheckoutResponse,
    FulfillmentAddress,
    FulfillmentOption,
    LineItem,
    Order,
    TotalItem,
)
from .payments import PaymentProvider, reconcile_payment
from .store import KeyedStore, put_together

logger = logging.getLogger(__name__)


# ── Pure pricing helpers ────────────────────────────────────────────────────

def compute_tax(subtotal: int, rate: Decimal = TAX_RATE) -> int:
    """Round half up, the way a cash register does."""
    return int((Decimal(subtotal) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def allocate_tax(line_items: Sequence[LineItem], tax: int) -> list[LineItem]:
    """Spread `tax` over the items; the last one takes the rounding remainder."""
    if not line_items:
        return []

    count    = len(line_items)
    per_item = tax // count
    allocated = []
    for index, item in enumerate(line_items):
        item_tax = tax - per_item * (count - 1) if index == count - 1 else per_item
        allocated.append(item.model_copy(update={
            "tax":   item_tax,
            "total": item.subtotal + item_tax,
        }))
    return allocated


def compute_totals(line_items: Sequence[LineItem], shipping: int, tax: int) -> list[TotalItem]:
    subtotal = sum(item.subtotal for item in line_items)
    return [
        TotalItem(label="Subtotal", amount=subtotal),
        TotalItem(label="Shipping", amount=shipping),
        TotalItem(label="Tax",      amount=tax),
        TotalItem(label="Total",    amount=subtotal + shipping + tax),
    ]


def missing_preconditions(session: CheckoutSession) -> list[str]:
    missing = []
    if session.fulfillment_address is None:
        missing.append("shipping address")
    if session.fulfillment_option_id is None:
        missing.append("shipping option")
    return missing


def not_ready_message(session: CheckoutSession) -> str:
    """Explain why a session cannot be completed, phrased for the calling agent."""
    if session.status == CheckoutStatus.COMPLETED:
        return f"Checkout session {session.id} is already completed."
    if session.status == CheckoutStatus.CANCELED:
        return f"Checkout session {session.id} was canceled."

    missing = missing_preconditions(session)
    missing_text = f" Missing: {' and '.join(missing)}." if missing else ""
    return (
        f"Checkout not ready for payment. Status: {session.status.value}.{missing_text} "
        "Please update the checkout with address and shipping option first."
    )


# ── State machine ───────────────────────────────────────────────────────────

class CheckoutService:
    """
    Args:
        catalog:   Product lookups for create().
        sessions:  Keyed store for CheckoutSession records.
        orders:    Keyed store for Order records.
        payments:  Payment provider used to confirm payments on complete().
    """

    def __init__(
        self,
        catalog: ProductCatalog,
        sessions: KeyedStore[CheckoutSession],
        orders: KeyedStore[Order],
        payments: PaymentProvider,
        tax_rate: Decimal = TAX_RATE,
        currency: str = DEFAULT_CURRENCY,
        fulfillment_options: Sequence[FulfillmentOption] = FULFILLMENT_OPTIONS,
    ):
        self.catalog   = catalog
        self._sessions = sessions
        self._orders   = orders
        self._payments = payments
        self._tax_rate = tax_rate
        self._currency = currency
        self._fulfillment_options = list(fulfillment_options)
        # A lock lives only while some caller holds or waits on it.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    async def _require(self, session_id: str) -> CheckoutSession:
        session = await self._sessions.get(session_id)
        if session is None:
            raise NotFound(f"Checkout session not found: {session_id}")
        return session

    def _shipping_amount(self, option_id: str | None) -> int:
        for option in self._fulfillment_options:
            if option.id == option_id:
                return option.amount
        return 0

    def _build_line_item(self, item: CartItem) -> LineItem:
        if item.quantity < 1:
            raise InvalidInput(f"Quantity must be at least 1 for product {item.product_id}")

        product = self.catalog.get(item.product_id)
        if product is None:
            raise NotFound(f"Product not found: {item.product_id}")
        if product.currency.lower() != self._currency:
            raise InvalidInput(
                f"Product {product.id} is priced in {product.currency}, "
                f"checkout currency is {self._currency}"
            )

        base_amount = product.price * item.quantity
        discount    = 0
        subtotal    = base_amount - discount
        return LineItem(
            id=f"li_{uuid.uuid4().hex[:12]}",
            product_id=product.id,
            quantity=item.quantity,
            base_amount=base_amount,
            discount=discount,
            subtotal=subtotal,
            tax=0,
            total=subtotal,
        )

    def _recalculate(self, session: CheckoutSession) -> CheckoutSession:
        subtotal = sum(item.subtotal for item in session.line_items)
        tax      = compute_tax(subtotal, self._tax_rate) if session.fulfillment_address else 0
        shipping = self._shipping_amount(session.fulfillment_option_id)

        line_items = allocate_tax(session.line_items, tax)
        status = session.status
        if session.fulfillment_address is not None and session.fulfillment_option_id is not None:
            status = CheckoutStatus.READY_FOR_PAYMENT

        return session.model_copy(update={
            "line_items": line_items,
            "totals":     compute_totals(line_items, shipping, tax),
            "status":     status,
        })

    # ── Operations ──────────────────────────────────────────────────────────

    async def create(
        self,
        items: Sequence[CartItem],
        buyer: Buyer | None = None,
        fulfillment_address: FulfillmentAddress | None = None,
    ) -> CheckoutSession:
        if not items:
            raise InvalidInput("Items are required")

        line_items = [self._build_line_item(item) for item in items]
        session = CheckoutSession(
            id=f"checkout_{uuid.uuid4().hex[:16]}",
            status=CheckoutStatus.NOT_READY_FOR_PAYMENT,
            currency=self._currency,
            line_items=line_items,
            buyer=buyer,
            fulfillment_address=fulfillment_address,
            fulfillment_options=self._fulfillment_options,
            totals=compute_totals(line_items, shipping=0, tax=0),
        )
        await self._sessions.put(session.id, session)
        logger.info(
            "[checkout] Created %s with %d item(s), subtotal=%d",
            session.id, len(line_items), session.total("Subtotal"),
        )
        return session

    async def get(self, session_id: str) -> CheckoutSession:
        return await self._require(session_id)

    async def update(
        self,
        session_id: str,
        buyer: Buyer | None = None,
        fulfillment_address: FulfillmentAddress | None = None,
        fulfillment_option_id: str | None = None,
    ) -> CheckoutSession:
        async with self._lock(session_id):
            session = await self._require(session_id)
            if session.status in TERMINAL_STATUSES:
                raise InvalidState(
                    f"Checkout session {session_id} is {session.status.value} and cannot be updated."
                )
            if fulfillment_option_id is not None:
                known = [option.id for option in self._fulfillment_options]
                if fulfillment_option_id not in known:
                    raise InvalidInput(
                        f"Unknown fulfillment option: {fulfillment_option_id}. "
                        f"Valid options: {', '.join(known)}"
                    )

            changes: dict = {}
            if buyer is not None:
                merged = session.buyer.model_dump(exclude_none=True) if session.buyer else {}
                merged.update(buyer.model_dump(exclude_none=True))
                changes["buyer"] = Buyer(**merged)
            if fulfillment_address is not None:
                changes["fulfillment_address"] = fulfillment_address
            if fulfillment_option_id is not None:
                changes["fulfillment_option_id"] = fulfillment_option_id

            updated = self._recalculate(session.model_copy(update=changes))
            await self._sessions.put(session_id, updated)

        logger.info(
            "[checkout] Updated %s status=%s total=%d",
            session_id, updated.status.value, updated.total("Total"),
        )
        return updated

    async def complete(self, session_id: str, payment_reference: str) -> CompleteCheckoutResponse:
        """
        The single commit point of the flow.

        Confirms the payment with the provider, reconciles amount and currency
        against the session Total, then writes the Order and the completed
        session. Nothing is written if any check fails.
        """
        if not payment_reference or not payment_reference.strip():
            raise InvalidInput("payment reference is required")

        async with self._lock(session_id):
            session = await self._require(session_id)
            if session.status != CheckoutStatus.READY_FOR_PAYMENT:
                raise InvalidState(not_ready_message(session))

            confirmed = await self._payments.retrieve_payment_status(payment_reference)
            reconcile_payment(session, confirmed)

            order = Order(
                id=f"order_{uuid.uuid4().hex[:16]}",
                checkout_id=session_id,
                payment_reference=confirmed.reference,
                total_amount=session.total("Total"),
                currency=session.currency,
            )
            completed = session.model_copy(update={"status": CheckoutStatus.COMPLETED})
            await put_together(
                (self._sessions, session_id, completed),
                (self._orders, order.id, order),
            )

        logger.info(
            "[checkout] Completed %s → order %s (%d %s)",
            session_id, order.id, order.total_amount, order.currency,
        )
        return CompleteCheckoutResponse(checkout=completed, order=order)

    async def issue_payment_token(
        self, session_id: str, payment_method_id: str, amount: int, currency: str
    ) -> str:
        """Issue a SharedPaymentToken capped at the session Total."""
        if not payment_method_id:
            raise InvalidInput("payment_method_id is required")
        if amount <= 0:
            raise InvalidInput("Valid amount is required")
        if not currency:
            raise InvalidInput("currency is required")

        session  = await self._require(session_id)
        expected = session.total("Total")
        if amount != expected:
            raise AmountMismatch(f"Amount mismatch. Expected {expected}, got {amount}")

        expires_at = int(time.time()) + SPT_EXPIRY_MINUTES * 60
        return await self._payments.issue_shared_payment_token(
            payment_method_id, amount, currency, expires_at
        )

    async def create_payment_intent(self, amount: int, currency: str) -> str:
        if amount <= 0:
            raise InvalidInput("Valid amount is required")
        if not currency:
            raise InvalidInput("Currency is required")
        return await self._payments.create_payment_intent(amount, currency)

    async def get_order(self, order_id: str) -> Order:
        order = await self._orders.get(order_id)
        if order is None:
            raise NotFound(f"Order not found: {order_id}")
        return order

    async def list_orders(self, checkout_id: str | None = None) -> list[Order]:
        orders = await self._orders.list()
        if checkout_id is None:
            return orders
        return [o for o in orders if o.checkout_id == checkout_id]
