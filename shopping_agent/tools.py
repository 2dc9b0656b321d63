"""
Tool Registry & Dispatcher
==========================
Maps a tool name plus its arguments to a handler, and turns every outcome into
a string the model can read.

Contract per call:
  1. Look up the tool. Unknown name → error payload.
  2. Parse the arguments. They arrive as a dict (already parsed by the chat
     model integration) or as raw JSON text (when the model produced
     unparsable arguments). Malformed JSON → error payload.
  3. Run the handler. CheckoutError → its payload; any other exception →
     UpstreamFailure payload, logged with traceback.

Error payloads look like {"error": "...", "type": "not_found"} and go back into
the conversation as the tool result. dispatch() never raises, so one failing
tool never aborts the loop.

ACP tools (build_acp_dispatcher):
  search_products    → ProductCatalog.search
  create_checkout    → CheckoutService.create
  update_checkout    → CheckoutService.update
  complete_checkout  → CheckoutService.complete

ToolCache holds a remotely fetched value (the MCP tool list) with its fetch
time; see mcp_tools.py for the dispatcher that uses it.
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from pydantic import BaseModel, Field, ValidationError, model_validator

from commerce.checkout import CheckoutService
from commerce.errors import CheckoutError, InvalidInput, UpstreamFailure
from commerce.models import Buyer, CartItem, FulfillmentAddress

logger = logging.getLogger(__name__)

T = TypeVar("T")

Handler = Callable[[dict], Awaitable[Any]]


# ── Helpers ─────────────────────────────────────────────────────────────────

def error_payload(exc: CheckoutError) -> str:
    return json.dumps(exc.to_payload())


def parse_arguments(arguments: dict | str | None) -> dict:
    """Return tool arguments as a dict; malformed JSON raises InvalidInput."""
    if arguments is None or arguments == "":
        return {}
    if isinstance(arguments, dict):
        return arguments
    try:
        parsed = json.loads(arguments)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"Tool arguments are not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise InvalidInput("Tool arguments must be a JSON object")
    return parsed


def validate_args(model: type[BaseModel], args: dict) -> BaseModel:
    try:
        return model.model_validate(args)
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
            for err in exc.errors()
        )
        raise InvalidInput(f"Invalid arguments: {details}") from exc


def to_result(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    return json.dumps(value, default=str)


# ── Registry & dispatcher ───────────────────────────────────────────────────

@dataclass
class ToolSpec:
    name: str
    description: str
    parameters: dict
    handler: Handler

    def schema(self) -> dict:
        """OpenAI function-calling format, accepted by bind_tools()."""
        return {
            "type": "function",
            "function": {
                "name":        self.name,
                "description": self.description,
                "parameters":  self.parameters,
            },
        }


class ToolDispatcher:
    def __init__(self, specs: list[ToolSpec] | None = None):
        self._tools: dict[str, ToolSpec] = {}
        for spec in specs or []:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        self._tools[spec.name] = spec

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    async def list_schemas(self) -> list[dict]:
        return [spec.schema() for spec in self._tools.values()]

    async def _resolve(self, name: str | None) -> Handler | None:
        spec = self._tools.get(name) if name else None
        return spec.handler if spec else None

    async def dispatch(self, name: str | None, arguments: dict | str | None) -> str:
        try:
            handler = await self._resolve(name)
        except CheckoutError as exc:
            logger.warning("[tools] Could not resolve %s: %s", name, exc.message)
            return error_payload(exc)
        if handler is None:
            logger.warning("[tools] Unknown tool requested: %r", name)
            return error_payload(InvalidInput(f"Unknown tool: {name}"))

        try:
            args = parse_arguments(arguments)
        except InvalidInput as exc:
            logger.warning("[tools] %s: %s", name, exc.message)
            return error_payload(exc)

        logger.info("[tools] Executing %s", name)
        try:
            result = await handler(args)
        except CheckoutError as exc:
            logger.info("[tools] %s failed: %s (%s)", name, exc.message, exc.code)
            return error_payload(exc)
        except Exception as exc:
            logger.exception("[tools] %s raised unexpectedly", name)
            return error_payload(UpstreamFailure(f"{name} failed: {exc}"))

        return to_result(result)


# ── Remote value cache ──────────────────────────────────────────────────────

class ToolCache(Generic[T]):
    """
    Holds one fetched value with the time it was fetched.

    get() refetches lazily once the TTL has passed (or when forced). If a
    refetch fails while an older value exists, the stale value is returned
    and a warning is logged; with nothing cached the failure becomes
    UpstreamFailure.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self._ttl   = ttl_seconds
        self._clock = clock
        self._lock  = asyncio.Lock()
        self.value: T | None = None
        self.fetched_at: float | None = None

    def _fresh(self, now: float) -> bool:
        return (
            self.value is not None
            and self.fetched_at is not None
            and now - self.fetched_at < self._ttl
        )

    async def get(self, force_refresh: bool = False) -> T:
        async with self._lock:
            now = self._clock()
            if not force_refresh and self._fresh(now):
                return self.value

            try:
                value = await self._fetch()
            except Exception as exc:
                if self.value is not None:
                    logger.warning("[tools] Refresh failed, serving cached value: %s", exc)
                    return self.value
                raise UpstreamFailure(f"Failed to fetch tools: {exc}") from exc

            self.value = value
            self.fetched_at = now
            return value

    def clear(self) -> None:
        self.value = None
        self.fetched_at = None


# ── ACP tool handlers ───────────────────────────────────────────────────────

class SearchProductsArgs(BaseModel):
    query: str | None = None


class CreateCheckoutArgs(BaseModel):
    items: list[CartItem] = Field(..., min_length=1)
    buyer: Buyer | None = None
    fulfillment_address: FulfillmentAddress | None = None


class UpdateCheckoutArgs(BaseModel):
    checkout_id: str
    buyer: Buyer | None = None
    fulfillment_address: FulfillmentAddress | None = None
    fulfillment_option_id: str | None = None


class CompleteCheckoutArgs(BaseModel):
    checkout_id: str
    payment_token: str = Field(..., min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _accept_spt_token(cls, data):
        if isinstance(data, dict) and "payment_token" not in data and "spt_token" in data:
            data = {**data, "payment_token": data["spt_token"]}
        return data


_ADDRESS_SCHEMA = {
    "type": "object",
    "description": "Shipping address",
    "properties": {
        "name":        {"type": "string", "description": "Recipient name"},
        "line_one":    {"type": "string", "description": "Street address"},
        "line_two":    {"type": "string"},
        "city":        {"type": "string"},
        "state":       {"type": "string"},
        "postal_code": {"type": "string"},
        "country":     {"type": "string", "description": "Two-letter country code"},
    },
    "required": ["line_one", "city", "state", "postal_code", "country"],
}

_BUYER_SCHEMA = {
    "type": "object",
    "description": "Buyer contact details",
    "properties": {
        "first_name":   {"type": "string"},
        "last_name":    {"type": "string"},
        "email":        {"type": "string"},
        "phone_number": {"type": "string"},
    },
}


def build_acp_dispatcher(service: CheckoutService) -> ToolDispatcher:
    """Register the four checkout tools against `service` and its catalog."""

    async def search_products(args: dict) -> dict:
        query = validate_args(SearchProductsArgs, args).query
        products = service.catalog.search(query)
        return {
            "products": [p.model_dump(mode="json") for p in products],
            "total": len(products),
        }

    async def create_checkout(args: dict) -> str:
        req = validate_args(CreateCheckoutArgs, args)
        session = await service.create(req.items, req.buyer, req.fulfillment_address)
        return session.model_dump_json()

    async def update_checkout(args: dict) -> str:
        req = validate_args(UpdateCheckoutArgs, args)
        session = await service.update(
            req.checkout_id,
            buyer=req.buyer,
            fulfillment_address=req.fulfillment_address,
            fulfillment_option_id=req.fulfillment_option_id,
        )
        return session.model_dump_json()

    async def complete_checkout(args: dict) -> str:
        req = validate_args(CompleteCheckoutArgs, args)
        result = await service.complete(req.checkout_id, req.payment_token)
        return result.model_dump_json()

    return ToolDispatcher([
        ToolSpec(
            name="search_products",
            description=(
                "Search for products in the catalog. Returns a list of products "
                "matching the search query, with prices in cents."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": 'Search query (e.g., "shoes", "socks", "water bottle")',
                    },
                },
                "required": ["query"],
            },
            handler=search_products,
        ),
        ToolSpec(
            name="create_checkout",
            description=(
                "Create a new checkout session with selected products. "
                "Returns checkout ID, line items and initial totals."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "items": {
                        "type": "array",
                        "description": "Items to add to the checkout",
                        "items": {
                            "type": "object",
                            "properties": {
                                "id":       {"type": "string", "description": "Product ID"},
                                "quantity": {"type": "integer", "description": "Quantity to purchase"},
                            },
                            "required": ["id", "quantity"],
                        },
                    },
                    "buyer": _BUYER_SCHEMA,
                },
                "required": ["items"],
            },
            handler=create_checkout,
        ),
        ToolSpec(
            name="update_checkout",
            description=(
                "Update a checkout session with buyer details, shipping address "
                "and/or shipping option. Returns updated totals with tax and shipping."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "checkout_id": {"type": "string", "description": "Checkout session ID"},
                    "buyer": _BUYER_SCHEMA,
                    "fulfillment_address": _ADDRESS_SCHEMA,
                    "fulfillment_option_id": {
                        "type": "string",
                        "description": "Shipping option ID (standard, express, overnight)",
                    },
                },
                "required": ["checkout_id"],
            },
            handler=update_checkout,
        ),
        ToolSpec(
            name="complete_checkout",
            description=(
                "Complete the checkout with the payment reference the buyer received "
                "after paying. Verifies the payment and creates the order."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "checkout_id":   {"type": "string", "description": "Checkout session ID"},
                    "payment_token": {
                        "type": "string",
                        "description": "Payment reference (PaymentIntent ID or SharedPaymentToken)",
                    },
                },
                "required": ["checkout_id", "payment_token"],
            },
            handler=complete_checkout,
        ),
    ])
