"""
FastAPI HTTP Interface
======================
Exposes the ACP checkout backend, the payment helpers and the shopping agent
over HTTP.

Endpoints:
  POST /checkout_sessions                  → create a checkout session (201)
  GET  /checkout_sessions/{id}             → read a checkout session
  POST /checkout_sessions/{id}             → update buyer / address / shipping option
  POST /checkout_sessions/{id}/complete    → reconcile payment, create the order
  GET  /products/feed?q=                   → product search
  POST /payment/create-payment-intent      → Stripe PaymentIntent client secret
  POST /payment/create-spt                 → SharedPaymentToken capped at the session total
  GET  /checkout-state?conversation_id=    → checkout awaiting payment in a conversation
  POST /chat                               → one agent reply
  POST /chat-stream                        → agent reply as Server-Sent Events
  GET  /history/{conversation_id}          → user-facing conversation history
  GET  /health                             → liveness check

Errors are returned as {"error": message, "type": code} with the status code
of the error type (404 not_found, 409 invalid_state, ...). Malformed request
bodies are 400 invalid_input.

Run:
    uvicorn api:app --reload --port 8000

Example cURL flow:

    curl -X POST http://localhost:8000/checkout_sessions \\
         -H "Content-Type: application/json" \\
         -d '{"items": [{"id": "prod_1", "quantity": 2}]}'

    curl -X POST http://localhost:8000/chat \\
         -H "Content-Type: application/json" \\
         -d '{"message": "I am looking for running socks"}'
"""
import logging
import os
from contextlib import AsyncExitStack, asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from commerce import CheckoutService, StripePaymentProvider, default_catalog, sqlite_stores
from commerce.config import DEFAULT_CURRENCY
from commerce.errors import CheckoutError, InvalidInput
from commerce.models import (
    CheckoutSession,
    CompleteCheckoutRequest,
    CompleteCheckoutResponse,
    CreateCheckoutRequest,
    ProductFeedResponse,
    UpdateCheckoutRequest,
)
from shopping_agent import AgentSession, build_dispatcher, get_system_prompt
from shopping_agent.config import get_agent_flow
from shopping_agent.session import new_conversation_id

logger = logging.getLogger(__name__)

_service: CheckoutService | None = None
_session: AgentSession | None = None


def configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Open the commerce store and the conversation store on startup, close both
    on shutdown.

    COMMERCE_DB_PATH (default "commerce.db") holds sessions and orders;
    CONVERSATIONS_DB_PATH (default "conversations.db") holds conversations.
    AGENT_FLOW picks the agent's tools: "acp" (local checkout) or "mcp" (Stripe MCP).
    """
    global _service, _session
    configure_logging()

    async with AsyncExitStack() as stack:
        sessions, orders = await stack.enter_async_context(sqlite_stores())
        _service = CheckoutService(default_catalog(), sessions, orders, StripePaymentProvider())

        flow = get_agent_flow()
        _session = AgentSession(build_dispatcher(flow, _service), get_system_prompt(flow))
        await _session.start()
        stack.push_async_callback(_session.stop)

        logger.info("[api] Ready. flow=%s", flow)
        yield

    _service = None
    _session = None


app = FastAPI(
    title="ACP Shopping Agent",
    description="Agentic Commerce Protocol checkout backend with a tool-calling shopping agent.",
    lifespan=lifespan,
)


# ── Error mapping ──────────────────────────────────────────────────────────────

@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    error = InvalidInput(f"Invalid request: {details}")
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


def _require_service() -> CheckoutService:
    if not _service:
        raise HTTPException(status_code=503, detail="Checkout service not initialized.")
    return _service


def _require_session() -> AgentSession:
    if not _session:
        raise HTTPException(status_code=503, detail="Agent not initialized.")
    return _session


# ── Request / Response models ──────────────────────────────────────────────────

class PaymentIntentRequest(BaseModel):
    amount: int
    currency: str = DEFAULT_CURRENCY


class PaymentIntentResponse(BaseModel):
    client_secret: str


class SptRequest(BaseModel):
    payment_method_id: str
    checkout_id: str
    amount: int
    currency: str = DEFAULT_CURRENCY


class SptResponse(BaseModel):
    spt_token: str


class PendingCheckout(BaseModel):
    checkout_id: str
    amount: int
    currency: str


class CheckoutStateResponse(BaseModel):
    checkout: PendingCheckout | None = None


class ChatRequest(BaseModel):
    conversation_id: str | None = None
    message: str = Field(..., min_length=1)


class ChatResponse(BaseModel):
    conversation_id: str
    content: str


class HistoryMessage(BaseModel):
    role: str    # "user" | "assistant"
    content: str


class HistoryResponse(BaseModel):
    conversation_id: str
    messages: list[HistoryMessage]


# ── Checkout sessions ──────────────────────────────────────────────────────────

@app.post("/checkout_sessions", response_model=CheckoutSession, status_code=201)
async def create_checkout_session(body: CreateCheckoutRequest):
    return await _require_service().create(body.items, body.buyer, body.fulfillment_address)


@app.get("/checkout_sessions/{checkout_id}", response_model=CheckoutSession)
async def get_checkout_session(checkout_id: str):
    return await _require_service().get(checkout_id)


@app.post("/checkout_sessions/{checkout_id}", response_model=CheckoutSession)
async def update_checkout_session(checkout_id: str, body: UpdateCheckoutRequest):
    return await _require_service().update(
        checkout_id,
        buyer=body.buyer,
        fulfillment_address=body.fulfillment_address,
        fulfillment_option_id=body.fulfillment_option_id,
    )


@app.post("/checkout_sessions/{checkout_id}/complete", response_model=CompleteCheckoutResponse)
async def complete_checkout_session(checkout_id: str, body: CompleteCheckoutRequest):
    """Completes only after the provider confirms the exact Total was paid."""
    return await _require_service().complete(checkout_id, body.payment_data.token)


@app.get("/products/feed", response_model=ProductFeedResponse)
async def product_feed(q: str | None = None):
    products = _require_service().catalog.search(q)
    return ProductFeedResponse(products=products, total=len(products))


# ── Payments ───────────────────────────────────────────────────────────────────

@app.post("/payment/create-payment-intent", response_model=PaymentIntentResponse)
async def create_payment_intent(body: PaymentIntentRequest):
    client_secret = await _require_service().create_payment_intent(body.amount, body.currency)
    return PaymentIntentResponse(client_secret=client_secret)


@app.post("/payment/create-spt", response_model=SptResponse)
async def create_spt(body: SptRequest):
    """Issue a SharedPaymentToken; the amount must equal the checkout Total."""
    token = await _require_service().issue_payment_token(
        body.checkout_id, body.payment_method_id, body.amount, body.currency
    )
    return SptResponse(spt_token=token)


# ── Agent ──────────────────────────────────────────────────────────────────────

@app.get("/checkout-state", response_model=CheckoutStateResponse)
async def checkout_state(conversation_id: str = Query(..., min_length=1)):
    """The checkout in this conversation that is ready for payment, if any."""
    pending = await _require_session().pending_checkout(conversation_id)
    return CheckoutStateResponse(checkout=PendingCheckout(**pending) if pending else None)


@app.post("/chat", response_model=ChatResponse)
async def chat(body: ChatRequest):
    """
    Send a message to the agent. Omit conversation_id to start a new
    conversation; the response carries the id to use for follow-ups.
    """
    session = _require_session()
    conversation_id = body.conversation_id or new_conversation_id()
    result = await session.chat(conversation_id, body.message)
    return ChatResponse(**result)


@app.post("/chat-stream")
async def chat_stream(body: ChatRequest, request: Request):
    """
    Same as /chat, streamed as text/event-stream. The conversation id is
    returned in the X-Conversation-Id header.
    """
    session = _require_session()
    conversation_id = body.conversation_id or new_conversation_id()
    return StreamingResponse(
        session.stream_chat(conversation_id, body.message, is_disconnected=request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control":     "no-cache",
            "Connection":        "keep-alive",
            "X-Conversation-Id": conversation_id,
        },
    )


@app.get("/history/{conversation_id}", response_model=HistoryResponse)
async def get_history(conversation_id: str):
    """Tool calls and tool results are excluded."""
    history = await _require_session().get_history(conversation_id)
    return HistoryResponse(
        conversation_id=conversation_id,
        messages=[HistoryMessage(**m) for m in history],
    )


@app.get("/health")
async def health():
    return {
        "status":        "ok",
        "service_ready": _service is not None,
        "agent_ready":   _session is not None,
    }
