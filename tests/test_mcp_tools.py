"""
Tests for shopping_agent/mcp_tools.py
=====================================
McpToolDispatcher with a stub MCP client. No network: get_tools() returns
LangChain tools built with @tool, the same interface the adapters return.

Covers:
  - schemas converted to OpenAI format, cached for the TTL
  - dispatch to remote tools, result normalisation, unknown tools
  - stale tool list served when the server is down
  - build_dispatcher flow selection and missing Stripe key
"""
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.tools import tool

from commerce.errors import UpstreamFailure
from shopping_agent.mcp_tools import (
    McpToolDispatcher,
    build_dispatcher,
    build_stripe_client,
    normalise_result,
)
from shopping_agent.tools import ToolDispatcher


@tool
def create_customer(email: str, name: str = "") -> str:
    """Create a Stripe customer."""
    return json.dumps({"id": "cus_123", "email": email})


@tool
def retrieve_balance() -> str:
    """Retrieve the account balance."""
    return json.dumps({"available": [{"amount": 1000, "currency": "usd"}]})


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _client(*tools):
    client = MagicMock()
    client.get_tools = AsyncMock(return_value=list(tools))
    return client


# ---------------------------------------------------------------------------
# McpToolDispatcher
# ---------------------------------------------------------------------------

class TestMcpToolDispatcher:
    async def test_schemas_in_openai_format(self):
        dispatcher = McpToolDispatcher(_client(create_customer, retrieve_balance), ttl_seconds=3600)

        schemas = await dispatcher.list_schemas()

        assert [s["function"]["name"] for s in schemas] == ["create_customer", "retrieve_balance"]
        params = schemas[0]["function"]["parameters"]
        assert params["type"] == "object"
        assert "email" in params["properties"]
        assert schemas[1]["function"]["parameters"]["type"] == "object"

    async def test_tool_list_cached_within_ttl(self):
        client = _client(create_customer)
        clock = FakeClock()
        dispatcher = McpToolDispatcher(client, ttl_seconds=3600, clock=clock)

        await dispatcher.list_schemas()
        clock.now = 1800
        await dispatcher.list_schemas()
        await dispatcher.dispatch("create_customer", {"email": "a@b.c"})

        assert client.get_tools.await_count == 1

    async def test_tool_list_refetched_after_ttl(self):
        client = _client(create_customer)
        clock = FakeClock()
        dispatcher = McpToolDispatcher(client, ttl_seconds=3600, clock=clock)

        await dispatcher.list_schemas()
        clock.now = 3601
        await dispatcher.list_schemas()

        assert client.get_tools.await_count == 2

    async def test_refresh_forces_fetch(self):
        client = _client(create_customer)
        dispatcher = McpToolDispatcher(client, ttl_seconds=3600, clock=FakeClock())

        await dispatcher.list_schemas()
        await dispatcher.refresh()

        assert client.get_tools.await_count == 2

    async def test_stale_list_served_when_server_down(self):
        client = _client(create_customer)
        clock = FakeClock()
        dispatcher = McpToolDispatcher(client, ttl_seconds=10, clock=clock)
        await dispatcher.list_schemas()

        client.get_tools.side_effect = ConnectionError("mcp.stripe.com unreachable")
        clock.now = 60

        schemas = await dispatcher.list_schemas()
        assert [s["function"]["name"] for s in schemas] == ["create_customer"]

    async def test_no_list_at_all_is_upstream_failure(self):
        client = MagicMock()
        client.get_tools = AsyncMock(side_effect=ConnectionError("unreachable"))
        dispatcher = McpToolDispatcher(client, ttl_seconds=10)

        with pytest.raises(UpstreamFailure):
            await dispatcher.list_schemas()

        result = json.loads(await dispatcher.dispatch("create_customer", {}))
        assert result["type"] == "upstream_failure"

    async def test_dispatch_calls_remote_tool(self):
        dispatcher = McpToolDispatcher(_client(create_customer), ttl_seconds=3600)

        result = await dispatcher.dispatch("create_customer", '{"email": "sam@example.com"}')

        assert json.loads(result) == {"id": "cus_123", "email": "sam@example.com"}

    async def test_unknown_remote_tool(self):
        dispatcher = McpToolDispatcher(_client(create_customer), ttl_seconds=3600)
        result = json.loads(await dispatcher.dispatch("delete_everything", {}))
        assert result["type"] == "invalid_input"

    async def test_remote_tool_failure_becomes_payload(self):
        remote = MagicMock()
        remote.name = "create_customer"
        remote.ainvoke = AsyncMock(side_effect=RuntimeError("rate limited"))
        dispatcher = McpToolDispatcher(_client(remote), ttl_seconds=3600)

        result = json.loads(await dispatcher.dispatch("create_customer", {"email": "x"}))

        assert result["type"] == "upstream_failure"
        assert "rate limited" in result["error"]


# ---------------------------------------------------------------------------
# normalise_result
# ---------------------------------------------------------------------------

class TestNormaliseResult:
    def test_string_passes_through(self):
        assert normalise_result('{"id": "cus_1"}') == '{"id": "cus_1"}'

    def test_text_blocks_joined(self):
        blocks = [{"type": "text", "text": "first"}, {"type": "text", "text": "second"}]
        assert normalise_result(blocks) == "first\nsecond"

    def test_content_and_artifact_tuple(self):
        assert normalise_result(("text result", {"raw": True})) == "text result"

    def test_other_values_json_encoded(self):
        assert json.loads(normalise_result({"id": "cus_1"})) == {"id": "cus_1"}


# ---------------------------------------------------------------------------
# build_dispatcher
# ---------------------------------------------------------------------------

class TestBuildDispatcher:
    def test_acp_flow_uses_local_tools(self, service):
        dispatcher = build_dispatcher("acp", service)
        assert type(dispatcher) is ToolDispatcher
        assert "create_checkout" in dispatcher.names

    def test_flow_from_env(self, service, monkeypatch):
        monkeypatch.setenv("AGENT_FLOW", "acp")
        assert type(build_dispatcher(None, service)) is ToolDispatcher

    def test_mcp_flow_uses_remote_tools(self, service, monkeypatch):
        monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
        assert isinstance(build_dispatcher("mcp", service), McpToolDispatcher)

    def test_mcp_flow_requires_stripe_key(self, monkeypatch):
        monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
        with pytest.raises(UpstreamFailure, match="STRIPE_SECRET_KEY"):
            build_stripe_client()
