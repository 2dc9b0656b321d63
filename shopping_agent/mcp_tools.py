"""
Remote MCP Tools
================
Tool dispatcher backed by a remote MCP server (Stripe's by default).

The tool list is fetched with langchain-mcp-adapters' MultiServerMCPClient over
the streamable HTTP transport and cached in a ToolCache for
MCP_TOOL_CACHE_TTL seconds (1 hour). When a refresh fails the previous list
keeps serving; with no list at all the turn runs without tools.

Schemas are produced with convert_to_openai_tool(), so a tool without an input
schema still gets {"type": "object", "properties": {}}.

Tool results are normalised to a string: plain text passes through, content
blocks are joined, anything else is JSON-encoded. Failures go through the same
error payloads as the local tools (see ToolDispatcher.dispatch).
"""
import json
import logging
import os
import time

from langchain_core.utils.function_calling import convert_to_openai_tool
from langchain_mcp_adapters.client import MultiServerMCPClient

from commerce.checkout import CheckoutService
from commerce.errors import UpstreamFailure

from .config import get_agent_flow, get_stripe_mcp_url, get_tool_cache_ttl
from .tools import Handler, ToolCache, ToolDispatcher, build_acp_dispatcher

logger = logging.getLogger(__name__)

SERVER_NAME = "stripe"


def normalise_result(result) -> str:
    """Flatten an MCP tool result into the text the model will read."""
    if isinstance(result, str):
        return result
    if isinstance(result, tuple) and len(result) == 2:
        # (content, artifact) from content_and_artifact tools
        return normalise_result(result[0])
    if isinstance(result, list):
        texts = [
            block if isinstance(block, str) else block.get("text", "")
            for block in result
            if isinstance(block, str) or (isinstance(block, dict) and block.get("type") == "text")
        ]
        if texts:
            return "\n".join(texts)
    return json.dumps(result, default=str)


def build_stripe_client(api_key: str | None = None, url: str | None = None) -> MultiServerMCPClient:
    key = api_key or os.getenv("STRIPE_SECRET_KEY")
    if not key:
        raise UpstreamFailure("STRIPE_SECRET_KEY is not configured")
    return MultiServerMCPClient({
        SERVER_NAME: {
            "transport": "streamable_http",
            "url":       url or get_stripe_mcp_url(),
            "headers":   {"Authorization": f"Bearer {key}"},
        }
    })


class McpToolDispatcher(ToolDispatcher):
    """
    Args:
        client:      Anything with an async get_tools() returning LangChain tools.
        ttl_seconds: Tool list freshness window. Defaults to MCP_TOOL_CACHE_TTL.
    """

    def __init__(self, client, ttl_seconds: float | None = None, clock=None):
        super().__init__()
        self._client = client
        ttl = ttl_seconds if ttl_seconds is not None else get_tool_cache_ttl()
        self.cache = ToolCache(self._fetch_tools, ttl, clock=clock or time.monotonic)

    async def _fetch_tools(self) -> dict:
        tools = await self._client.get_tools()
        logger.info("[mcp] Fetched %d tools: %s", len(tools), [t.name for t in tools])
        return {tool.name: tool for tool in tools}

    async def list_schemas(self) -> list[dict]:
        tools = await self.cache.get()
        return [convert_to_openai_tool(tool) for tool in tools.values()]

    async def _resolve(self, name: str | None) -> Handler | None:
        if not name:
            return None
        tool = (await self.cache.get()).get(name)
        if tool is None:
            return None

        async def call(args: dict) -> str:
            return normalise_result(await tool.ainvoke(args))

        return call

    async def refresh(self) -> None:
        await self.cache.get(force_refresh=True)

    def clear_cache(self) -> None:
        self.cache.clear()


def build_dispatcher(flow: str | None, service: CheckoutService) -> ToolDispatcher:
    """Return the dispatcher for AGENT_FLOW: local checkout tools or remote MCP tools."""
    flow = flow or get_agent_flow()
    if flow == "mcp":
        logger.info("[mcp] Using remote tools from %s", get_stripe_mcp_url())
        return McpToolDispatcher(build_stripe_client())
    return build_acp_dispatcher(service)
