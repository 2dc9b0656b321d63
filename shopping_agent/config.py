"""
Agent Settings
==============
Environment-driven knobs for the tool-calling loop and its collaborators.
Each getter documents its variable and default; nothing is cached, so tests
can set an env var and see it on the next call.
"""
import os

DEFAULT_MAX_ITERATIONS = 10
DEFAULT_TEMPERATURE    = 0.7
DEFAULT_MAX_TOKENS     = 5000
DEFAULT_CHUNK_SIZE     = 10      # characters per streamed chunk
DEFAULT_CHUNK_DELAY    = 0.01    # seconds between streamed chunks
DEFAULT_STRIPE_MCP_URL = "https://mcp.stripe.com/"
DEFAULT_TOOL_CACHE_TTL = 60 * 60  # 1 hour

FLOWS = ("acp", "mcp")


def get_agent_flow() -> str:
    """AGENT_FLOW: "acp" (local checkout tools, default) or "mcp" (Stripe MCP tools)."""
    flow = os.getenv("AGENT_FLOW", "acp").lower()
    return flow if flow in FLOWS else "acp"


def get_max_iterations() -> int:
    """MAX_ITERATIONS: model turns allowed per user message (default 10)."""
    return int(os.getenv("MAX_ITERATIONS", DEFAULT_MAX_ITERATIONS))


def get_temperature() -> float:
    return float(os.getenv("LLM_TEMPERATURE", DEFAULT_TEMPERATURE))


def get_max_tokens() -> int:
    return int(os.getenv("LLM_MAX_TOKENS", DEFAULT_MAX_TOKENS))


def get_chunk_size() -> int:
    return int(os.getenv("STREAM_CHUNK_SIZE", DEFAULT_CHUNK_SIZE))


def get_chunk_delay() -> float:
    return float(os.getenv("STREAM_CHUNK_DELAY", DEFAULT_CHUNK_DELAY))


def get_stripe_mcp_url() -> str:
    return os.getenv("STRIPE_MCP_URL", DEFAULT_STRIPE_MCP_URL)


def get_tool_cache_ttl() -> float:
    """MCP_TOOL_CACHE_TTL: seconds a fetched remote tool list stays fresh."""
    return float(os.getenv("MCP_TOOL_CACHE_TTL", DEFAULT_TOOL_CACHE_TTL))
