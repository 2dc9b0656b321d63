"""
shopping_agent — LangGraph tool-calling shopping agent
======================================================

Package layout:

    config.py         Loop, sampling, streaming and MCP settings from env vars
    state.py          AgentState TypedDict and loop phase names
    prompts.py        ACP_SYSTEM_PROMPT / MCP_SYSTEM_PROMPT
    providers.py      LLM provider detection and construction
    tools.py          ToolDispatcher, ToolCache, the four checkout tools
    mcp_tools.py      McpToolDispatcher (remote Stripe MCP tools), build_dispatcher()
    nodes.py          LangGraph node functions (agent, tools, nudge)
    routing.py        Pure routing function for the conditional edge
    checkpointing.py  SQLite + memory conversation store
    graph.py          build_graph() — assembles and compiles the StateGraph
    replay.py         find_pending_checkout() over a stored conversation
    session.py        AgentSession — chat, SSE streaming, history
"""
from .checkpointing import get_db_path, memory_checkpointer, sqlite_checkpointer
from .graph import build_graph
from .mcp_tools import McpToolDispatcher, build_dispatcher
from .prompts import get_system_prompt
from .replay import find_pending_checkout
from .session import AgentSession
from .state import AgentState
from .tools import ToolCache, ToolDispatcher, ToolSpec, build_acp_dispatcher

__all__ = [
    "AgentSession",
    "AgentState",
    "build_graph",
    "ToolDispatcher",
    "ToolSpec",
    "ToolCache",
    "McpToolDispatcher",
    "build_acp_dispatcher",
    "build_dispatcher",
    "find_pending_checkout",
    "get_system_prompt",
    "sqlite_checkpointer",
    "memory_checkpointer",
    "get_db_path",
]
