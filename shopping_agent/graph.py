"""
Graph Construction
==================
Assembles the LangGraph StateGraph from nodes, edges, and routing functions.

Architecture:

    START
      │
      ▼
    agent ──────────── text ──────────────────────► END (final answer)
      │  ▲  ▲
      │  │  └──────── nudge ◄── neither text nor tool calls
      │  │
      ▼  │
    tools ─┘  (every tool call of the turn, results appended in call order)

The agent node raises LoopExceeded once the iteration cap is reached; the
graph's recursion_limit (set by the session) is a second, coarser backstop.

Checkpointer injection:
  build_graph() accepts any LangGraph-compatible checkpointer via the
  `checkpointer` parameter. The checkpointer is the conversation store: one
  thread per conversation_id. The caller owns its lifecycle.

  SQLite (durable, default in production):
      async with sqlite_checkpointer() as cp:
          graph = build_graph(llm, dispatcher, prompt, checkpointer=cp)

  Memory (ephemeral, default for tests):
      graph = build_graph(llm, dispatcher, prompt, checkpointer=memory_checkpointer())
"""
from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, StateGraph

from .config import get_max_iterations
from .nodes import create_agent_node, create_tools_node, nudge_node
from .routing import route_after_agent
from .state import AWAITING_MODEL, EXECUTING_TOOLS, NUDGE, AgentState


def build_graph(
    llm,
    dispatcher,
    system_prompt: str,
    checkpointer: BaseCheckpointSaver | None = None,
    max_iterations: int | None = None,
):
    """
    Build and compile the agent graph.

    Args:
        llm:            A LangChain chat model supporting bind_tools() and ainvoke().
        dispatcher:     ToolDispatcher or McpToolDispatcher; supplies schemas and runs calls.
        system_prompt:  Prepended to the conversation on every model call.
        checkpointer:   Any LangGraph checkpoint backend. If None, falls back to
                        an in-process MemorySaver (conversations are lost on restart).
        max_iterations: Model turns allowed per user message (default from MAX_ITERATIONS).

    Returns:
        A compiled CompiledStateGraph ready for ainvoke() / astream() / aget_state().
    """
    if checkpointer is None:
        checkpointer = MemorySaver()
    if max_iterations is None:
        max_iterations = get_max_iterations()

    workflow = StateGraph(AgentState)

    workflow.add_node(AWAITING_MODEL,  create_agent_node(llm, dispatcher, system_prompt, max_iterations))
    workflow.add_node(EXECUTING_TOOLS, create_tools_node(dispatcher))
    workflow.add_node(NUDGE,           nudge_node)

    workflow.set_entry_point(AWAITING_MODEL)

    workflow.add_conditional_edges(
        AWAITING_MODEL,
        route_after_agent,
        {EXECUTING_TOOLS: EXECUTING_TOOLS, NUDGE: NUDGE, END: END},
    )
    workflow.add_edge(EXECUTING_TOOLS, AWAITING_MODEL)
    workflow.add_edge(NUDGE,           AWAITING_MODEL)

    return workflow.compile(checkpointer=checkpointer)
