"""
Graph Nodes
===========
Each function here is one node in the LangGraph StateGraph.

Node responsibilities:
  create_agent_node — calls the model with the tool schemas; returns text or tool calls
  create_tools_node — runs every tool call of the last model turn, concurrently
  nudge_node        — asks again when the model returned neither text nor tools

Design principle: nodes are pure state transformers.
They read AgentState, return a dict of updated fields, and never call
graph.ainvoke() themselves — routing is handled by separate routing functions.
"""
import asyncio
import logging

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from commerce.errors import LoopExceeded, UpstreamFailure

from .state import NUDGE, NUDGE_MESSAGE, AgentState

logger = logging.getLogger(__name__)


def create_agent_node(llm, dispatcher, system_prompt: str, max_iterations: int):
    """
    Factory that returns the agent node bound to a model and a tool dispatcher.

    The tool list is read from the dispatcher on every turn, so a remote
    tool source can refresh between turns. An unavailable tool source leaves
    the model without tools for that turn rather than failing the turn.

    Raises LoopExceeded once `iterations` reaches `max_iterations`; nothing is
    appended to the conversation in that case.
    """
    async def agent_node(state: AgentState) -> dict:
        iterations = state.get("iterations", 0)
        if iterations >= max_iterations:
            logger.warning(
                "[agent] %s hit the iteration cap (%d)",
                state.get("conversation_id"), max_iterations,
            )
            raise LoopExceeded(
                f"Agent loop exceeded {max_iterations} iterations without a final answer."
            )

        messages = list(state["messages"])
        if not messages or not isinstance(messages[0], SystemMessage):
            messages = [SystemMessage(content=system_prompt)] + messages

        try:
            schemas = await dispatcher.list_schemas()
        except UpstreamFailure as exc:
            logger.warning("[agent] Tool list unavailable, continuing without tools: %s", exc)
            schemas = []

        model = llm.bind_tools(schemas) if schemas else llm

        try:
            response = await model.ainvoke(messages)
        except Exception as exc:
            logger.exception("[agent] Model call failed")
            raise UpstreamFailure(f"Model call failed: {exc}") from exc

        logger.info(
            "[agent] iteration=%d tool_calls=%d",
            iterations + 1, len(getattr(response, "tool_calls", []) or []),
        )
        return {"messages": [response], "iterations": iterations + 1}

    return agent_node


def _pending_calls(message: AIMessage) -> list[tuple[str, str | None, dict | str | None]]:
    """
    (call_id, name, arguments) for every call in the turn, in model order.

    Calls whose arguments failed to parse arrive in invalid_tool_calls with the
    raw argument text; they still get a result so the model can correct itself.
    LangChain keeps valid and invalid calls in separate lists, so the original
    interleaving is recovered from the provider's raw tool_calls list when the
    message carries one; otherwise invalid calls follow the valid ones.
    """
    calls = [(c.get("id") or f"call_{i}", c.get("name"), c.get("args"))
             for i, c in enumerate(getattr(message, "tool_calls", []) or [])]
    calls += [(c.get("id") or f"call_invalid_{i}", c.get("name"), c.get("args"))
              for i, c in enumerate(getattr(message, "invalid_tool_calls", []) or [])]

    raw = (getattr(message, "additional_kwargs", None) or {}).get("tool_calls") or []
    position = {
        c["id"]: i for i, c in enumerate(raw) if isinstance(c, dict) and c.get("id")
    }
    if position:
        calls.sort(key=lambda call: position.get(call[0], len(position)))
    return calls


# Dispatches still running after their tools node was cancelled.
_in_flight: set[asyncio.Task] = set()


def create_tools_node(dispatcher):
    """
    Factory for the tool execution node.

    All calls of one model turn run concurrently; the resulting ToolMessages
    are appended in the order the model issued the calls, whatever order the
    calls finish in. dispatch() turns failures into error payloads, so one
    failing call never prevents the others from reporting.

    Each dispatch runs in its own shielded task. Cancelling the node (a
    streaming client going away) stops the loop, but a checkout call that has
    started always runs to the end.
    """
    async def tools_node(state: AgentState) -> dict:
        last  = list(state["messages"])[-1]
        calls = _pending_calls(last)

        tasks = [
            asyncio.ensure_future(dispatcher.dispatch(name, arguments))
            for _, name, arguments in calls
        ]
        for task in tasks:
            _in_flight.add(task)
            task.add_done_callback(_in_flight.discard)

        try:
            results = await asyncio.gather(*(asyncio.shield(task) for task in tasks))
        except asyncio.CancelledError:
            logger.info(
                "[tools] %s cancelled; letting %d call(s) finish",
                state.get("conversation_id"), sum(not t.done() for t in tasks),
            )
            raise

        return {"messages": [
            ToolMessage(content=result, tool_call_id=call_id, name=name or "unknown")
            for (call_id, name, _), result in zip(calls, results)
        ]}

    return tools_node


def nudge_node(state: AgentState) -> dict:
    """Ask the model to answer after a turn with no text and no tool calls."""
    logger.info("[agent] Empty model turn, nudging")
    return {"messages": [HumanMessage(content=NUDGE_MESSAGE, name=NUDGE)]}
