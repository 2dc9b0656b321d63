"""
Routing Functions
=================
Pure functions that read AgentState and return a destination node name.
LangGraph calls these at conditional edges to decide where execution goes next.

Graph routing map:
  agent → route_after_agent → "tools" | "nudge" | END
"""
from typing import Literal

from langgraph.graph import END

from .state import AgentState, EXECUTING_TOOLS, NUDGE


def message_text(message) -> str:
    """Plain text of a message whose content is a string or a list of blocks."""
    content = getattr(message, "content", "")
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def route_after_agent(state: AgentState) -> Literal["tools", "nudge", "__end__"]:
    """
    After the model answers, decide what happens next:
      - Any tool call (even one with unparsable arguments) → "tools"
      - Non-empty text                                      → END
      - Neither (malformed turn)                            → "nudge"
    """
    last = state["messages"][-1]

    if getattr(last, "tool_calls", None) or getattr(last, "invalid_tool_calls", None):
        return EXECUTING_TOOLS

    if message_text(last).strip():
        return END

    return NUDGE
