"""
Agent State
===========
Defines the shared state TypedDict that flows through every node in the graph.

add_messages is a reducer: new messages are APPENDED to the list rather than
replacing it, so the model sees the full conversation history at every step.

`iterations` counts model calls since the last user message. The agent node
refuses to call the model once it reaches the cap.
"""
from typing import Annotated, Sequence

from langchain_core.messages import BaseMessage
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict


class AgentState(TypedDict):
    messages: Annotated[Sequence[BaseMessage], add_messages]
    conversation_id: str
    iterations: int


# Loop phases, named after the graph nodes that implement them.
AWAITING_MODEL  = "agent"
EXECUTING_TOOLS = "tools"
NUDGE           = "nudge"

# Injected when the model returns neither text nor tool calls.
NUDGE_MESSAGE = "Please provide a response."
