"""
Agent Session
=============
High-level interface for multi-turn conversations with the shopping agent.

Responsibilities:
  - Manage the checkpointer lifecycle via AsyncExitStack
  - Build and hold the compiled LangGraph graph
  - Run one user message through the loop, either to a single reply (chat)
    or as a Server-Sent Events stream (stream_chat)
  - Read back a conversation: raw messages, user-facing history, and the
    checkout currently awaiting payment

Checkpointer modes:
  SQLite (default, durable)
    AgentSession(dispatcher, prompt, db_path="conversations.db")

  In-memory (ephemeral)
    AgentSession(dispatcher, prompt, in_memory=True)

Messages for one conversation are processed one at a time (per-conversation
asyncio.Lock); different conversations run concurrently.

SSE format:
    data: {"choices":[{"delta":{"content":"Hello, how"},"index":0}]}
    ...
    data: [DONE]
  or, on failure:
    data: {"error":{"message":"...","type":"loop_exceeded"}}
"""
import asyncio
import json
import logging
import uuid
import weakref
from contextlib import AsyncExitStack, aclosing
from typing import AsyncIterator, Awaitable, Callable

from langchain_core.messages import AIMessage, HumanMessage
from langgraph.errors import GraphRecursionError

from commerce.errors import CheckoutError, LoopExceeded

from .checkpointing import get_db_path, memory_checkpointer, sqlite_checkpointer
from .config import get_chunk_delay, get_chunk_size, get_max_iterations
from .graph import build_graph
from .providers import build_llm
from .replay import find_pending_checkout
from .routing import message_text
from .state import AWAITING_MODEL, EXECUTING_TOOLS, NUDGE

logger = logging.getLogger(__name__)


# ── SSE helpers ─────────────────────────────────────────────────────────────

DONE_EVENT = "data: [DONE]\n\n"


def sse_event(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def delta_event(content: str) -> str:
    return sse_event({"choices": [{"delta": {"content": content}, "index": 0}]})


def error_event(exc: CheckoutError) -> str:
    return sse_event({"error": {"message": exc.message, "type": exc.code}})


def chunk_text(text: str, size: int) -> list[str]:
    """Split text into consecutive pieces of at most `size` characters."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    return [text[i:i + size] for i in range(0, len(text), size)]


def new_conversation_id() -> str:
    return f"conv_{uuid.uuid4().hex}"


# ── AgentSession ────────────────────────────────────────────────────────────

class AgentSession:
    """
    Args:
        dispatcher:     ToolDispatcher (local checkout tools) or McpToolDispatcher.
        system_prompt:  Prepended to every model call.
        db_path:        SQLite conversation store. Defaults to CONVERSATIONS_DB_PATH.
        in_memory:      Use MemorySaver instead of SQLite.
        llm:            Chat model; built from the environment when omitted.
        max_iterations: Model turns per user message. Defaults to MAX_ITERATIONS.

    Usage:
        session = AgentSession(dispatcher, ACP_SYSTEM_PROMPT)
        await session.start()
        reply = await session.chat(conversation_id, "I need running socks")
        await session.stop()
    """

    def __init__(
        self,
        dispatcher,
        system_prompt: str,
        db_path: str | None = None,
        in_memory: bool = False,
        llm=None,
        max_iterations: int | None = None,
    ):
        self._dispatcher    = dispatcher
        self._system_prompt = system_prompt
        self._db_path       = db_path
        self._in_memory     = in_memory
        self._llm           = llm
        self._max_iterations = max_iterations if max_iterations is not None else get_max_iterations()
        self._graph         = None
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._exit_stack    = AsyncExitStack()

    async def start(self) -> None:
        """Open the checkpointer and build the graph."""
        if self._in_memory:
            checkpointer = memory_checkpointer()
            logger.info("[session] Using in-memory checkpointer (ephemeral)")
        else:
            path = self._db_path or get_db_path()
            checkpointer = await self._exit_stack.enter_async_context(
                sqlite_checkpointer(path)
            )
            logger.info("[session] Using SQLite checkpointer at: %s", path)

        llm = self._llm if self._llm is not None else build_llm()
        self._graph = build_graph(
            llm,
            self._dispatcher,
            self._system_prompt,
            checkpointer=checkpointer,
            max_iterations=self._max_iterations,
        )
        logger.info("[session] Ready. max_iterations=%d", self._max_iterations)

    async def stop(self) -> None:
        await self._exit_stack.aclose()

    # ── State helpers ───────────────────────────────────────────────────────

    def _config(self, conversation_id: str) -> dict:
        # Each iteration is at most two graph steps (agent + tools/nudge).
        return {
            "configurable":    {"thread_id": conversation_id},
            "recursion_limit": self._max_iterations * 2 + 5,
        }

    def _lock(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        return lock

    @staticmethod
    def _input(conversation_id: str, message: str) -> dict:
        return {
            "messages":        [HumanMessage(content=message)],
            "conversation_id": conversation_id,
            "iterations":      0,
        }

    async def get_messages(self, conversation_id: str) -> list:
        state = await self._graph.aget_state(self._config(conversation_id))
        return list(state.values.get("messages", []))

    async def get_history(self, conversation_id: str) -> list[dict]:
        """
        Return the conversation as { role: "user"|"assistant", content: str } dicts.

        Tool calls, tool results and loop nudges are left out.
        """
        history = []
        for msg in await self.get_messages(conversation_id):
            if isinstance(msg, HumanMessage) and msg.name != NUDGE:
                history.append({"role": "user", "content": message_text(msg)})
            elif isinstance(msg, AIMessage) and not msg.tool_calls and message_text(msg).strip():
                history.append({"role": "assistant", "content": message_text(msg)})
        return history

    async def pending_checkout(self, conversation_id: str) -> dict | None:
        return find_pending_checkout(await self.get_messages(conversation_id))

    @staticmethod
    def _last_ai_text(messages) -> str:
        for msg in reversed(list(messages)):
            if isinstance(msg, AIMessage) and not msg.tool_calls:
                text = message_text(msg)
                if text.strip():
                    return text
        return ""

    # ── Main chat interface ─────────────────────────────────────────────────

    async def chat(self, conversation_id: str, message: str) -> dict:
        """
        Run one user message through the loop and return the final reply.

        Raises LoopExceeded or UpstreamFailure; tool-level errors never reach
        here, the model sees them as tool results.
        """
        async with self._lock(conversation_id):
            try:
                result = await self._graph.ainvoke(
                    self._input(conversation_id, message),
                    config=self._config(conversation_id),
                )
            except GraphRecursionError as exc:
                raise LoopExceeded(f"Agent loop exceeded its step limit: {exc}") from exc

        return {
            "conversation_id": conversation_id,
            "content":         self._last_ai_text(result["messages"]),
        }

    async def stream_chat(
        self,
        conversation_id: str,
        message: str,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> AsyncIterator[str]:
        """
        Yield SSE lines for one user message.

        Intermediate tool turns are not streamed. When the loop finishes, the
        final text is sent in STREAM_CHUNK_SIZE pieces with STREAM_CHUNK_DELAY
        between them, then the [DONE] marker.

        `is_disconnected` is polled after each tools or nudge step. A
        disconnected client stops the loop before the next model call; tool
        calls already requested have completed by then.
        """
        final_text = ""
        async with self._lock(conversation_id):
            try:
                stream = self._graph.astream(
                    self._input(conversation_id, message),
                    config=self._config(conversation_id),
                    stream_mode="updates",
                )
                async with aclosing(stream) as updates:
                    async for update in updates:
                        for node, delta in update.items():
                            if node == AWAITING_MODEL and delta:
                                final_text = message_text(delta["messages"][-1])
                            elif node in (EXECUTING_TOOLS, NUDGE) and is_disconnected is not None:
                                if await is_disconnected():
                                    logger.info(
                                        "[session] %s: client disconnected, stopping loop",
                                        conversation_id,
                                    )
                                    return
            except GraphRecursionError as exc:
                yield error_event(LoopExceeded(f"Agent loop exceeded its step limit: {exc}"))
                return
            except CheckoutError as exc:
                logger.warning("[session] %s: %s (%s)", conversation_id, exc.message, exc.code)
                yield error_event(exc)
                return

        size, delay = get_chunk_size(), get_chunk_delay()
        for chunk in chunk_text(final_text, size):
            yield delta_event(chunk)
            if delay:
                await asyncio.sleep(delay)
        yield DONE_EVENT
