"""
Conversation Store
==================
Where shopping conversations live between messages.

A conversation_id is used as the LangGraph thread_id. After every graph step
the checkpointer saves the thread's AgentState: the message list (user turns,
model turns with their tool calls, tool results, nudges) plus the iteration
counter. AgentSession reads it back for /history, for /checkout-state (the
checkout awaiting payment is rebuilt from stored tool results) and to resume
the next message.

  conversations.db (default)  AsyncSqliteSaver, one file, survives restarts.
                              CONVERSATIONS_DB_PATH moves it.
  memory                      MemorySaver, per process. The CLI demo and tests.

Checkout sessions and orders are not kept here; they are in the commerce
store (commerce/store.py, COMMERCE_DB_PATH).
"""
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from langgraph.checkpoint.memory import MemorySaver
from langgraph.checkpoint.sqlite.aio import AsyncSqliteSaver

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "conversations.db"


def get_db_path() -> str:
    """CONVERSATIONS_DB_PATH, or "conversations.db" in the cwd."""
    return os.getenv("CONVERSATIONS_DB_PATH", DEFAULT_DB_PATH)


@asynccontextmanager
async def sqlite_checkpointer(
    db_path: str | None = None,
) -> AsyncIterator[AsyncSqliteSaver]:
    """
    Yield a ready conversation checkpointer backed by SQLite.

    The saver owns its aiosqlite connection for the lifetime of the context;
    AgentSession enters it on start() and leaves it on stop(). ":memory:"
    keeps the SQL code path without a file.
    """
    path = db_path if db_path is not None else get_db_path()
    async with AsyncSqliteSaver.from_conn_string(path) as saver:
        await saver.setup()
        logger.info("[checkpointing] Conversations stored in %s", path)
        yield saver


def memory_checkpointer() -> MemorySaver:
    """Conversations kept in this process only."""
    return MemorySaver()
