"""Conversation stores: where finished chat turns are persisted."""

import asyncio
import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from collections import defaultdict
from datetime import (
    datetime,
    timezone,
)
from pathlib import Path
from typing import (
    Dict,
    List,
)

from nextgen.core.schema import (
    ConversationTurn,
    Role,
)

logger = logging.getLogger(__name__)

STOPPED_ANNOTATION = "\n\n_[Stopped by User]_"


class ConversationStore(ABC):
    """Durable, authoritative message history keyed by conversation id."""

    @abstractmethod
    async def append(self, conversation_id: str, role: Role, content: str) -> None:
        """Add one turn to the end of the conversation."""

    @abstractmethod
    async def read(self, conversation_id: str) -> List[ConversationTurn]:
        """Return the conversation in chronological order (empty if unknown)."""


class InMemoryConversationStore(ConversationStore):
    """Process-local store, used by tests and throwaway sessions."""

    def __init__(self) -> None:
        self._conversations: Dict[str, List[ConversationTurn]] = defaultdict(list)

    async def append(self, conversation_id: str, role: Role, content: str) -> None:
        self._conversations[conversation_id].append(ConversationTurn(role=role, content=content))

    async def read(self, conversation_id: str) -> List[ConversationTurn]:
        return list(self._conversations.get(conversation_id, []))


class JsonlConversationStore(ConversationStore):
    """
    Append-only JSON lines file.

    Each line is ``{"conversation_id", "role", "content", "created_at"}``; reading filters by id.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def init(self) -> None:
        """Make sure the log file exists."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.touch()  # Create an empty file if it doesn't exist

    def _append_line(self, record: dict) -> None:
        self.init()
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")

    def _read_lines(self, conversation_id: str) -> List[ConversationTurn]:
        if not self.path.exists():
            return []
        turns: List[ConversationTurn] = []
        with self.path.open("r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt line %d in %s", line_no, self.path)
                    continue
                if record.get("conversation_id") == conversation_id:
                    turns.append(ConversationTurn(role=record["role"], content=record["content"]))
        return turns

    async def append(self, conversation_id: str, role: Role, content: str) -> None:
        record = {
            "conversation_id": conversation_id,
            "role": Role(role).value,
            "content": content,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        await asyncio.to_thread(self._append_line, record)

    async def read(self, conversation_id: str) -> List[ConversationTurn]:
        return await asyncio.to_thread(self._read_lines, conversation_id)


async def persist_reply(
    store: ConversationStore, conversation_id: str, content: str, stopped: bool = False
) -> str | None:
    """
    Save a model reply.

    A reply interrupted by the user keeps its partial text with :data:`STOPPED_ANNOTATION`
    appended; an interrupted reply with no text at all is not saved.  Returns what was stored.
    """
    if stopped:
        if not content:
            return None
        content = content + STOPPED_ANNOTATION
    await store.append(conversation_id, Role.MODEL, content)
    return content
