"""Tests for the conversation stores and reply persistence."""

import json
from pathlib import Path

from nextgen.core.schema import (
    ConversationTurn,
    Role,
)
from nextgen.memory.memory_store import (
    STOPPED_ANNOTATION,
    InMemoryConversationStore,
    JsonlConversationStore,
    persist_reply,
)


async def test_in_memory_store_keeps_order_per_conversation() -> None:
    """Turns are kept in order and apart per conversation."""
    store = InMemoryConversationStore()
    await store.append("c1", Role.USER, "hi")
    await store.append("c2", Role.USER, "other")
    await store.append("c1", Role.MODEL, "hello")

    assert await store.read("c1") == [
        ConversationTurn(role=Role.USER, content="hi"),
        ConversationTurn(role=Role.MODEL, content="hello"),
    ]
    assert await store.read("missing") == []


async def test_jsonl_store_round_trip(tmp_path: Path) -> None:
    """Turns written to the JSONL file are read back."""
    path = tmp_path / "data" / "conversations.jsonl"
    store = JsonlConversationStore(path)
    await store.append("c1", Role.USER, "What is 12*11?")
    await store.append("c1", Role.MODEL, "132")
    await store.append("c2", Role.USER, "unrelated")

    turns = await store.read("c1")

    assert [(t.role, t.content) for t in turns] == [(Role.USER, "What is 12*11?"), (Role.MODEL, "132")]
    record = json.loads(path.read_text(encoding="utf-8").splitlines()[0])
    assert record["conversation_id"] == "c1" and record["role"] == "user"
    assert "created_at" in record


async def test_jsonl_store_skips_corrupt_lines(tmp_path: Path) -> None:
    """Broken lines in the file are ignored."""
    path = tmp_path / "conversations.jsonl"
    store = JsonlConversationStore(path)
    await store.append("c1", Role.USER, "ok")
    with path.open("a", encoding="utf-8") as f:
        f.write("{not json\n")

    assert len(await store.read("c1")) == 1


async def test_persist_completed_reply() -> None:
    """A finished reply is stored as is."""
    store = InMemoryConversationStore()
    assert await persist_reply(store, "c1", "All done.") == "All done."
    assert (await store.read("c1"))[0].content == "All done."


async def test_persist_stopped_reply_keeps_partial_text_with_annotation() -> None:
    """A stopped reply keeps its partial text plus the annotation."""
    store = InMemoryConversationStore()

    saved = await persist_reply(store, "c1", "The answer is", stopped=True)

    assert saved == "The answer is" + STOPPED_ANNOTATION
    assert (await store.read("c1"))[0].content.endswith("_[Stopped by User]_")


async def test_stopped_reply_without_text_is_not_saved() -> None:
    """Stopping before any text stores nothing."""
    store = InMemoryConversationStore()
    assert await persist_reply(store, "c1", "", stopped=True) is None
    assert await store.read("c1") == []
