"""Tests for the request-level chat flow (rules, cache, loop)."""

from typing import List

import httpx
import pytest
from fakes import (
    FakeCollection,
    ScriptedCompleter,
    text,
    tool_call,
)

from nextgen.agent.agent_loop import AgentLoop
from nextgen.agent.chat_service import ChatService
from nextgen.agent.rules import (
    Rule,
    RuleMatcher,
)
from nextgen.core.cache import (
    ResponseCache,
    fingerprint,
)
from nextgen.core.schema import (
    Attachment,
    ConversationTurn,
    Role,
)
from nextgen.core.streaming import (
    ContentFrame,
    StatusFrame,
)
from nextgen.memory.vector_memory import KnowledgeBase
from nextgen.tools import ToolRegistry


def _rules() -> RuleMatcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
    return RuleMatcher([Rule(["hello"], "Hi from rules")], client=client)


def _service(registry: ToolRegistry, completer: ScriptedCompleter, rules=None) -> ChatService:
    cache = ResponseCache()
    return ChatService(
        registry=registry,
        cache=cache,
        loop=AgentLoop(registry, cache=cache),
        completer_factory=lambda model_id: completer,
        knowledge_base=KnowledgeBase(collection=FakeCollection()),
        rules=rules,
    )


async def _reply(service: ChatService, completer, message: str, **kwargs) -> List:
    return [frame async for frame in service.stream_reply(completer, [], message, **kwargs)]


async def test_end_to_end_calculation(registry: ToolRegistry) -> None:
    """One status frame for the calculator round, then the answer containing 132."""
    completer = ScriptedCompleter(
        [tool_call("calculate", expression="12*11"), text("The result is 132.")], registry
    )
    service = _service(registry, completer)

    frames = await _reply(service, completer, "What is 12*11?")

    assert [type(f) for f in frames] == [StatusFrame, ContentFrame]
    assert "132" in frames[-1].text


async def test_second_identical_request_is_served_from_cache(registry: ToolRegistry) -> None:
    """A repeated first message is answered without the model."""
    completer = ScriptedCompleter([text("Paris")], registry)
    service = _service(registry, completer)

    first = await _reply(service, completer, "Capital of France?")
    second = await _reply(service, completer, "Capital of France?")

    assert first == second == [ContentFrame(text="Paris")]
    assert len(completer.calls) == 1
    assert service.cache.get(fingerprint(0, "Capital of France?", None, "scripted-model")) == "Paris"


async def test_follow_up_with_more_history_misses_cache(registry: ToolRegistry) -> None:
    """The same message with longer history is a new key."""
    completer = ScriptedCompleter([text("Paris"), text("Still Paris")], registry)
    service = _service(registry, completer)
    await _reply(service, completer, "Capital of France?")

    history = [
        ConversationTurn(role=Role.USER, content="Capital of France?"),
        ConversationTurn(role=Role.MODEL, content="Paris"),
    ]
    frames = [f async for f in service.stream_reply(completer, history, "Capital of France?")]

    assert frames == [ContentFrame(text="Still Paris")]


async def test_rules_answer_without_the_model(registry: ToolRegistry) -> None:
    """Rule matches short-circuit the completer."""
    completer = ScriptedCompleter([], registry)
    rules = _rules()
    service = _service(registry, completer, rules=rules)

    frames = await _reply(service, completer, "hello")

    assert frames == [ContentFrame(text="Hi from rules")]
    assert completer.calls == []


async def test_attachments_bypass_rules_and_cache(registry: ToolRegistry) -> None:
    """Requests with attachments always go to the model."""
    completer = ScriptedCompleter([text("A cat."), text("A dog.")], registry)
    rules = _rules()
    service = _service(registry, completer, rules=rules)
    image = Attachment(mime_type="image/jpeg", data="AAAA")
    doc = Attachment(mime_type="application/pdf", data="BBBB")

    first = await _reply(service, completer, "hello", attachments=[image, doc])
    second = await _reply(service, completer, "hello", attachments=[image])

    assert first == [ContentFrame(text="A cat.")]
    assert second == [ContentFrame(text="A dog.")]
    assert completer.calls[0]["images"] == [image]
    assert len(service.cache) == 0


def test_unknown_model_raises(registry: ToolRegistry) -> None:
    """Unknown model ids raise before anything is streamed."""
    def factory(model_id):
        raise ValueError(f"Unknown model '{model_id}'.")

    cache = ResponseCache()
    service = ChatService(
        registry, cache, AgentLoop(registry), factory, KnowledgeBase(collection=FakeCollection())
    )
    with pytest.raises(ValueError):
        service.completer("nope")
