"""Tests for the completion adapters, using fake SDK clients."""

import json
from types import SimpleNamespace
from typing import (
    Any,
    List,
)

import pytest

from nextgen.agent.completion import (
    AnthropicCompleter,
    CompletionError,
    GeminiCompleter,
    GroqCompleter,
    OllamaCompleter,
    OpenAICompleter,
    extract_inline_tool_call,
    load_completer,
    resolve_provider,
)
from nextgen.core.history import ACK_PLACEHOLDER
from nextgen.core.schema import (
    Attachment,
    ConversationTurn,
    Role,
    TextStep,
    ToolCallStep,
)
from nextgen.tools import ToolRegistry


class FakeOpenAI:
    """Mimics ``client.chat.completions.create``."""

    def __init__(self, responses: List[Any]):
        self.responses = list(responses)
        self.requests: List[dict] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs: Any) -> Any:
        self.requests.append(kwargs)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _openai_message(content: str | None = None, tool_calls: List[Any] | None = None) -> Any:
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _openai_call(name: str, arguments: str) -> Any:
    return SimpleNamespace(function=SimpleNamespace(name=name, arguments=arguments))


class FakeAnthropic:
    """Mimics ``client.messages.create``."""

    def __init__(self, responses: List[Any]):
        self.responses = list(responses)
        self.requests: List[dict] = []
        self.messages = SimpleNamespace(create=self._create)

    async def _create(self, **kwargs: Any) -> Any:
        self.requests.append(kwargs)
        return self.responses.pop(0)


class ProviderError(Exception):
    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------
@pytest.mark.parametrize(
    "model_id, provider",
    [
        ("gpt-4o", "openai"),
        ("claude-3-5-sonnet-latest", "anthropic"),
        ("gemini-1.5-flash", "gemini"),
        ("llama3-70b", "groq"),
        ("mixtral-8x7b", "groq"),
        ("ollama-llama3", "ollama"),
    ],
)
def test_resolve_provider(model_id: str, provider: str) -> None:
    """Model ids route to their provider."""
    assert resolve_provider(model_id) == provider


def test_unknown_model_is_rejected(registry: ToolRegistry) -> None:
    """Unrecognized model ids raise ValueError."""
    with pytest.raises(ValueError):
        load_completer("totally-unknown", registry)


def test_load_completer_picks_class_and_default(registry: ToolRegistry) -> None:
    """Loading picks the provider class, with a default when no id is given."""
    assert isinstance(load_completer("gpt-4o-mini", registry), OpenAICompleter)
    assert isinstance(load_completer("claude-3-haiku", registry), AnthropicCompleter)
    assert isinstance(load_completer(None, registry), GeminiCompleter)


def test_model_name_mapping(registry: ToolRegistry) -> None:
    """Friendly model ids map to provider model names."""
    assert GroqCompleter("llama3-70b", registry).model_name == "llama-3.3-70b-versatile"
    assert OllamaCompleter("ollama-llama3", registry).model_name == "llama3"


# ---------------------------------------------------------------------------
# Inline tool calls
# ---------------------------------------------------------------------------
def test_inline_tool_call_is_detected(registry: ToolRegistry) -> None:
    """A fenced JSON tool call in text is recognized."""
    step = extract_inline_tool_call(
        '```json\n{"tool": "calculate", "args": {"expression": "12*11"}}\n```', registry
    )
    assert step == ToolCallStep(tool_name="calculate", tool_args={"expression": "12*11"})


@pytest.mark.parametrize(
    "answer",
    [
        "The answer is 132.",
        '{"tool": "calculate", "args": {',  # truncated JSON
        '{"tool": "launch_rockets", "args": {}}',  # hallucinated tool
        '{"answer": 42}',
    ],
)
def test_non_tool_answers_stay_text(registry: ToolRegistry, answer: str) -> None:
    """Plain, truncated, unknown-tool and unrelated JSON answers are not tool calls."""
    assert extract_inline_tool_call(answer, registry) is None


# ---------------------------------------------------------------------------
# OpenAI-compatible adapter
# ---------------------------------------------------------------------------
async def test_openai_text_answer(registry: ToolRegistry) -> None:
    """Text answers come back as text steps and tools are advertised natively."""
    fake = FakeOpenAI([_openai_message("Hello!")])
    completer = OpenAICompleter("gpt-4o", registry, client=fake)

    step = await completer.complete([], "hi")

    assert step == TextStep(content="Hello!")
    request = fake.requests[0]
    assert request["messages"][0]["role"] == "system"
    assert request["messages"][-1] == {"role": "user", "content": "hi"}
    assert request["tools"][0]["function"]["name"] == "calculate"


async def test_openai_only_first_tool_call_is_used(registry: ToolRegistry) -> None:
    """Only the first of several tool calls is executed."""
    calls = [
        _openai_call("calculate", json.dumps({"expression": "1+1"})),
        _openai_call("calculate", json.dumps({"expression": "2+2"})),
    ]
    completer = OpenAICompleter(
        "gpt-4o", registry, client=FakeOpenAI([_openai_message(tool_calls=calls)])
    )
    step = await completer.complete([], "add things")
    assert step == ToolCallStep(tool_name="calculate", tool_args={"expression": "1+1"})


async def test_openai_malformed_arguments_become_empty(registry: ToolRegistry) -> None:
    """Unparseable tool arguments become an empty mapping."""
    calls = [_openai_call("calculate", "{not json")]
    completer = OpenAICompleter(
        "gpt-4o", registry, client=FakeOpenAI([_openai_message(tool_calls=calls)])
    )
    step = await completer.complete([], "x")
    assert step == ToolCallStep(tool_name="calculate", tool_args={})


async def test_history_is_normalized_before_submission(registry: ToolRegistry) -> None:
    """History is cleaned up before it is sent."""
    fake = FakeOpenAI([_openai_message("ok")])
    completer = OpenAICompleter("gpt-4o", registry, client=fake)
    history = [
        ConversationTurn(role=Role.MODEL, content="stray"),
        ConversationTurn(role=Role.USER, content="What is 12*11?"),
    ]

    await completer.complete(history, "What is 12*11?")

    roles = [m["role"] for m in fake.requests[0]["messages"]]
    assert roles == ["system", "user", "assistant", "user"]
    assert fake.requests[0]["messages"][2]["content"] == ACK_PLACEHOLDER


async def test_images_are_sent_as_data_urls(registry: ToolRegistry) -> None:
    """Image attachments become data URLs and documents are skipped."""
    fake = FakeOpenAI([_openai_message("a cat")])
    completer = OpenAICompleter("gpt-4o", registry, client=fake)
    images = [
        Attachment(mime_type="image/png", data="AAAA"),
        Attachment(mime_type="application/pdf", data="BBBB"),
    ]

    await completer.complete([], "what is this?", images=images)

    content = fake.requests[0]["messages"][-1]["content"]
    assert content[0] == {"type": "text", "text": "what is this?"}
    assert content[1]["image_url"]["url"] == "data:image/png;base64,AAAA"
    assert len(content) == 2


async def test_persona_is_appended_to_system_prompt(registry: ToolRegistry) -> None:
    """A persona extends the system prompt."""
    fake = FakeOpenAI([_openai_message("Arr")])
    await OpenAICompleter("gpt-4o", registry, client=fake).complete([], "hi", persona="a pirate")
    assert "a pirate" in fake.requests[0]["messages"][0]["content"]


async def test_provider_errors_are_wrapped(registry: ToolRegistry) -> None:
    """SDK errors become CompletionError with their status code."""
    fake = FakeOpenAI([ProviderError("rate limited", status_code=429)])
    completer = OpenAICompleter("gpt-4o", registry, client=fake)
    with pytest.raises(CompletionError) as excinfo:
        await completer.complete([], "hi")
    assert excinfo.value.status_code == 429


async def test_openai_json_looking_text_stays_text(registry: ToolRegistry) -> None:
    """Models with native tools only call a tool through the structured field."""
    answer = 'Tools are called with JSON like {"tool": "calculate", "args": {"expression": "1+1"}}.'
    completer = OpenAICompleter("gpt-4o", registry, client=FakeOpenAI([_openai_message(answer)]))

    step = await completer.complete([], "how do tools work?")

    assert step == TextStep(content=answer)


async def test_ollama_uses_inline_tool_protocol(registry: ToolRegistry) -> None:
    """Models without native tools get tools in the prompt and answer inline."""
    answer = '{"tool": "calculate", "args": {"expression": "12*11"}}'
    fake = FakeOpenAI([_openai_message(answer)])
    completer = OllamaCompleter("ollama-llama3", registry, client=fake)

    step = await completer.complete([], "What is 12*11?")

    assert step == ToolCallStep(tool_name="calculate", tool_args={"expression": "12*11"})
    assert "tools" not in fake.requests[0]
    assert "calculate(expression: string)" in fake.requests[0]["messages"][0]["content"]


async def test_generate_returns_plain_text(registry: ToolRegistry) -> None:
    """Single-prompt generation returns the text and honours max_tokens."""
    fake = FakeOpenAI([_openai_message("Math Help")])
    title = await OpenAICompleter("gpt-4o", registry, client=fake).generate("title?", 20)
    assert title == "Math Help"
    assert fake.requests[0]["max_tokens"] == 20


# ---------------------------------------------------------------------------
# Anthropic adapter
# ---------------------------------------------------------------------------
async def test_anthropic_tool_use(registry: ToolRegistry) -> None:
    """Claude tool_use blocks become a tool call step, first one only."""
    blocks = [
        SimpleNamespace(type="text", text="Let me calculate."),
        SimpleNamespace(type="tool_use", name="calculate", input={"expression": "12*11"}),
        SimpleNamespace(type="tool_use", name="calculate", input={"expression": "0"}),
    ]
    fake = FakeAnthropic([SimpleNamespace(content=blocks)])
    completer = AnthropicCompleter("claude-3-5-sonnet-latest", registry, client=fake)

    step = await completer.complete([], "What is 12*11?")

    assert step == ToolCallStep(tool_name="calculate", tool_args={"expression": "12*11"})
    assert fake.requests[0]["tools"][0]["input_schema"]["properties"]["expression"]


async def test_anthropic_json_looking_text_stays_text(registry: ToolRegistry) -> None:
    """A Claude answer quoting the inline tool format is not run as a tool."""
    answer = '{"tool": "calculate", "args": {"expression": "12*11"}}'
    fake = FakeAnthropic([SimpleNamespace(content=[SimpleNamespace(type="text", text=answer)])])
    completer = AnthropicCompleter("claude-3-haiku", registry, client=fake)

    step = await completer.complete([], "show me the tool format")

    assert step == TextStep(content=answer)


async def test_anthropic_text_and_empty_turns(registry: ToolRegistry) -> None:
    """Empty turns are padded because Claude rejects empty content."""
    fake = FakeAnthropic([SimpleNamespace(content=[SimpleNamespace(type="text", text="Hi")])])
    completer = AnthropicCompleter("claude-3-haiku", registry, client=fake)
    history = [
        ConversationTurn(role=Role.USER, content="hello"),
        ConversationTurn(role=Role.MODEL, content=""),
    ]

    step = await completer.complete(history, "again")

    assert step == TextStep(content="Hi")
    assert fake.requests[0]["messages"][1]["content"] == "(empty message)"
