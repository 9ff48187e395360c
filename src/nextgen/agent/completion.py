"""
Completion adapter for NextGen.

This module is the only place that *directly* calls an LLM.  Everything else (agent loop, tools,
memory) stays model-agnostic.

Back-ends are picked from the requested model id:

1. **OpenAI-compatible** chat completions: OpenAI itself, Groq, Google Gemini (through its
   OpenAI-compatible endpoint) and a local Ollama server.
2. **Anthropic** messages API for ``claude-*`` models.

Additional providers can be added by subclassing :class:`BaseCompleter` and registering via
:func:`register_completer`.

Every back-end receives the same normalized history (see :mod:`nextgen.core.history`) and reports
either plain text or the *first* tool call the model asked for.
"""

import json
import logging
import re
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    ClassVar,
    Container,
    Dict,
    List,
    Sequence,
    Type,
)

from nextgen.config import (
    Settings,
    settings,
)
from nextgen.core.history import normalize_history
from nextgen.core.schema import (
    AgentStep,
    Attachment,
    ConversationTurn,
    Role,
    TextStep,
    ToolCallStep,
)
from nextgen.tools import ToolRegistry

logger = logging.getLogger(__name__)


class CompletionError(RuntimeError):
    """Raised when the completion service cannot produce a result (auth, quota, network, ...)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_COMPLETER_REGISTRY: dict[str, Type["BaseCompleter"]] = {}

GROQ_MODEL_ALIASES = {
    "llama3-70b": "llama-3.3-70b-versatile",
    "mixtral-8x7b": "mixtral-8x7b-32768",
    "llama-3-8b": "llama3-8b-8192",
}


def register_completer(name: str) -> Callable:
    """Decorator to register a completer class under *name*."""

    def wrapper(cls: Type["BaseCompleter"]) -> Type["BaseCompleter"]:
        _COMPLETER_REGISTRY[name] = cls
        return cls

    return wrapper


def resolve_provider(model_id: str) -> str:
    """Map a model id from the model selector to a registered provider name."""
    model = model_id.strip().lower()
    if model.startswith("claude"):
        return "anthropic"
    if model.startswith("ollama-"):
        return "ollama"
    if model.startswith("gemini"):
        return "gemini"
    if model.startswith(("gpt", "chatgpt", "o1", "o3", "o4")):
        return "openai"
    if model in GROQ_MODEL_ALIASES or model.startswith(("llama", "mixtral", "gemma", "qwen")):
        return "groq"
    raise ValueError(f"Unknown model '{model_id}'.")


def load_completer(
    model_id: str | None,
    registry: ToolRegistry,
    config: Settings = settings,
) -> "BaseCompleter":
    """
    Factory that returns an instantiated completer.

    Fallback order for the model:
    1. *model_id* arg
    2. ``settings.DEFAULT_MODEL``
    """

    target = model_id or config.DEFAULT_MODEL
    cls = _COMPLETER_REGISTRY.get(resolve_provider(target))
    if cls is None:
        raise ValueError(f"No completer registered for model '{target}'.")
    return cls(model_id=target, registry=registry, config=config)


# ---------------------------------------------------------------------------
# Inline tool-call parsing (models without native function calling)
# ---------------------------------------------------------------------------
def _sanitize_json_string(content: str) -> str:
    """Clean up JSON strings returned by LLMs."""
    # Strip markdown code blocks if present
    if "```" in content:
        match = re.search(r"```(?:json)?\s*(.+?)```", content, re.DOTALL)
        if match:
            content = match.group(1).strip()

    # Remove control characters except whitespace
    content = "".join(ch for ch in content if ch >= " " or ch in "\n\r\t")

    # Find the outermost matching braces
    open_idx = content.find("{")
    if open_idx >= 0:
        brace_count = 0
        for i in range(open_idx, len(content)):
            if content[i] == "{":
                brace_count += 1
            elif content[i] == "}":
                brace_count -= 1
                if brace_count == 0:
                    return content[open_idx : i + 1]
    return content


def extract_inline_tool_call(text: str, known_tools: Container[str]) -> ToolCallStep | None:
    """
    Detect a ``{"tool": "<name>", "args": {...}}`` object in a text answer.

    Returns None for anything that is not valid JSON or names a tool that is not registered
    (hallucinated tools are treated as ordinary text).
    """
    if "{" not in text:
        return None
    try:
        parsed = json.loads(_sanitize_json_string(text))
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict) or not isinstance(parsed.get("tool"), str):
        return None

    name = parsed["tool"]
    if name not in known_tools:
        logger.warning("Hallucinated tool call detected: %s", name)
        return None
    args = parsed.get("args")
    return ToolCallStep(tool_name=name, tool_args=args if isinstance(args, dict) else {})


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseCompleter(ABC):
    """Abstract adapter that converts conversation context -> :data:`AgentStep`."""

    provider: ClassVar[str] = "base"
    native_tools: ClassVar[bool] = True

    # Common system prompt for all completers
    SYSTEM_PROMPT: ClassVar[
        str
    ] = """\
You are NextGen AI, a helpful assistant that can use tools.
- Use a tool only when it is needed; otherwise answer directly.
- If you used generate_image or search_images, you MUST embed the returned image URL in your final \
answer using markdown image syntax: ![description](url).
- If a tool fails or returns nothing, state it briefly and fall back to your general knowledge. \
Never ask the user for clarification because a tool failed.
- Use Markdown lists for structured information.
"""

    INLINE_TOOL_PROMPT: ClassVar[
        str
    ] = """\
When you need to use a tool, respond ONLY with a JSON object and no other text:
{"tool": "<name>", "args": { ... }}
If no tool is needed, respond with a direct text answer.
"""

    def __init__(self, model_id: str, registry: ToolRegistry, config: Settings = settings):
        self.model_id = model_id
        self.registry = registry
        self.config = config

    @property
    def model_name(self) -> str:
        """Model name as the provider expects it."""
        return self.model_id

    def build_system_prompt(self, persona: str | None = None) -> str:
        """System instruction, plus inline tool instructions and persona where needed."""
        prompt = self.SYSTEM_PROMPT

        if not self.native_tools and len(self.registry):
            tools_info = []
            for spec in self.registry.advertisement():
                params = spec["parameters"].get("properties", {})
                param_desc = ", ".join(f"{p}: {info.get('type', 'any')}" for p, info in params.items())
                tools_info.append(f"- {spec['name']}({param_desc}): {spec['description']}")
            prompt += "\n" + self.INLINE_TOOL_PROMPT + "\nAvailable tools:\n" + "\n".join(tools_info)

        if persona:
            prompt += f"\n\n--- PERSONA ---\n{persona}\n---------------"
        return prompt

    async def complete(
        self,
        history: Sequence[ConversationTurn],
        message: str,
        images: Sequence[Attachment] = (),
        persona: str | None = None,
    ) -> AgentStep:
        """
        Ask the model for the next step.

        Raises
        ------
        CompletionError
            On any transport or provider failure.
        """
        turns = normalize_history(history, self.config.MAX_HISTORY_TURNS)
        image_parts = [attachment for attachment in images if attachment.is_image]
        system_prompt = self.build_system_prompt(persona)

        try:
            step = await self._complete(turns, message, image_parts, system_prompt)
        except CompletionError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("%s completion error: %s", self.provider, exc)
            raise CompletionError(
                f"{self.provider} completion failed: {exc}",
                status_code=getattr(exc, "status_code", None),
            ) from exc

        logger.debug("%s completion step: %s", self.provider, step)
        return step

    async def generate(self, prompt: str, max_tokens: int = 20) -> str:
        """Plain single-prompt generation without tools."""
        try:
            return await self._generate(prompt, max_tokens)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("%s generation error: %s", self.provider, exc)
            raise CompletionError(
                f"{self.provider} generation failed: {exc}",
                status_code=getattr(exc, "status_code", None),
            ) from exc

    def _text_step(self, text: str) -> AgentStep:
        """Wrap a text answer, honouring inline tool calls for models without native tools."""
        if not self.native_tools:
            inline = extract_inline_tool_call(text, self.registry)
            if inline is not None:
                return inline
        return TextStep(content=text)

    @abstractmethod
    async def _complete(
        self,
        turns: List[ConversationTurn],
        message: str,
        images: List[Attachment],
        system_prompt: str,
    ) -> AgentStep:
        """Submit to the provider and translate its answer."""

    @abstractmethod
    async def _generate(self, prompt: str, max_tokens: int) -> str:
        """Submit a single prompt and return the text."""


# ---------------------------------------------------------------------------
# Concrete completers
# ---------------------------------------------------------------------------
@register_completer("openai")
class OpenAICompleter(BaseCompleter):
    """OpenAI chat completions with native function calling."""

    provider = "openai"
    base_url: ClassVar[str | None] = None

    def __init__(self, *args: Any, client: Any = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._client = client

    def _api_key(self) -> str | None:
        return self.config.OPENAI_API_KEY

    def _base_url(self) -> str | None:
        return self.base_url

    def client(self) -> Any:
        """Lazily constructed ``openai.AsyncOpenAI`` client."""
        if self._client is None:
            import openai  # pylint: disable=import-outside-toplevel

            self._client = openai.AsyncOpenAI(api_key=self._api_key(), base_url=self._base_url())
        return self._client

    def _messages(
        self, turns: List[ConversationTurn], message: str, images: List[Attachment], system: str
    ) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": system}]
        for turn in turns:
            role = "user" if turn.role == Role.USER else "assistant"
            messages.append({"role": role, "content": turn.content})

        user_content: Any = message
        if images:
            user_content = [{"type": "text", "text": message}] + [
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{image.mime_type};base64,{image.data}"},
                }
                for image in images
            ]
        messages.append({"role": "user", "content": user_content})
        return messages

    def _tools(self) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": spec["name"],
                    "description": spec["description"],
                    "parameters": spec["parameters"],
                },
            }
            for spec in self.registry.advertisement()
        ]

    async def _complete(
        self,
        turns: List[ConversationTurn],
        message: str,
        images: List[Attachment],
        system_prompt: str,
    ) -> AgentStep:
        request: Dict[str, Any] = {
            "model": self.model_name,
            "messages": self._messages(turns, message, images, system_prompt),
            "max_tokens": self.config.MAX_OUTPUT_TOKENS,
            "temperature": 0.7,
        }
        tools = self._tools() if self.native_tools else []
        if tools:
            request["tools"] = tools

        resp = await self.client().chat.completions.create(**request)
        choice = resp.choices[0].message

        if choice.tool_calls:
            if len(choice.tool_calls) > 1:
                logger.info(
                    "Model requested %d tool calls; running only the first", len(choice.tool_calls)
                )
            call = choice.tool_calls[0]
            try:
                args = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning("Malformed arguments for tool '%s': %s", call.function.name, call)
                args = {}
            return ToolCallStep(
                tool_name=call.function.name, tool_args=args if isinstance(args, dict) else {}
            )

        return self._text_step(choice.content or "")

    async def _generate(self, prompt: str, max_tokens: int) -> str:
        resp = await self.client().chat.completions.create(
            model=self.model_name,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
        )
        return resp.choices[0].message.content or ""


@register_completer("groq")
class GroqCompleter(OpenAICompleter):
    """Groq-hosted open models through the OpenAI-compatible API."""

    provider = "groq"
    base_url = "https://api.groq.com/openai/v1"

    def _api_key(self) -> str | None:
        return self.config.GROQ_API_KEY

    @property
    def model_name(self) -> str:
        return GROQ_MODEL_ALIASES.get(self.model_id, self.model_id)


@register_completer("gemini")
class GeminiCompleter(OpenAICompleter):
    """Google Gemini through its OpenAI-compatible endpoint."""

    provider = "gemini"
    base_url = "https://generativelanguage.googleapis.com/v1beta/openai/"

    def _api_key(self) -> str | None:
        return self.config.GEMINI_API_KEY


@register_completer("ollama")
class OllamaCompleter(OpenAICompleter):
    """Local Ollama server; tools are described in the prompt instead of the API."""

    provider = "ollama"
    native_tools = False

    def _api_key(self) -> str | None:
        return "ollama"  # required by the SDK, ignored by Ollama

    def _base_url(self) -> str | None:
        return self.config.OLLAMA_BASE_URL

    @property
    def model_name(self) -> str:
        return self.model_id.removeprefix("ollama-")


@register_completer("anthropic")
class AnthropicCompleter(BaseCompleter):
    """Anthropic Claude messages API with native tool use."""

    provider = "anthropic"

    def __init__(self, *args: Any, client: Any = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._client = client

    def client(self) -> Any:
        """Lazily constructed ``anthropic.AsyncAnthropic`` client."""
        if self._client is None:
            import anthropic  # pylint: disable=import-outside-toplevel

            self._client = anthropic.AsyncAnthropic(api_key=self.config.ANTHROPIC_API_KEY)
        return self._client

    @staticmethod
    def _messages(
        turns: List[ConversationTurn], message: str, images: List[Attachment]
    ) -> List[Dict[str, Any]]:
        # Anthropic rejects empty text blocks
        messages: List[Dict[str, Any]] = [
            {
                "role": "user" if turn.role == Role.USER else "assistant",
                "content": turn.content or "(empty message)",
            }
            for turn in turns
        ]
        content: List[Dict[str, Any]] = [
            {
                "type": "image",
                "source": {"type": "base64", "media_type": image.mime_type, "data": image.data},
            }
            for image in images
        ]
        content.append({"type": "text", "text": message or "(empty message)"})
        messages.append({"role": "user", "content": content})
        return messages

    async def _complete(
        self,
        turns: List[ConversationTurn],
        message: str,
        images: List[Attachment],
        system_prompt: str,
    ) -> AgentStep:
        tools = [
            {
                "name": spec["name"],
                "description": spec["description"],
                "input_schema": spec["parameters"],
            }
            for spec in self.registry.advertisement()
        ]
        request: Dict[str, Any] = {
            "model": self.model_name,
            "max_tokens": self.config.MAX_OUTPUT_TOKENS,
            "system": system_prompt,
            "messages": self._messages(turns, message, images),
            "temperature": 0.7,
        }
        if tools:
            request["tools"] = tools

        response = await self.client().messages.create(**request)

        tool_uses = [block for block in response.content if block.type == "tool_use"]
        if tool_uses:
            block = tool_uses[0]
            return ToolCallStep(tool_name=block.name, tool_args=dict(block.input or {}))

        text = "".join(block.text for block in response.content if block.type == "text")
        return self._text_step(text)

    async def _generate(self, prompt: str, max_tokens: int) -> str:
        response = await self.client().messages.create(
            model=self.model_name,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(block.text for block in response.content if block.type == "text")
