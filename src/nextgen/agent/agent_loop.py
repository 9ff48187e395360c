"""Main orchestration loop for NextGen.

One user message becomes a bounded sequence of completion calls interleaved with tool runs::

    Init -> Awaiting Completion -> (Executing Tool -> Awaiting Completion)* -> Finalizing -> Done

The loop is an async generator of frames: one status frame per tool round, then exactly one
content frame.  It never recurses and never runs more than ``max_depth`` tool rounds, because tool
requests come from a non-deterministic model.
"""

from __future__ import annotations

import json
import logging
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    List,
    Sequence,
    Union,
)

from nextgen.agent.completion import BaseCompleter
from nextgen.agent.tool_executor import (
    ToolExecutionError,
    execute_tool,
)
from nextgen.core.cache import ResponseCache
from nextgen.core.schema import (
    Attachment,
    ConversationTurn,
    Role,
    TextStep,
    ToolCallStep,
)
from nextgen.core.streaming import (
    ContentFrame,
    StatusFrame,
)
from nextgen.tools import ToolRegistry

logger = logging.getLogger(__name__)

CONTINUE_PROMPT = "Continue based on the tool result."
LIMIT_MESSAGE = (
    "I'm sorry, but I've reached a complexity limit while working on this request. "
    "Please try rephrasing it or breaking it into smaller questions."
)
EMPTY_FALLBACK = "I'm sorry, I couldn't generate a response. Please try again."

CancelCheck = Callable[[], Awaitable[bool]]


def friendly_error_message(exc: BaseException) -> str:
    """Turn a provider/transport failure into something a user can read."""
    status = getattr(exc, "status_code", None)
    msg = str(exc)
    lowered = msg.lower()

    if status == 503 or "503" in msg:
        return "I'm receiving a lot of messages right now. Please give me a moment to catch up!"
    if status == 429 or "429" in msg or "quota" in lowered:
        return "Whoa, that's fast! Let me finish my thought first."
    if status in (401, 403) or "api key" in lowered or "api_key" in lowered or "403" in msg:
        return "I'm having trouble connecting to my creative engine. Please try again later."
    if status == 500 or "500" in msg:
        return "Oops, something went wrong on my end. Let's try that again."
    if "connect" in lowered or "network" in lowered or "timed out" in lowered:
        return "I can't seem to reach the internet. Please check your connection."
    return "Something went wrong. Please try again later."


def serialize_tool_result(result: Any) -> str:
    """Render a tool result for the synthetic history turn."""
    return json.dumps(result, ensure_ascii=False, default=str)


class AgentLoop:
    """
    Bounded completion/tool-execution state machine.

    Parameters
    ----------
    registry:
        Tools the model may call.
    cache:
        Where successful answers are stored (optional).
    max_depth:
        Maximum number of tool rounds per request.
    cache_ttl:
        Lifetime of cached answers, in seconds.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        cache: ResponseCache | None = None,
        max_depth: int = 3,
        cache_ttl: float = 60.0,
    ):
        self.registry = registry
        self.cache = cache
        self.max_depth = max_depth
        self.cache_ttl = cache_ttl

    async def run(
        self,
        completer: BaseCompleter,
        history: Sequence[ConversationTurn],
        message: str,
        images: Sequence[Attachment] = (),
        persona: str | None = None,
        cache_key: str | None = None,
        is_cancelled: CancelCheck | None = None,
    ) -> AsyncIterator[Union[StatusFrame, ContentFrame]]:
        """Drive the loop for one request, yielding frames as they are produced."""
        working = self._seed_history(history, message)
        prompt = message
        pending_images: Sequence[Attachment] = images
        depth = 0
        answered = False

        while True:
            if is_cancelled is not None and await is_cancelled():
                logger.info("Request cancelled by client after %d tool rounds", depth)
                return

            try:
                step = await completer.complete(working, prompt, pending_images, persona)
            except Exception as exc:  # pylint: disable=broad-except
                logger.error("Completion failed after %d tool rounds: %s", depth, exc)
                final = friendly_error_message(exc)
                break

            if isinstance(step, TextStep):
                final = step.content
                answered = True
                break

            if depth >= self.max_depth:
                logger.warning(
                    "Tool depth limit (%d) reached; not running '%s'", self.max_depth, step.tool_name
                )
                final = LIMIT_MESSAGE
                break

            yield StatusFrame(text=self._status_text(step))
            result = await self._run_tool(step)
            working.append(
                ConversationTurn(role=Role.MODEL, content=f"Requesting tool: {step.tool_name}")
            )
            working.append(
                ConversationTurn(
                    role=Role.USER,
                    content=f"Tool Result for {step.tool_name}: {serialize_tool_result(result)}",
                )
            )
            depth += 1
            prompt = CONTINUE_PROMPT
            pending_images = ()

        if not final.strip():
            final = EMPTY_FALLBACK
            answered = False

        if answered and cache_key and self.cache is not None:
            self.cache.set(cache_key, final, self.cache_ttl)

        logger.info("Agent loop finished after %d tool rounds (answered=%s)", depth, answered)
        yield ContentFrame(text=final)

    @staticmethod
    def _seed_history(history: Sequence[ConversationTurn], message: str) -> List[ConversationTurn]:
        """Copy *history* and make sure it ends with the current user message."""
        working = list(history)
        last = working[-1] if working else None
        if last is None or last.role != Role.USER or last.content != message:
            working.append(ConversationTurn(role=Role.USER, content=message))
        return working

    def _status_text(self, step: ToolCallStep) -> str:
        descriptor = self.registry.get(step.tool_name)
        if descriptor is None:
            return f"Using tool {step.tool_name}..."
        return descriptor.status_text(step.tool_args)

    async def _run_tool(self, step: ToolCallStep) -> Any:
        try:
            result = await execute_tool(self.registry, step.tool_name, step.tool_args)
        except ToolExecutionError as exc:
            logger.warning("Tool failure: %s", exc)
            return {"error": str(exc)}
        logger.info("Tool '%s' returned: %s", step.tool_name, result)
        return result
