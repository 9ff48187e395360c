"""
Chat service: the request-level flow around the agent loop.

For each message the service tries the cheap paths first (rule matcher, then response cache) and
only then runs :class:`~nextgen.agent.agent_loop.AgentLoop`.  Requests with attachments skip both
fast paths because the files change the effective prompt without changing the cache key.

All long-lived collaborators (tool registry, cache, HTTP clients) are built once by
:func:`build_chat_service` and owned by the serving process.
"""

import functools
import logging
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    List,
    Protocol,
    Sequence,
    Union,
)

from nextgen.agent.agent_loop import (
    AgentLoop,
    CancelCheck,
)
from nextgen.agent.completion import (
    BaseCompleter,
    load_completer,
)
from nextgen.agent.rules import RuleMatcher
from nextgen.config import Settings
from nextgen.core.cache import (
    ResponseCache,
    fingerprint,
)
from nextgen.core.schema import (
    Attachment,
    ConversationTurn,
)
from nextgen.core.streaming import (
    ContentFrame,
    StatusFrame,
)
from nextgen.memory.vector_memory import KnowledgeBase
from nextgen.tools import ToolRegistry
from nextgen.tools.defaults import build_default_registry
from nextgen.tools.search import (
    ImageSearchTool,
    WebSearchTool,
)

logger = logging.getLogger(__name__)

CompleterFactory = Callable[[Union[str, None]], BaseCompleter]


class _Closeable(Protocol):
    def aclose(self) -> Awaitable[None]: ...


class ChatService:
    """Entry point used by the HTTP layer for chat, title and upload requests."""

    def __init__(
        self,
        registry: ToolRegistry,
        cache: ResponseCache,
        loop: AgentLoop,
        completer_factory: CompleterFactory,
        knowledge_base: KnowledgeBase,
        rules: RuleMatcher | None = None,
        closeables: Sequence[_Closeable] = (),
    ):
        self.registry = registry
        self.cache = cache
        self.loop = loop
        self.completer_factory = completer_factory
        self.knowledge_base = knowledge_base
        self.rules = rules
        self._closeables: List[_Closeable] = list(closeables)

    def completer(self, model_id: str | None) -> BaseCompleter:
        """Completer for *model_id* (raises ``ValueError`` for unknown models)."""
        return self.completer_factory(model_id)

    async def stream_reply(
        self,
        completer: BaseCompleter,
        history: Sequence[ConversationTurn],
        message: str,
        attachments: Sequence[Attachment] = (),
        persona: str | None = None,
        is_cancelled: CancelCheck | None = None,
    ) -> AsyncIterator[Union[StatusFrame, ContentFrame]]:
        """Yield the frames answering *message*."""
        cache_key: str | None = None

        if not attachments:
            if self.rules is not None:
                canned = await self.rules.match(message)
                if canned is not None:
                    logger.info("Answered from rules engine")
                    yield ContentFrame(text=canned)
                    return

            cache_key = fingerprint(len(history), message, persona, completer.model_id)
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info("Answered from response cache")
                yield ContentFrame(text=cached)
                return

        images = [attachment for attachment in attachments if attachment.is_image]
        async for frame in self.loop.run(
            completer,
            history,
            message,
            images=images,
            persona=persona,
            cache_key=cache_key,
            is_cancelled=is_cancelled,
        ):
            yield frame

    async def aclose(self) -> None:
        """Release HTTP clients held by tools and rules."""
        for closeable in self._closeables:
            await closeable.aclose()


def build_chat_service(config: Settings) -> ChatService:
    """Construct the process-wide service graph from *config*."""
    knowledge_base = KnowledgeBase(
        collection_name=config.KNOWLEDGE_COLLECTION,
        host=config.VECTOR_DB_HOST,
        port=config.VECTOR_DB_PORT,
    )
    web_search = WebSearchTool(timeout=config.SEARCH_TIMEOUT, max_results=config.SEARCH_MAX_RESULTS)
    image_search = ImageSearchTool(
        timeout=config.SEARCH_TIMEOUT, max_results=config.SEARCH_MAX_RESULTS
    )
    registry = build_default_registry(
        config, knowledge_base, web_search=web_search, image_search=image_search
    )
    cache = ResponseCache(
        default_ttl=config.CACHE_TTL_SECONDS, sweep_threshold=config.CACHE_SWEEP_THRESHOLD
    )
    rules = RuleMatcher(weather_timeout=config.SEARCH_TIMEOUT)
    logger.info("Registered %d tools: %s", len(registry), registry.names())

    return ChatService(
        registry=registry,
        cache=cache,
        loop=AgentLoop(
            registry,
            cache=cache,
            max_depth=config.MAX_TOOL_DEPTH,
            cache_ttl=config.CACHE_TTL_SECONDS,
        ),
        completer_factory=functools.partial(load_completer, registry=registry, config=config),
        knowledge_base=knowledge_base,
        rules=rules,
        closeables=[web_search, image_search, rules],
    )
