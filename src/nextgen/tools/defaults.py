"""Builds the registry with the standard tool set."""

from nextgen.config import Settings
from nextgen.memory.vector_memory import KnowledgeBase
from nextgen.tools import (
    ToolDescriptor,
    ToolRegistry,
)
from nextgen.tools.calculator import (
    CalculateArgs,
    calculate,
)
from nextgen.tools.images import (
    GenerateImageArgs,
    ImageGenerator,
)
from nextgen.tools.knowledge import (
    IngestDocumentArgs,
    KnowledgeTools,
    SearchKnowledgeArgs,
)
from nextgen.tools.search import (
    ImageSearchTool,
    SearchArgs,
    WebSearchTool,
)


def build_default_registry(
    config: Settings,
    knowledge_base: KnowledgeBase,
    web_search: WebSearchTool | None = None,
    image_search: ImageSearchTool | None = None,
) -> ToolRegistry:
    """Create a registry holding every built-in tool."""
    registry = ToolRegistry()
    web_search = web_search or WebSearchTool(
        timeout=config.SEARCH_TIMEOUT, max_results=config.SEARCH_MAX_RESULTS
    )
    image_search = image_search or ImageSearchTool(
        timeout=config.SEARCH_TIMEOUT, max_results=config.SEARCH_MAX_RESULTS
    )
    knowledge = KnowledgeTools(knowledge_base)

    registry.register(
        ToolDescriptor(
            name="calculate",
            description="Perform a mathematical calculation. Use this for precise math.",
            input_model=CalculateArgs,
            execute=calculate,
            status_template="Calculating {expression}...",
        )
    )
    registry.register(
        ToolDescriptor(
            name="web_search",
            description="Search the web for real-time information, news and facts.",
            input_model=SearchArgs,
            execute=web_search,
            status_template='Searching the web for "{query}"...',
        )
    )
    registry.register(
        ToolDescriptor(
            name="search_images",
            description="Find existing photos or pictures on the web. Returns image URLs.",
            input_model=SearchArgs,
            execute=image_search,
            status_template='Searching images for "{query}"...',
        )
    )
    registry.register(
        ToolDescriptor(
            name="generate_image",
            description="Create a new image from a text description. Returns the image URL.",
            input_model=GenerateImageArgs,
            execute=ImageGenerator(config.POLLINATIONS_API_KEY),
            status_template='Generating image: "{prompt}"...',
        )
    )
    registry.register(
        ToolDescriptor(
            name="search_knowledge",
            description="Search the documents the user uploaded for relevant passages.",
            input_model=SearchKnowledgeArgs,
            execute=knowledge.search,
            status_template='Searching knowledge base for "{query}"...',
        )
    )
    registry.register(
        ToolDescriptor(
            name="ingest_document",
            description="Store a piece of text in the knowledge base so it can be searched later.",
            input_model=IngestDocumentArgs,
            execute=knowledge.ingest,
            status_template='Learning from "{source}"...',
        )
    )
    return registry
