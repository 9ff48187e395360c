"""Knowledge-base tools: similarity search over uploaded documents and ingestion of new text."""

import asyncio
import logging
from typing import (
    Any,
    Dict,
)

from pydantic import (
    BaseModel,
    Field,
)

from nextgen.memory.vector_memory import (
    KnowledgeBase,
    split_text,
)

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1500


class SearchKnowledgeArgs(BaseModel):
    """Arguments for ``search_knowledge``."""

    query: str = Field(..., min_length=1, description="What to look up in the uploaded documents")
    limit: int = Field(5, ge=1, le=20, description="Maximum number of passages")


class IngestDocumentArgs(BaseModel):
    """Arguments for ``ingest_document``."""

    content: str = Field(..., min_length=1, description="Text to remember")
    source: str = Field("conversation", description="Where the text came from")


class KnowledgeTools:
    """Binds the knowledge tools to one :class:`KnowledgeBase`."""

    def __init__(self, knowledge_base: KnowledgeBase):
        self.knowledge_base = knowledge_base

    async def search(self, args: SearchKnowledgeArgs) -> Dict[str, Any]:
        """Return the best matching passages concatenated into one string."""
        try:
            documents = await asyncio.to_thread(self.knowledge_base.query, args.query, args.limit)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Knowledge search failed: %s", exc)
            return {"error": f"Knowledge base is unavailable: {exc}"}

        if not documents:
            return {"error": f'No documents in the knowledge base matched "{args.query}".'}
        return {"documents": "\n\n---\n\n".join(documents)}

    async def ingest(self, args: IngestDocumentArgs) -> Dict[str, Any]:
        """Chunk *content* and store it in the knowledge base."""
        chunks = split_text(args.content, CHUNK_SIZE)
        try:
            stored = await asyncio.to_thread(
                self.knowledge_base.add_chunks, chunks, {"source": args.source}
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Knowledge ingestion failed: %s", exc)
            return {"error": f"Could not store the document: {exc}"}
        return {"status": "stored", "chunks": stored}
