"""
Thin wrapper around Chroma for the document knowledge base.

Uploaded documents are split into chunks and each chunk is stored as one document:
  text     = chunk text
  metadata = { "source": str, "chunk": int, "total_chunks": int, "conversation_id": str }
"""

import logging
import os
import uuid
from typing import (
    Any,
    Dict,
    List,
    Sequence,
    cast,
)

import chromadb
from chromadb.api.types import EmbeddingFunction
from chromadb.utils import embedding_functions

logger = logging.getLogger(__name__)

_DEFAULT_EMBED_MODEL = os.getenv("NEXTGEN_EMBED_MODEL", "all-MiniLM-L6-v2")  # small; runs CPU-only
_SEPARATORS = ("\n\n", "\n", ". ", " ")


def split_text(text: str, max_size: int = 1500) -> List[str]:
    """
    Split *text* into chunks of at most *max_size* characters.

    The coarsest separator present in the text is tried first (paragraphs, then lines, sentences
    and words); pieces that are still too long are split again with the finer separators and, as a
    last resort, cut at fixed width.
    """
    return [chunk for chunk in _split(text, max_size, _SEPARATORS) if chunk.strip()]


def _split(text: str, max_size: int, separators: Sequence[str]) -> List[str]:
    if len(text) <= max_size:
        return [text]

    usable = [sep for sep in separators if sep in text]
    if not usable:
        return [text[i : i + max_size] for i in range(0, len(text), max_size)]

    sep, finer = usable[0], usable[1:]
    chunks: List[str] = []
    current = ""
    for part in text.split(sep):
        if len(part) > max_size:
            if current:
                chunks.append(current)
                current = ""
            chunks.extend(_split(part, max_size, finer))
            continue
        candidate = f"{current}{sep}{part}" if current else part
        if len(candidate) > max_size:
            chunks.append(current)
            current = part
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


class KnowledgeBase:
    """
    Chroma wrapper for storing & querying document chunks.

    The Chroma connection is opened on first use so that importing the module (or starting the API
    without a vector DB) does not fail.  Tests may pass a ready *collection*.
    """

    def __init__(
        self,
        collection_name: str = "nextgen_documents",
        host: str = "chroma",  # service name in docker-compose
        port: int = 8000,
        collection: Any = None,
    ):
        self._collection_name = collection_name
        self._host = host
        self._port = port
        self._col = collection

    def _collection(self) -> Any:
        if self._col is None:
            client = chromadb.HttpClient(host=self._host, port=self._port)
            embed_fn: EmbeddingFunction = embedding_functions.SentenceTransformerEmbeddingFunction(
                model_name=_DEFAULT_EMBED_MODEL
            )
            self._col = client.get_or_create_collection(
                name=self._collection_name, embedding_function=cast(EmbeddingFunction, embed_fn)
            )
            logger.info("Connected to knowledge collection '%s'", self._collection_name)
        return self._col

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def add_chunks(self, chunks: Sequence[str], metadata: Dict[str, Any] | None = None) -> int:
        """Store *chunks* with per-chunk position metadata; return how many were stored."""
        if not chunks:
            return 0
        base = dict(metadata or {})
        total = len(chunks)
        self._collection().upsert(
            ids=[str(uuid.uuid4()) for _ in chunks],
            documents=list(chunks),
            metadatas=[{**base, "chunk": i + 1, "total_chunks": total} for i in range(total)],
        )
        return total

    def query(self, text: str, k: int = 5) -> List[str]:
        """Return top-k docs (raw text) similar to `text`."""
        res = self._collection().query(
            query_texts=[text],
            n_results=k,
            include=["documents"],
        )
        logger.debug("Knowledge query results: '%s'", res)
        if res and "documents" in res and res["documents"]:
            return res["documents"][0]  # List[str]
        return []
