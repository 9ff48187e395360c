"""
Core API backend for NextGen.

This module provides all business logic through a RESTful API that's used by frontends.
It exposes the following endpoints:
- **GET /health**             - liveness probe for health checks.
- **POST /api/chat**          - streamed agent reply: {"history": [...], "message": "...", ...}
- **POST /api/generate-title** - short title for a new conversation.
- **POST /api/image**         - image URL for a prompt.
- **POST /api/upload**        - add a PDF or text document to the knowledge base.
"""

import asyncio
import base64
import binascii
import io
import logging
import re
from contextlib import asynccontextmanager
from typing import (
    AsyncIterator,
)

from fastapi import (
    Depends,
    FastAPI,
    Request,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import (
    JSONResponse,
    StreamingResponse,
)
from pydantic import ValidationError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from nextgen.agent.chat_service import (
    ChatService,
    build_chat_service,
)
from nextgen.agent.completion import CompletionError
from nextgen.api.models import (
    ChatRequest,
    ErrorResponse,
    ImageRequest,
    ImageResponse,
    TitleRequest,
    TitleResponse,
    UploadRequest,
    UploadResponse,
)
from nextgen.common import (
    AnsiColors,
    colored_print,
)
from nextgen.config import settings
from nextgen.core.streaming import (
    encode_stream,
    select_encoder,
)
from nextgen.memory.vector_memory import split_text
from nextgen.tools.images import build_image_url

logger = logging.getLogger(__name__)

MAX_UPLOAD_MB = 10
UPLOAD_CHUNK_SIZE = 1500
_TITLE_QUOTES = re.compile(r"^[\"']|[\"']$")


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(ErrorResponse(error=message).model_dump(), status_code=status_code)


def get_chat_service(request: Request) -> ChatService:
    """FastAPI dependency returning the process-wide chat service."""
    return request.app.state.chat_service


def extract_document_text(data: bytes, mime_type: str) -> str:
    """
    Pull plain text out of an uploaded document.

    Raises
    ------
    ValueError
        If the type is unsupported or the file cannot be read.
    """
    if mime_type == "application/pdf":
        try:
            reader = PdfReader(io.BytesIO(data))
            return "\n\n".join(page.extract_text() or "" for page in reader.pages)
        except PdfReadError as exc:
            raise ValueError(f"Could not read PDF: {exc}") from exc
    if mime_type.startswith("text/"):
        return data.decode("utf-8", errors="replace")
    raise ValueError(
        "Unsupported file type. Only PDF and Text files are supported for document understanding."
    )


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------
def create_app(chat_service: ChatService | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    When *chat_service* is omitted, one is built from settings on startup and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = chat_service is None
        if owned:
            app.state.chat_service = build_chat_service(settings)
        try:
            yield
        finally:
            if owned:
                await app.state.chat_service.aclose()

    app = FastAPI(
        title="NextGen API",
        version="0.1.0",
        description="NextGen AI chat orchestrator API",
        lifespan=lifespan,
    )
    if chat_service is not None:
        app.state.chat_service = chat_service

    # Add CORS middleware to allow requests from the web UI
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------
    @app.get("/health", summary="Health check")
    async def health() -> dict[str, str]:
        """Return a simple liveness payload."""
        return {"status": "ok"}

    @app.post("/api/chat", response_model=None, summary="Stream an agent reply")
    async def chat_endpoint(
        request: Request, service: ChatService = Depends(get_chat_service)
    ) -> StreamingResponse | JSONResponse:
        """Run the agent for one message and stream status and content frames."""
        try:
            req = ChatRequest.model_validate(await request.json())
            completer = service.completer(req.model_id)
        except (ValidationError, ValueError) as exc:
            logger.error("Error processing chat request: %s", exc)
            return _error(500, str(exc) or "Internal Server Error")

        encoder = select_encoder(request.headers.get("accept"), settings.STATUS_MARKER)
        frames = service.stream_reply(
            completer,
            req.history,
            req.message,
            attachments=req.layers,
            persona=req.persona,
            is_cancelled=request.is_disconnected,
        )
        return StreamingResponse(encode_stream(frames, encoder), media_type=encoder.media_type)

    @app.post(
        "/api/generate-title", response_model=TitleResponse, summary="Generate a conversation title"
    )
    async def generate_title(
        req: TitleRequest, service: ChatService = Depends(get_chat_service)
    ) -> TitleResponse | JSONResponse:
        """Ask the model for a 2-4 word title for a conversation starting with *message*."""
        if not req.message:
            return _error(400, "Message is required")

        prompt = (
            "Generate a very short, concise 2 to 4 word title for a chat conversation that starts "
            "with the following message. Do not use quotes, punctuation, or preamble. Just the "
            f'title text. \n\nMessage: "{req.message[:500]}"'
        )
        try:
            title = await service.completer(req.model_id).generate(prompt, max_tokens=20)
        except (CompletionError, ValueError) as exc:
            logger.error("Error generating title: %s", exc)
            return _error(500, "Failed to generate title")

        title = _TITLE_QUOTES.sub("", title.strip())
        if not title:
            title = req.message[:30] + "..."
        return TitleResponse(title=title)

    @app.post("/api/image", response_model=ImageResponse, summary="Generate an image URL")
    async def image_endpoint(req: ImageRequest) -> ImageResponse | JSONResponse:
        """Return the Pollinations URL rendering *prompt*."""
        if not req.prompt or not req.prompt.strip():
            return _error(400, "Prompt is required")
        return ImageResponse(image_url=build_image_url(req.prompt, settings.POLLINATIONS_API_KEY))

    @app.post("/api/upload", response_model=UploadResponse, summary="Learn a document")
    async def upload_endpoint(
        req: UploadRequest, service: ChatService = Depends(get_chat_service)
    ) -> UploadResponse | JSONResponse:
        """Extract text from an uploaded file and store it in the knowledge base."""
        if not req.file_data or not req.file_name:
            return _error(400, "Missing file data")

        # base64 is ~1.37x larger than the decoded file
        approx_mb = (len(req.file_data) * 0.75) / (1024 * 1024)
        if approx_mb > MAX_UPLOAD_MB:
            return _error(400, f"File size too large. Maximum limit is {MAX_UPLOAD_MB}MB.")

        try:
            raw = base64.b64decode(req.file_data, validate=True)
            text = extract_document_text(raw, req.mime_type)
        except (binascii.Error, ValueError) as exc:
            return _error(400, str(exc))

        if not text.strip():
            return _error(400, "Could not extract text from document.")

        chunks = split_text(text, UPLOAD_CHUNK_SIZE)
        metadata = {"source": req.file_name, "conversation_id": req.conversation_id or "global"}
        try:
            stored = await asyncio.to_thread(service.knowledge_base.add_chunks, chunks, metadata)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Upload of '%s' failed", req.file_name)
            return _error(500, str(exc) or "Internal Server Error")

        return UploadResponse(
            success=True,
            message=f"Document processed and learned. Extracted {stored} chunks.",
            chunks_stored=stored,
        )

    @app.get("/", summary="API root")
    async def root() -> dict[str, str]:
        """Return a simple welcome message."""
        return {"message": "Welcome to the NextGen API! Use /docs for API documentation."}

    return app


app = create_app()


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in dev docker-compose).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting NextGen API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    logger.debug("API settings: %s", settings.model_dump())

    colored_print(f"🚀 NextGen API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "nextgen.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m nextgen.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
