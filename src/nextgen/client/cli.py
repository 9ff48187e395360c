"""CLI client for NextGen API."""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import (
    Callable,
    Tuple,
)

import httpx

from nextgen.common import (
    AnsiColors,
    colored_print,
)
from nextgen.config import settings
from nextgen.core.schema import Role
from nextgen.core.streaming import (
    NDJSON_MEDIA_TYPE,
    ContentFrame,
    FrameDecoder,
)
from nextgen.memory.memory_store import (
    ConversationStore,
    JsonlConversationStore,
    persist_reply,
)

logger = logging.getLogger(__name__)

IMAGE_COMMAND = "/image"

StatusCallback = Callable[[str], None]


def _show_status(text: str) -> None:
    colored_print(f"\r\033[K⏳ {text}", AnsiColors.GREY, end="", flush=True)


def _show_content(text: str) -> None:
    colored_print(text, AnsiColors.YELLOW, end="", flush=True)


# ---------------------------------------------------------------------------
# Streaming client
# ---------------------------------------------------------------------------
class ChatClient:
    """
    Sends messages to ``/api/chat`` and keeps the conversation in a store.

    The store is the source of truth for history: each request carries the stored turns, and the
    reply is persisted once the stream ends.  If the request is cancelled (Ctrl+C) while streaming,
    the text received so far is persisted with the stopped-by-user annotation.
    """

    def __init__(
        self,
        store: ConversationStore,
        conversation_id: str,
        base_url: str = settings.API_URL,
        model_id: str | None = None,
        encoding: str = "sentinel",
        transport: httpx.AsyncBaseTransport | None = None,
        on_status: StatusCallback = _show_status,
        on_content: StatusCallback = _show_content,
    ):
        self.store = store
        self.conversation_id = conversation_id
        self.base_url = base_url
        self.model_id = model_id
        self.encoding = encoding
        self.transport = transport
        self.on_status = on_status
        self.on_content = on_content

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, transport=self.transport, timeout=120.0)

    async def send(self, message: str) -> str | None:
        """Stream the reply to *message* and return what was persisted."""
        history = await self.store.read(self.conversation_id)
        await self.store.append(self.conversation_id, Role.USER, message)

        payload = {
            "history": [turn.model_dump(mode="json") for turn in history],
            "message": message,
            "modelId": self.model_id,
        }
        accept = NDJSON_MEDIA_TYPE if self.encoding == "ndjson" else "text/plain"
        decoder = FrameDecoder(self.encoding, settings.STATUS_MARKER)
        content: list[str] = []

        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", "/api/chat", json=payload, headers={"Accept": accept}
                ) as response:
                    if response.status_code != 200:
                        body = await response.aread()
                        logger.error("Chat request failed (%d): %s", response.status_code, body)
                        colored_print(f"API error: {body.decode(errors='replace')}", AnsiColors.RED)
                        return None
                    async for chunk in response.aiter_text():
                        self._dispatch(decoder.feed(chunk), content)
            self._dispatch(decoder.flush(), content)
        except asyncio.CancelledError:
            logger.info("Reply cancelled by user after %d chars", len("".join(content)))
            await persist_reply(self.store, self.conversation_id, "".join(content), stopped=True)
            raise

        return await persist_reply(self.store, self.conversation_id, "".join(content))

    def _dispatch(self, frames, content: list[str]) -> None:
        for frame in frames:
            if isinstance(frame, ContentFrame):
                if not content:
                    print("\r\033[K", end="")  # clear the status line
                content.append(frame.text)
                self.on_content(frame.text)
            else:
                self.on_status(frame.text)

    async def image(self, prompt: str) -> str | None:
        """Ask ``/api/image`` for *prompt* and persist the result as a markdown image."""
        await self.store.append(self.conversation_id, Role.USER, f"{IMAGE_COMMAND} {prompt}")
        async with self._client() as client:
            response = await client.post("/api/image", json={"prompt": prompt})
        if response.status_code != 200:
            colored_print(f"API error: {response.text}", AnsiColors.RED)
            return None
        markdown = f"![Generated Image]({response.json()['imageUrl']})"
        self.on_content(markdown)
        return await persist_reply(self.store, self.conversation_id, markdown)

    async def wait_for_api(self, max_retries: int = 5) -> bool:
        """Poll ``/health`` with exponential backoff until the API answers."""
        async with self._client() as client:
            for attempt in range(max_retries):
                try:
                    response = await client.get("/health")
                    if response.status_code == 200:
                        return True
                except httpx.ConnectError:
                    pass
                if attempt < max_retries - 1:
                    retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
                    logger.info(
                        "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                        retry_delay,
                        attempt + 1,
                        max_retries,
                    )
                    await asyncio.sleep(retry_delay)
        return False


# ---------------------------------------------------------------------------
# Interactive shell
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


async def _handle(client: ChatClient, user_msg: str) -> None:
    if user_msg.startswith(IMAGE_COMMAND + " "):
        await client.image(user_msg[len(IMAGE_COMMAND) :].strip())
    else:
        await client.send(user_msg)


def run_cli(model_id: str | None = None, base_url: str = settings.API_URL) -> None:
    """Run the CLI client that communicates with the API."""
    store = JsonlConversationStore(Path(settings.DATA_DIR) / "conversations.jsonl")
    store.init()
    client = ChatClient(store, uuid.uuid4().hex, base_url=base_url, model_id=model_id)

    if not asyncio.run(client.wait_for_api()):
        colored_print("⚠️ Failed to connect to the API", AnsiColors.RED)
        return

    colored_print(
        "\n🚀 NextGen shell - type 'exit' or 'quit' to exit, Ctrl+C stops a reply, "
        f"'{IMAGE_COMMAND} <prompt>' draws",
        AnsiColors.GREEN,
    )
    while True:
        colored_print("\n🧑 You: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
        if user_msg.lower() in {"exit", "quit"}:
            break
        if not user_msg:
            continue

        try:
            asyncio.run(_handle(client, user_msg))
        except KeyboardInterrupt:
            colored_print("\n[stopped]", AnsiColors.RED)
        except httpx.HTTPError as exc:
            logger.error("API request error: %s", exc)
            colored_print(f"Error connecting to API: {exc}", AnsiColors.RED)
        print()


if __name__ == "__main__":
    run_cli()
