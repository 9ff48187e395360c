"""
Streaming response channel.

A chat reply travels as an ordered sequence of typed frames:

- **status** frames carry transient "agent is working" text (never persisted);
- **content** frames carry the answer text, appended verbatim by the client.

Two wire encodings are supported.  The *sentinel* encoding is line oriented plain text: a status
frame is ``<MARKER>:<text>\\n`` and anything else is content.  The *ndjson* encoding writes one JSON
object per line with an explicit ``type`` discriminator.  Both preserve emission order.
"""

import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Annotated,
    AsyncIterator,
    ClassVar,
    List,
    Literal,
    Union,
)

from pydantic import (
    BaseModel,
    Field,
    TypeAdapter,
)

from nextgen.common import one_line

logger = logging.getLogger(__name__)

DEFAULT_MARKER = "__AGENT_ACTION__"
NDJSON_MEDIA_TYPE = "application/x-ndjson"
STREAM_ERROR_TEXT = "Something went wrong while generating the response. Please try again."


class StatusFrame(BaseModel):
    """Transient progress indicator."""

    type: Literal["status"] = "status"
    text: str


class ContentFrame(BaseModel):
    """Part of the final answer."""

    type: Literal["content"] = "content"
    text: str


Frame = Annotated[Union[StatusFrame, ContentFrame], Field(discriminator="type")]
_FRAME_ADAPTER: TypeAdapter = TypeAdapter(Frame)


# ---------------------------------------------------------------------------
# Encoders
# ---------------------------------------------------------------------------
class FrameEncoder(ABC):
    """Turns frames into response body bytes."""

    name: ClassVar[str]
    media_type: ClassVar[str]

    @abstractmethod
    def encode(self, frame: Union[StatusFrame, ContentFrame]) -> bytes:
        """Serialize a single frame."""


class SentinelEncoder(FrameEncoder):
    """Plain-text encoding with marker-prefixed status lines."""

    name = "sentinel"
    media_type = "text/plain; charset=utf-8"

    def __init__(self, marker: str = DEFAULT_MARKER):
        self.marker = marker

    def encode(self, frame: Union[StatusFrame, ContentFrame]) -> bytes:
        if isinstance(frame, StatusFrame):
            return f"{self.marker}:{one_line(frame.text, limit=200)}\n".encode("utf-8")
        return frame.text.encode("utf-8")


class NdjsonEncoder(FrameEncoder):
    """One JSON frame per line."""

    name = "ndjson"
    media_type = NDJSON_MEDIA_TYPE

    def encode(self, frame: Union[StatusFrame, ContentFrame]) -> bytes:
        return (frame.model_dump_json() + "\n").encode("utf-8")


def select_encoder(accept: str | None, marker: str = DEFAULT_MARKER) -> FrameEncoder:
    """Pick the wire encoding from an HTTP ``Accept`` header (sentinel unless ndjson is asked for)."""
    if accept and NDJSON_MEDIA_TYPE in accept:
        return NdjsonEncoder()
    return SentinelEncoder(marker)


async def encode_stream(
    frames: AsyncIterator[Union[StatusFrame, ContentFrame]],
    encoder: FrameEncoder,
    error_text: str = STREAM_ERROR_TEXT,
) -> AsyncIterator[bytes]:
    """
    Encode *frames* in order.

    Status frames produced after the first content frame are dropped.  If the producer fails before
    any content was written, a final content frame with *error_text* is still emitted so the client
    always has something to render.
    """
    content_sent = False
    try:
        async for frame in frames:
            if isinstance(frame, ContentFrame):
                content_sent = True
            elif content_sent:
                logger.warning("Dropping status frame emitted after content: %s", frame.text)
                continue
            yield encoder.encode(frame)
    except Exception:  # pylint: disable=broad-except
        logger.exception("Response stream producer failed")
        if not content_sent:
            yield encoder.encode(ContentFrame(text=error_text))


# ---------------------------------------------------------------------------
# Decoder (client side)
# ---------------------------------------------------------------------------
class FrameDecoder:
    """
    Incremental decoder that rebuilds frames from arbitrarily split text chunks.

    Parameters
    ----------
    encoding:
        ``"sentinel"`` or ``"ndjson"``.
    marker:
        Status marker used by the sentinel encoding.
    """

    def __init__(self, encoding: str = "sentinel", marker: str = DEFAULT_MARKER):
        if encoding not in {"sentinel", "ndjson"}:
            raise ValueError(f"Unknown frame encoding '{encoding}'")
        self.encoding = encoding
        self._prefix = f"{marker}:"
        self._buffer = ""
        self._at_line_start = True

    def feed(self, chunk: str) -> List[Union[StatusFrame, ContentFrame]]:
        """Consume *chunk* and return every frame that is now complete."""
        self._buffer += chunk
        if self.encoding == "ndjson":
            return self._drain_ndjson()
        return self._drain_sentinel()

    def flush(self) -> List[Union[StatusFrame, ContentFrame]]:
        """Return whatever is left once the stream has ended."""
        rest, self._buffer = self._buffer, ""
        if not rest:
            return []
        if self.encoding == "ndjson":
            return [_FRAME_ADAPTER.validate_json(rest)] if rest.strip() else []
        if self._at_line_start and rest.startswith(self._prefix):
            return [StatusFrame(text=rest[len(self._prefix) :])]
        return [ContentFrame(text=rest)]

    def _drain_ndjson(self) -> List[Union[StatusFrame, ContentFrame]]:
        frames: List[Union[StatusFrame, ContentFrame]] = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            if line.strip():
                frames.append(_FRAME_ADAPTER.validate_json(line))
        return frames

    def _drain_sentinel(self) -> List[Union[StatusFrame, ContentFrame]]:
        frames: List[Union[StatusFrame, ContentFrame]] = []
        while self._buffer:
            if self._at_line_start:
                if self._buffer.startswith(self._prefix):
                    end = self._buffer.find("\n")
                    if end < 0:
                        break  # status line not finished yet
                    frames.append(StatusFrame(text=self._buffer[len(self._prefix) : end]))
                    self._buffer = self._buffer[end + 1 :]
                    continue
                if self._prefix.startswith(self._buffer):
                    break  # may still turn into a status line
            end = self._buffer.find("\n")
            if end < 0:
                text, self._buffer = self._buffer, ""
                self._at_line_start = False
            else:
                text, self._buffer = self._buffer[: end + 1], self._buffer[end + 1 :]
                self._at_line_start = True
            frames.append(ContentFrame(text=text))
        return frames
