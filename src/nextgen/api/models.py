"""
Pydantic models for NextGen API requests and responses.
This module defines the request and response schemas used by the NextGen API.  Field aliases
follow the camelCase names the browser client sends.
"""

from typing import (
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

from nextgen.core.schema import (
    Attachment,
    ConversationTurn,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class ChatRequest(BaseModel):
    """Incoming chat message with its conversation context."""

    model_config = ConfigDict(populate_by_name=True)

    history: List[ConversationTurn] = Field(default_factory=list)
    message: str = Field(..., description="User message for NextGen")
    layers: List[Attachment] = Field(default_factory=list, description="Inline attachments")
    persona: Optional[str] = None
    model_id: Optional[str] = Field(None, alias="modelId")


class TitleRequest(BaseModel):
    """Request a short title for a conversation."""

    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    model_id: Optional[str] = Field(None, alias="modelId")


class TitleResponse(BaseModel):
    """Generated conversation title."""

    title: str


class ImageRequest(BaseModel):
    """Request an image for a prompt."""

    prompt: Optional[str] = None


class ImageResponse(BaseModel):
    """Where the generated image can be fetched."""

    model_config = ConfigDict(populate_by_name=True)

    image_url: str = Field(..., alias="imageUrl")


class UploadRequest(BaseModel):
    """Document to add to the knowledge base."""

    model_config = ConfigDict(populate_by_name=True)

    file_data: Optional[str] = Field(None, alias="fileData")
    file_name: Optional[str] = Field(None, alias="fileName")
    mime_type: str = Field("", alias="mimeType")
    conversation_id: Optional[str] = Field(None, alias="conversationId")


class UploadResponse(BaseModel):
    """Outcome of a document upload."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    chunks_stored: int = Field(..., alias="chunksStored")


class ErrorResponse(BaseModel):
    """Error envelope."""

    error: str
