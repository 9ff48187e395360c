"""
Schema definitions for completion <-> agent <-> tool messages.

These data models serve as the contract between the completion adapter, the orchestration loop, and
individual tools.  We keep them separate from runtime logic so they can be imported anywhere without
side-effects.
"""

from enum import Enum
from typing import (
    Annotated,
    Any,
    Dict,
    Literal,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


class Role(str, Enum):
    """Author of a conversation turn."""

    USER = "user"
    MODEL = "model"


class ConversationTurn(BaseModel):
    """One role-tagged message in a conversation history."""

    role: Role
    content: str = ""


class Attachment(BaseModel):
    """Inline file sent along with a message (images are forwarded to the model)."""

    model_config = ConfigDict(populate_by_name=True)

    mime_type: str = Field(..., alias="mimeType")
    data: str = Field(..., description="Base64 encoded payload")
    name: str | None = None

    @property
    def is_image(self) -> bool:
        """True when the attachment is an image the model can look at."""
        return self.mime_type.startswith("image/")


class TextStep(BaseModel):
    """The model answered with plain text."""

    kind: Literal["text"] = "text"
    content: str


class ToolCallStep(BaseModel):
    """The model asked for a tool to be run."""

    kind: Literal["tool_call"] = "tool_call"
    tool_name: str
    tool_args: Dict[str, Any] = Field(default_factory=dict)


AgentStep = Annotated[Union[TextStep, ToolCallStep], Field(discriminator="kind")]
"""Result of one completion call."""
