"""
Pydantic models used for request/response validation and API data contracts.

Each class defines the structure of data expected in API endpoints, ensuring
validation and automatic OpenAPI schema generation. Turn content is a tagged
union of parts discriminated by ``type``; unknown tags are rejected at the
request boundary.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class Visibility(str, Enum):
    """Who may read a conversation."""
    PRIVATE = "private"
    PUBLIC = "public"


class Role(str, Enum):
    """Author role of a turn."""
    USER = "user"
    ASSISTANT = "assistant"


class Trigger(str, Enum):
    """Why the chat endpoint was invoked."""
    NEW = "NEW"
    REGENERATE = "REGENERATE"


class UserRole(str, Enum):
    """Identity role; selects the quota entitlements."""
    GUEST = "guest"
    USER = "user"
    ADMIN = "admin"


class QuotaResource(str, Enum):
    MESSAGES = "messages"
    TOKENS = "tokens"
    FILES = "files"


# --------------------------------------------------------------------
# Turn parts
# --------------------------------------------------------------------

class TextPart(BaseModel):
    """Plain text content."""
    type: Literal["text"] = "text"
    text: str


class FilePart(BaseModel):
    """Reference to an object in storage (uploaded by the user or generated by a tool)."""
    type: Literal["file"] = "file"
    media_type: str = Field(..., description="MIME type of the file.", examples=["application/pdf"])
    url: str = Field(..., description="Public URL of the stored object.")
    name: str = Field(..., description="Original filename as provided by the client.", examples=["report.pdf"])
    file_id: str | None = Field(None, description="Storage identifier appended to the object key.")
    generated: bool = Field(False, description="True when the file was produced by a tool, not uploaded.")


class ToolPart(BaseModel):
    """A tool invocation made by the model and its result."""
    type: Literal["tool"] = "tool"
    tool_name: str
    tool_call_id: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: Any = None


Part = Annotated[Union[TextPart, FilePart, ToolPart], Field(discriminator="type")]
"""Tagged union of turn parts."""


class InboundTurn(BaseModel):
    """The user turn carried by a chat request."""
    id: UUID
    role: Role = Role.USER
    parts: list[Part] = Field(default_factory=list)


class ChatPreferences(BaseModel):
    """
    Per-user preferences folded into the system prompt.
    """
    personality: str | None = Field(None, examples=["FRIENDLY"])
    """Personality id (see ``prompt_utilities.AI_PERSONALITIES``)."""
    characteristics: list[str] = Field(default_factory=list, examples=[["GEN_Z", "DIRECT"]])
    nickname: str | None = None
    occupation: str | None = None
    extra_info: str | None = None


class ChatRequest(BaseModel):
    """
    Body of ``POST /chat``.
    """
    conversation_id: UUID
    """The conversation the turn is addressed to (created when it doesn't exist)."""
    fork_target_id: UUID | None = None
    """Id for the forked copy when continuing somebody else's public conversation."""
    inbound_turn: InboundTurn
    trigger: Trigger = Trigger.NEW
    regenerate_target_turn_id: UUID | None = None
    """First turn to supersede when ``trigger`` is ``REGENERATE``."""
    regenerated_role: Role | None = None
    preferences: ChatPreferences | None = None

    @model_validator(mode="after")
    def _check_regenerate(self):
        if self.trigger == Trigger.REGENERATE:
            if self.regenerate_target_turn_id is None:
                raise ValueError("regenerate_target_turn_id is required for REGENERATE")
            if self.regenerated_role is None:
                self.regenerated_role = Role.ASSISTANT
        return self


# --------------------------------------------------------------------
# Persisted records
# --------------------------------------------------------------------

class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class TurnRecord(BaseModel):
    """A committed turn as returned by the store."""
    id: UUID
    conversation_id: UUID
    author_id: UUID | None = None
    role: Role
    parts: list[Part]
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    finish_reason: str | None = None
    model: str | None = None
    is_upvoted: bool = False
    is_downvoted: bool = False
    created_at: datetime


class ConversationRecord(BaseModel):
    """A conversation as returned by the store."""
    id: UUID
    owner_id: UUID
    title: str
    visibility: Visibility
    created_at: datetime
    updated_at: datetime
    visible_at: datetime | None = None


class UpdateTitle(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)


class UpdateVisibility(BaseModel):
    visibility: Visibility


class TurnVote(BaseModel):
    """Vote on an assistant turn; ``None`` clears the vote."""
    vote: Literal["up", "down"] | None = None


class QuotaDecision(BaseModel):
    """Result of an admission check for one resource."""
    allowed: bool
    resource: QuotaResource
    counter: int
    limit: int
    period_end: datetime | None = None
    reason: str | None = None


class QuotaUsage(BaseModel):
    """Snapshot of one quota counter for ``GET /quota`` and the finish frame."""
    resource: QuotaResource
    used: int
    limit: int
    period_end: datetime | None = None
    is_over_limit: bool = False
