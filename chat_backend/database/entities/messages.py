"""
ChatTurn ORM Model
==================

The ``ChatTurn`` ORM model represents a single committed turn within a
conversation. Each turn is tied to a ``Conversation`` via a foreign key and
stores its ordered content parts as JSON.

Key features
~~~~~~~~~~~~
- UUID primary key (``id``), supplied by the client for user turns
- Foreign key reference to ``conversation.id`` (``conversation_id``)
- ``role`` (``"user"`` | ``"assistant"``) and ``author_id``
- Ordered ``parts`` (list of ``{"type": "text" | "file" | "tool", ...}`` dicts)
- Denormalised ``content`` (concatenated text parts) for listing and search
- Usage metadata (``input_tokens``, ``output_tokens``, ``total_tokens``),
  ``finish_reason`` and ``model``
- Vote flags (``is_upvoted``, ``is_downvoted``)
- Timezone-aware ``created_at`` (UTC)

Ordering
~~~~~~~~
Turns of one conversation are totally ordered by ``(created_at, id)``.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, TEXT, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from chat_backend.database.config.connection_engine import declarativeBase
from chat_backend.database.helpers.clock import utcnow


class ChatTurn(declarativeBase):
    """
    ORM model for the `turn` table.

    Attributes
    ----------
    id : UUID
        Primary key. Unique identifier for the turn.
    conversation_id : UUID
        Foreign key reference to the `conversation` table.
    author_id : UUID | None
        User that authored the turn (``None`` for assistant turns).
    role : str
        ``"user"`` or ``"assistant"``.
    parts : list[dict]
        Ordered content parts, serialized from the API part models.
    content : str
        Text parts joined by blank lines.
    created_at : datetime
        Timestamp defining the order of turns.
    """

    __tablename__ = 'turn'
    __table_args__ = (Index("ix_turn_conversation_order", "conversation_id", "created_at", "id"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    """Primary key. UUID of the turn."""

    conversation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey('conversation.id', ondelete="CASCADE"), nullable=False
    )
    """Foreign key to the conversation this turn belongs to."""

    author_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    role: Mapped[str] = mapped_column(TEXT, nullable=False)
    """Role of the turn author (user or assistant)."""

    parts: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    content: Mapped[str] = mapped_column(TEXT, nullable=False, default="")

    input_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    output_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    finish_reason: Mapped[str | None] = mapped_column(TEXT, nullable=True)
    model: Mapped[str | None] = mapped_column(TEXT, nullable=True)

    is_upvoted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_downvoted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    """Timestamp when the turn was created. Defaults to current UTC time."""

    def __init__(
        self,
        turn_id: UUID,
        conversation_id: UUID,
        role: str,
        parts: list[dict],
        created_at: datetime | str | None = None,
        author_id: UUID | None = None,
        input_tokens: int | None = None,
        output_tokens: int | None = None,
        total_tokens: int | None = None,
        finish_reason: str | None = None,
        model: str | None = None,
        is_upvoted: bool = False,
        is_downvoted: bool = False,
    ):
        """
        Initialize a new ChatTurn object.

        ``content`` is derived from the text parts; ``created_at`` accepts a
        datetime or an ISO8601 string.
        """
        self.id = turn_id
        self.conversation_id = conversation_id
        self.author_id = author_id
        self.role = role
        self.set_parts(parts)
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.total_tokens = total_tokens
        self.finish_reason = finish_reason
        self.model = model
        self.is_upvoted = is_upvoted
        self.is_downvoted = is_downvoted
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        self.created_at = created_at or utcnow()

    def set_parts(self, parts: list[dict]) -> None:
        """Replace the parts and keep ``content`` in sync."""
        self.parts = list(parts)
        self.content = "\n\n".join(p.get("text", "") for p in parts if p.get("type") == "text")

    def __str__(self) -> str:
        return (
            f"Conversation: id:{self.conversation_id}, "
            f"role: {self.role}, "
            f"content: {self.content}, "
            f"time_created: {self.created_at}"
        )
