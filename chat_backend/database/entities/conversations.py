"""
Conversation ORM Model
=======================

The ``Conversation`` ORM model represents an owned conversation record stored
in the ``conversation`` table. It is implemented with SQLAlchemy 2.0-style
typing and the portable ``Uuid`` column type (native UUID on PostgreSQL,
CHAR(32) on SQLite).

Key features
~~~~~~~~~~~~
- UUID primary key (``id``), immutable once created
- Owner identifier (``owner_id``); identity lives in an external service so
  there is no foreign key
- Human-readable ``title``
- ``visibility`` (``"private"`` | ``"public"``); only the owner may change it
- Timezone-aware ``created_at`` / ``updated_at`` / ``visible_at`` timestamps (UTC)

Integration notes
~~~~~~~~~~~~~~~~~
- ``updated_at`` is bumped by ``ChatStore`` after every committed turn.
- Non-owners never mutate a conversation; continuing somebody else's public
  conversation forks it into a new row.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, TEXT, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from chat_backend.database.config.connection_engine import declarativeBase
from chat_backend.database.helpers.clock import utcnow


class Conversation(declarativeBase):
    """
    ORM model for the `conversation` table.

    Attributes
    ----------
    id : UUID
        Primary key. Unique identifier for the conversation.
    owner_id : UUID
        The user that created (or forked) the conversation.
    title : str
        Human-readable title of the conversation.
    visibility : str
        ``"private"`` or ``"public"``.
    created_at, updated_at : datetime
        Creation time and time of the last committed turn (UTC).
    visible_at : datetime | None
        When the conversation was last made public.
    """

    __tablename__ = 'conversation'

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    """Primary key. UUID of the conversation."""

    owner_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    """Owner of the conversation."""

    title: Mapped[str] = mapped_column(TEXT, nullable=False)
    """Title of the conversation (cannot be null)."""

    visibility: Mapped[str] = mapped_column(TEXT, nullable=False, default="private")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    """Timestamp when the conversation was last updated (UTC)."""

    visible_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __init__(
        self,
        conversation_id: UUID,
        owner_id: UUID,
        title: str,
        visibility: str = "private",
        created_at: datetime | str | None = None,
        visible_at: datetime | None = None,
    ):
        """
        Initialize a new Conversation object.

        ``created_at`` accepts a datetime or an ISO8601 string and defaults to now;
        ``updated_at`` starts equal to it.
        """
        self.id = conversation_id
        self.owner_id = owner_id
        self.title = title
        self.visibility = visibility
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        self.created_at = created_at or utcnow()
        self.updated_at = self.created_at
        self.visible_at = visible_at

    def __str__(self) -> str:
        return (
            f"Conversation: id:{self.id}, owner: {self.owner_id}, title: {self.title}, "
            f"visibility: {self.visibility}, updated: {self.updated_at}"
        )
