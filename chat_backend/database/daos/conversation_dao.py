"""
Conversation DAO

Purpose
-------
Provides a thin data-access layer for the `Conversation` ORM entity:
- Create conversations
- Query by id and by owner
- Update `updated_at`, `title` and `visibility`

Design
------
- Requires an active SQLAlchemy `Session` supplied by the caller (no session
  creation inside the DAO). Transaction boundaries live in the store services
  (`@transactional`).
- Owner-restricted updates put the owner in the WHERE clause and return the
  number of affected rows, so a non-owner update is a no-op the caller can detect.

Error Handling
--------------
- Methods catch generic `Exception`, log it with `logger.exception(...)`, and re-raise.
"""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import desc, update
from sqlalchemy.orm import Session

from chat_backend.database.entities.conversations import Conversation

logger = logging.getLogger(__name__)


class ConversationDao:
    """
    Data Access Object (DAO) for managing Conversation entities.
    Provides CRUD operations on the `Conversation` table.
    """

    def createConversation(self, session: Session, conversation: Conversation) -> Conversation:
        """
        Stage a new conversation record and flush it so key conflicts surface here.

        Raises
        ------
        Exception
            If the conversation cannot be created.
        """
        try:
            session.add(conversation)
            session.flush()
            return conversation
        except Exception:
            logger.exception("Error in ConversationDao.createConversation (id=%s)", conversation.id)
            raise

    def fetchConversationById(self, session: Session, conversation_id: UUID) -> Conversation | None:
        """Return the conversation with this id, or ``None``."""
        try:
            return session.get(Conversation, conversation_id)
        except Exception:
            logger.exception("Error in ConversationDao.fetchConversationById (id=%s)", conversation_id)
            raise

    def fetchConversationByOwnerId(self, session: Session, owner_id: UUID) -> list[Conversation]:
        """
        Fetch all conversations belonging to a specific user,
        ordered by most recently updated.
        """
        try:
            return (
                session.query(Conversation)
                .filter(Conversation.owner_id == owner_id)
                .order_by(desc(Conversation.updated_at), desc(Conversation.id))
                .all()
            )
        except Exception:
            logger.exception("Error in ConversationDao.fetchConversationByOwnerId (owner=%s)", owner_id)
            raise

    def updateConversationByDate(self, session: Session, conversation_id: UUID, timestamp: datetime) -> int:
        """
        Update the last updated timestamp of a conversation.

        Returns
        -------
        int
            Number of rows updated.
        """
        try:
            result = session.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(updated_at=timestamp)
            )
            return result.rowcount
        except Exception:
            logger.exception("Error in ConversationDao.updateConversationByDate (id=%s)", conversation_id)
            raise

    def updateConversationTitle(self, session: Session, conversation_id: UUID, owner_id: UUID, title: str) -> int:
        """Rename a conversation; only matches when `owner_id` owns it."""
        try:
            result = session.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id, Conversation.owner_id == owner_id)
                .values(title=title)
            )
            return result.rowcount
        except Exception:
            logger.exception("Error in ConversationDao.updateConversationTitle (id=%s)", conversation_id)
            raise

    def updateConversationVisibility(
        self,
        session: Session,
        conversation_id: UUID,
        owner_id: UUID,
        visibility: str,
        visible_at: datetime | None,
    ) -> int:
        """Change visibility; only matches when `owner_id` owns the conversation."""
        try:
            result = session.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id, Conversation.owner_id == owner_id)
                .values(visibility=visibility, visible_at=visible_at)
            )
            return result.rowcount
        except Exception:
            logger.exception("Error in ConversationDao.updateConversationVisibility (id=%s)", conversation_id)
            raise
