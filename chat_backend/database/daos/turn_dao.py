"""
Turn DAO

Purpose
-------
Data-access layer for the `ChatTurn` ORM entity. Provides:
- Turn creation (single and batch)
- Retrieval by conversation in total order ``(created_at, id)``
- Truncation from a position (used by regeneration)
- In-place part replacement and vote updates

Design
------
- Requires an active SQLAlchemy `Session` provided by the caller.
- Keeps business rules (ownership, validation, quota) in higher layers.

Error Handling
--------------
- Methods catch generic `Exception`, log it with `logger.exception(...)`, and re-raise.
"""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, asc, delete, or_
from sqlalchemy.orm import Session

from chat_backend.database.entities.messages import ChatTurn

logger = logging.getLogger(__name__)


class TurnDao:
    """
    Data Access Object (DAO) for managing conversation turns.
    """

    def createTurn(self, session: Session, turn: ChatTurn) -> ChatTurn:
        """Stage a new turn record."""
        try:
            session.add(turn)
            return turn
        except Exception:
            logger.exception("Error in TurnDao.createTurn (id=%s)", turn.id)
            raise

    def createTurns(self, session: Session, turns: list[ChatTurn]) -> list[ChatTurn]:
        """Stage several turns at once (fork copies, NEW commit pairs)."""
        try:
            session.add_all(turns)
            return turns
        except Exception:
            logger.exception("Error in TurnDao.createTurns (%d turns)", len(turns))
            raise

    def fetchTurnById(self, session: Session, conversation_id: UUID, turn_id: UUID) -> ChatTurn | None:
        """Return the turn if it belongs to `conversation_id`, else ``None``."""
        try:
            return (
                session.query(ChatTurn)
                .filter(ChatTurn.id == turn_id, ChatTurn.conversation_id == conversation_id)
                .one_or_none()
            )
        except Exception:
            logger.exception("Error in TurnDao.fetchTurnById (id=%s)", turn_id)
            raise

    def fetchTurnsByConversationId(self, session: Session, conversation_id: UUID) -> list[ChatTurn]:
        """
        Fetch all turns of a conversation in their total order
        (``created_at`` ascending, ties broken by ``id``).
        """
        try:
            return (
                session.query(ChatTurn)
                .filter(ChatTurn.conversation_id == conversation_id)
                .order_by(asc(ChatTurn.created_at), asc(ChatTurn.id))
                .all()
            )
        except Exception:
            logger.exception("Error in TurnDao.fetchTurnsByConversationId (conversation=%s)", conversation_id)
            raise

    def deleteTurnsFrom(
        self,
        session: Session,
        conversation_id: UUID,
        created_at: datetime,
        turn_id: UUID,
        keep_id: UUID | None = None,
    ) -> int:
        """
        Delete every turn ordered at or after ``(created_at, turn_id)``.

        ``keep_id`` exempts one turn from the deletion (the user turn whose
        content is replaced in place).

        Returns
        -------
        int
            Number of deleted rows.
        """
        try:
            condition = and_(
                ChatTurn.conversation_id == conversation_id,
                or_(
                    ChatTurn.created_at > created_at,
                    and_(ChatTurn.created_at == created_at, ChatTurn.id >= turn_id),
                ),
            )
            if keep_id is not None:
                condition = and_(condition, ChatTurn.id != keep_id)
            result = session.execute(delete(ChatTurn).where(condition).execution_options(synchronize_session=False))
            return result.rowcount
        except Exception:
            logger.exception("Error in TurnDao.deleteTurnsFrom (conversation=%s)", conversation_id)
            raise

    def updateTurnParts(self, session: Session, conversation_id: UUID, turn_id: UUID, parts: list[dict]) -> ChatTurn:
        """
        Replace the parts of one turn in place.

        Raises ``NoResultFound`` if the turn doesn't belong to the conversation.
        """
        try:
            turn = (
                session.query(ChatTurn)
                .filter(ChatTurn.id == turn_id, ChatTurn.conversation_id == conversation_id)
                .one()
            )
            turn.set_parts(parts)
            return turn
        except Exception:
            logger.exception("Error in TurnDao.updateTurnParts (id=%s)", turn_id)
            raise

    def updateTurnVote(
        self, session: Session, conversation_id: UUID, turn_id: UUID, is_upvoted: bool, is_downvoted: bool
    ) -> ChatTurn:
        """
        Update the vote flags of a specific turn within a conversation.

        Raises ``NoResultFound`` if the turn doesn't belong to the conversation.
        """
        try:
            turn = (
                session.query(ChatTurn)
                .filter(ChatTurn.id == turn_id, ChatTurn.conversation_id == conversation_id)
                .one()
            )
            turn.is_upvoted = is_upvoted
            turn.is_downvoted = is_downvoted
            return turn
        except Exception:
            logger.exception("Error in TurnDao.updateTurnVote (id=%s)", turn_id)
            raise
