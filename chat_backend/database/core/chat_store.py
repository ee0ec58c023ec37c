"""
Service-layer operations for conversations and turns.

Every public method is wrapped with the `@transactional` decorator, which
manages SQLAlchemy sessions and transactions automatically; each method
receives an injected `session: Session`. Methods that write several rows
(fork copies, NEW commits, regeneration) therefore commit or roll back as one
unit.

Rows never leave this module: callers get `ConversationRecord` / `TurnRecord`
pydantic models.
"""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from chat_backend.api.models import ConversationRecord, Role, TurnRecord, Visibility
from chat_backend.database.daos.conversation_dao import ConversationDao
from chat_backend.database.daos.turn_dao import TurnDao
from chat_backend.database.entities.conversations import Conversation
from chat_backend.database.entities.messages import ChatTurn
from chat_backend.database.helpers.clock import as_utc, utcnow
from chat_backend.database.helpers.transactionManagement import transactional
from chat_backend.orchestrator.errors import AccessDenied, NotFound

logger = logging.getLogger(__name__)


def conversation_record(row: Conversation) -> ConversationRecord:
    return ConversationRecord(
        id=row.id,
        owner_id=row.owner_id,
        title=row.title,
        visibility=Visibility(row.visibility),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        visible_at=as_utc(row.visible_at),
    )


def turn_record(row: ChatTurn) -> TurnRecord:
    return TurnRecord(
        id=row.id,
        conversation_id=row.conversation_id,
        author_id=row.author_id,
        role=Role(row.role),
        parts=row.parts,
        input_tokens=row.input_tokens,
        output_tokens=row.output_tokens,
        total_tokens=row.total_tokens,
        finish_reason=row.finish_reason,
        model=row.model,
        is_upvoted=row.is_upvoted,
        is_downvoted=row.is_downvoted,
        created_at=as_utc(row.created_at),
    )


def turn_row(record: TurnRecord) -> ChatTurn:
    return ChatTurn(
        turn_id=record.id,
        conversation_id=record.conversation_id,
        role=record.role.value,
        parts=[part.model_dump(mode="json") for part in record.parts],
        created_at=as_utc(record.created_at),
        author_id=record.author_id,
        input_tokens=record.input_tokens,
        output_tokens=record.output_tokens,
        total_tokens=record.total_tokens,
        finish_reason=record.finish_reason,
        model=record.model,
        is_upvoted=record.is_upvoted,
        is_downvoted=record.is_downvoted,
    )


class ChatStore:
    """
    Persistent store for conversations and their turns.

    Parameters
    ----------
    session_factory : sessionmaker
        Factory used by `@transactional` when no session is active.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self.conversation_dao = ConversationDao()
        self.turn_dao = TurnDao()

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    @transactional
    def get_conversation(self, conversation_id: UUID, session: Session = None) -> ConversationRecord | None:
        row = self.conversation_dao.fetchConversationById(session, conversation_id)
        return conversation_record(row) if row else None

    @transactional
    def create_conversation(
        self, conversation_id: UUID, owner_id: UUID, title: str, session: Session = None
    ) -> ConversationRecord:
        """
        Insert a new private conversation owned by `owner_id`.

        Raises
        ------
        sqlalchemy.exc.IntegrityError
            If the id is already taken.
        """
        row = Conversation(conversation_id=conversation_id, owner_id=owner_id, title=title)
        self.conversation_dao.createConversation(session, row)
        logger.info("Created conversation %s for %s", conversation_id, owner_id)
        return conversation_record(row)

    @transactional
    def list_conversations(self, owner_id: UUID, session: Session = None) -> list[ConversationRecord]:
        """Conversations owned by `owner_id`, most recently updated first."""
        rows = self.conversation_dao.fetchConversationByOwnerId(session, owner_id)
        return [conversation_record(row) for row in rows]

    @transactional
    def update_title(self, conversation_id: UUID, owner_id: UUID, title: str, session: Session = None) -> ConversationRecord:
        self._require_owner(session, conversation_id, owner_id)
        self.conversation_dao.updateConversationTitle(session, conversation_id, owner_id, title)
        return conversation_record(self.conversation_dao.fetchConversationById(session, conversation_id))

    @transactional
    def update_visibility(
        self, conversation_id: UUID, owner_id: UUID, visibility: Visibility, session: Session = None
    ) -> ConversationRecord:
        """Change visibility; `visible_at` is stamped each time it becomes public and cleared otherwise."""
        self._require_owner(session, conversation_id, owner_id)
        visible_at = utcnow() if visibility == Visibility.PUBLIC else None
        self.conversation_dao.updateConversationVisibility(
            session, conversation_id, owner_id, visibility.value, visible_at
        )
        return conversation_record(self.conversation_dao.fetchConversationById(session, conversation_id))

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    @transactional
    def get_turns(self, conversation_id: UUID, session: Session = None) -> list[TurnRecord]:
        """All turns of the conversation ordered by ``(created_at, id)``."""
        rows = self.turn_dao.fetchTurnsByConversationId(session, conversation_id)
        return [turn_record(row) for row in rows]

    @transactional
    def get_turn(self, conversation_id: UUID, turn_id: UUID, session: Session = None) -> TurnRecord | None:
        row = self.turn_dao.fetchTurnById(session, conversation_id, turn_id)
        return turn_record(row) if row else None

    @transactional
    def get_snapshot(
        self, conversation_id: UUID, session: Session = None
    ) -> tuple[ConversationRecord | None, list[TurnRecord]]:
        """Conversation and its ordered turns read within one transaction."""
        row = self.conversation_dao.fetchConversationById(session, conversation_id)
        if row is None:
            return None, []
        turns = self.turn_dao.fetchTurnsByConversationId(session, conversation_id)
        return conversation_record(row), [turn_record(turn) for turn in turns]

    @transactional
    def insert_fork(
        self, conversation: ConversationRecord, turns: list[TurnRecord], session: Session = None
    ) -> ConversationRecord:
        """Insert a forked conversation together with all of its copied turns."""
        row = Conversation(
            conversation_id=conversation.id,
            owner_id=conversation.owner_id,
            title=conversation.title,
            visibility=conversation.visibility.value,
            created_at=conversation.created_at,
        )
        row.updated_at = conversation.updated_at
        self.conversation_dao.createConversation(session, row)
        self.turn_dao.createTurns(session, [turn_row(turn) for turn in turns])
        logger.info("Forked conversation %s with %d turns", conversation.id, len(turns))
        return conversation_record(row)

    @transactional
    def commit_new(
        self, conversation_id: UUID, owner_id: UUID, turns: list[TurnRecord], session: Session = None
    ) -> list[TurnRecord]:
        """
        Append `turns` (user turn then assistant turn) and bump `updated_at`.

        Raises
        ------
        NotFound
            The conversation no longer exists.
        AccessDenied
            `owner_id` doesn't own the conversation.
        """
        self._require_owner(session, conversation_id, owner_id)
        self.turn_dao.createTurns(session, [turn_row(turn) for turn in turns])
        self.conversation_dao.updateConversationByDate(session, conversation_id, utcnow())
        return turns

    @transactional
    def commit_regenerate(
        self,
        conversation_id: UUID,
        owner_id: UUID,
        target_turn_id: UUID,
        assistant_turn: TurnRecord,
        replaced_user_turn: TurnRecord | None = None,
        session: Session = None,
    ) -> list[TurnRecord]:
        """
        Truncate from `target_turn_id` (inclusive) and append the regenerated turn.

        When `replaced_user_turn` is given, that turn survives the truncation and
        its parts are replaced in place (it is inserted if it was never stored).

        Returns
        -------
        list[TurnRecord]
            The turns written: the replaced user turn (if any) and the assistant turn.
        """
        self._require_owner(session, conversation_id, owner_id)
        target = self.turn_dao.fetchTurnById(session, conversation_id, target_turn_id)
        if target is None:
            raise NotFound(f"turn {target_turn_id} not found in conversation {conversation_id}")

        keep_id = replaced_user_turn.id if replaced_user_turn else None
        deleted = self.turn_dao.deleteTurnsFrom(
            session, conversation_id, target.created_at, target.id, keep_id=keep_id
        )
        session.expire_all()

        written = []
        if replaced_user_turn is not None:
            parts = [part.model_dump(mode="json") for part in replaced_user_turn.parts]
            existing = self.turn_dao.fetchTurnById(session, conversation_id, replaced_user_turn.id)
            if existing is None:
                self.turn_dao.createTurn(session, turn_row(replaced_user_turn))
                written.append(replaced_user_turn)
            else:
                row = self.turn_dao.updateTurnParts(session, conversation_id, replaced_user_turn.id, parts)
                session.flush()
                written.append(turn_record(row))

        self.turn_dao.createTurn(session, turn_row(assistant_turn))
        written.append(assistant_turn)
        self.conversation_dao.updateConversationByDate(session, conversation_id, utcnow())
        logger.info("Regenerated conversation %s from turn %s (%d superseded)", conversation_id, target_turn_id, deleted)
        return written

    @transactional
    def vote_turn(
        self,
        conversation_id: UUID,
        owner_id: UUID,
        turn_id: UUID,
        vote: str | None,
        session: Session = None,
    ) -> TurnRecord:
        """Set or clear the vote on a turn; upvote and downvote are exclusive."""
        self._require_owner(session, conversation_id, owner_id)
        if self.turn_dao.fetchTurnById(session, conversation_id, turn_id) is None:
            raise NotFound(f"turn {turn_id} not found in conversation {conversation_id}")
        row = self.turn_dao.updateTurnVote(
            session, conversation_id, turn_id, is_upvoted=vote == "up", is_downvoted=vote == "down"
        )
        return turn_record(row)

    def _require_owner(self, session: Session, conversation_id: UUID, owner_id: UUID) -> Conversation:
        row = self.conversation_dao.fetchConversationById(session, conversation_id)
        if row is None:
            raise NotFound(f"conversation {conversation_id} not found")
        if row.owner_id != owner_id:
            raise AccessDenied("only the owner can modify this conversation")
        return row
