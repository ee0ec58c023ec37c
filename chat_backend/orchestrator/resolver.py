"""
Conversation resolution: decides which conversation an inbound turn is
written to.

Rules, applied in order:

1. Unknown id: create it, owned by the caller, titled from the message.
2. Caller owns it: use it.
3. Someone else's private conversation: ``AccessDenied``.
4. Someone else's public conversation, trigger ``NEW`` and a distinct
   ``fork_target_id``: fork it into a new private conversation owned by the
   caller (turns copied in order, files duplicated into the caller's namespace).
5. Otherwise: the existing conversation, flagged ``read_only``.

Resolution runs in two steps. ``plan`` only reads and raises the access
errors; ``apply`` performs the create or fork. The pipeline validates the
inbound turn between the two so an invalid turn never writes anything.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable
from uuid import UUID

from chat_backend.api.aws_bucket_funcs.funcs import ObjectStorage
from chat_backend.api.models import (
    ConversationRecord,
    FilePart,
    Role,
    ToolPart,
    Trigger,
    TurnRecord,
    Visibility,
)
from chat_backend.api.prompt_utilities import DEFAULT_TITLE, create_title_from_turn, remove_punctuation
from chat_backend.database.core.chat_store import ChatStore
from chat_backend.database.helpers.clock import utcnow
from chat_backend.orchestrator.errors import AccessDenied, CreateFailed, ForkFailed, NotFound

logger = logging.getLogger(__name__)

TitleGenerator = Callable[[list], Awaitable[str | None]]


class Action(str, Enum):
    CREATE = "create"
    USE = "use"
    FORK = "fork"
    READ = "read"


@dataclass
class ResolutionPlan:
    """
    What ``apply`` will do. ``conversation_id`` is the conversation the turn
    lands in (the fork target for ``FORK``); ``conversation`` is the existing
    one, or the fork source. ``turns`` are its prior turns.
    """

    action: Action
    conversation_id: UUID
    caller_id: UUID
    conversation: ConversationRecord | None = None
    turns: list[TurnRecord] = field(default_factory=list)
    forked_from: UUID | None = None


@dataclass
class Resolution:
    conversation: ConversationRecord
    created: bool = False
    forked_from: UUID | None = None
    read_only: bool = False

    @property
    def conversation_id(self) -> UUID:
        return self.conversation.id


class ConversationResolver:
    """
    Args:
        chat_store (ChatStore): Conversation and turn persistence.
        storage (ObjectStorage): Used to duplicate files when forking.
        title_generator (TitleGenerator | None): Optional model-backed title maker.
        title_max_length (int): Length of the heuristic title before ``...``.
    """

    def __init__(self, chat_store: ChatStore, storage: ObjectStorage,
                 title_generator: TitleGenerator | None = None, title_max_length: int = 25):
        self.chat_store = chat_store
        self.storage = storage
        self.title_generator = title_generator
        self.title_max_length = title_max_length

    async def resolve(self, conversation_id: UUID, caller_id: UUID, fork_target_id: UUID | None,
                      trigger: Trigger, inbound_parts: list) -> Resolution:
        """`plan` then `apply`."""
        plan = self.plan(conversation_id, caller_id, fork_target_id, trigger)
        return await self.apply(plan, inbound_parts)

    def plan(self, conversation_id: UUID, caller_id: UUID, fork_target_id: UUID | None,
             trigger: Trigger) -> ResolutionPlan:
        """
        Decide where the turn goes and read the prior turns, without writing.

        Raises:
            NotFound: REGENERATE on an unknown conversation.
            AccessDenied: someone else's private conversation.
            ForkFailed: the fork target id belongs to someone else.
        """
        conversation = self.chat_store.get_conversation(conversation_id)

        if conversation is None:
            if trigger == Trigger.REGENERATE:
                raise NotFound(f"conversation {conversation_id} not found")
            return ResolutionPlan(Action.CREATE, conversation_id, caller_id)

        if conversation.owner_id == caller_id:
            return ResolutionPlan(Action.USE, conversation_id, caller_id, conversation,
                                  self.chat_store.get_turns(conversation_id))

        if conversation.visibility == Visibility.PRIVATE:
            raise AccessDenied("conversation is private")

        if trigger == Trigger.NEW and fork_target_id is not None and fork_target_id != conversation_id:
            existing = self.chat_store.get_conversation(fork_target_id)
            if existing is not None:
                # the same fork submitted again
                if existing.owner_id == caller_id:
                    return ResolutionPlan(Action.USE, fork_target_id, caller_id, existing,
                                          self.chat_store.get_turns(fork_target_id), forked_from=conversation_id)
                raise ForkFailed("fork target id is already taken")
            _, turns = self.chat_store.get_snapshot(conversation_id)
            return ResolutionPlan(Action.FORK, fork_target_id, caller_id, conversation, turns,
                                  forked_from=conversation_id)

        return ResolutionPlan(Action.READ, conversation_id, caller_id, conversation,
                              self.chat_store.get_turns(conversation_id))

    async def apply(self, plan: ResolutionPlan, inbound_parts: list) -> Resolution:
        """
        Carry out a plan: create or fork the conversation when needed.

        Raises:
            CreateFailed, ForkFailed
        """
        if plan.action == Action.CREATE:
            return await self._create(plan.conversation_id, plan.caller_id, inbound_parts)
        if plan.action == Action.FORK:
            return self._fork(plan)
        return Resolution(plan.conversation, forked_from=plan.forked_from, read_only=plan.action == Action.READ)

    async def make_title(self, parts: list) -> str:
        """Generated title when available, else the heuristic one; never empty."""
        title = None
        if self.title_generator is not None:
            title = await self.title_generator(parts)
        if title:
            title = remove_punctuation(title).strip()
        if not title:
            title = create_title_from_turn(parts, self.title_max_length)
        return title or DEFAULT_TITLE

    async def _create(self, conversation_id: UUID, caller_id: UUID, parts: list) -> Resolution:
        title = await self.make_title(parts)
        try:
            conversation = self.chat_store.create_conversation(conversation_id, caller_id, title)
        except Exception as e:
            logger.exception("Could not create conversation %s", conversation_id)
            raise CreateFailed("could not create the conversation") from e
        return Resolution(conversation, created=True)

    def _fork(self, plan: ResolutionPlan) -> Resolution:
        source, caller_id, fork_target_id, turns = plan.conversation, plan.caller_id, plan.conversation_id, plan.turns

        copied_keys: list[str] = []
        try:
            # sorted fresh ids keep the (created_at, id) order of equal timestamps
            new_ids = sorted(uuid.uuid4() for _ in turns)
            copies = [
                self._copy_turn(turn, new_id, caller_id, fork_target_id, copied_keys)
                for turn, new_id in zip(turns, new_ids)
            ]
            now = utcnow()
            fork = ConversationRecord(
                id=fork_target_id,
                owner_id=caller_id,
                title=source.title,
                visibility=Visibility.PRIVATE,
                created_at=now,
                updated_at=now,
            )
            conversation = self.chat_store.insert_fork(fork, copies)
        except Exception as e:
            logger.exception("Could not fork conversation %s into %s", source.id, fork_target_id)
            self._cleanup(copied_keys)
            raise ForkFailed("could not fork the conversation") from e

        logger.info("Forked %s into %s for %s", source.id, fork_target_id, caller_id)
        return Resolution(conversation, created=True, forked_from=source.id)

    def _copy_turn(self, turn: TurnRecord, new_id: UUID, caller_id: UUID, conversation_id: UUID,
                   copied_keys: list[str]) -> TurnRecord:
        parts = [self._copy_part(part, caller_id, conversation_id, copied_keys) for part in turn.parts]
        return turn.model_copy(update={
            "id": new_id,
            "conversation_id": conversation_id,
            "author_id": caller_id if turn.role == Role.USER else None,
            "parts": parts,
            "is_upvoted": False,
            "is_downvoted": False,
        })

    def _copy_part(self, part, caller_id: UUID, conversation_id: UUID, copied_keys: list[str]):
        if isinstance(part, FilePart):
            if self.storage.key_from_url(part.url) is None:
                return part.model_copy()
            copy = self.storage.duplicate(part.url, part.name, caller_id, conversation_id)
            copied_keys.append(copy["key"])
            return part.model_copy(update={"url": copy["url"], "file_id": copy["file_id"]})

        if isinstance(part, ToolPart) and isinstance(part.output, dict):
            url, name = part.output.get("url"), part.output.get("name")
            if isinstance(url, str) and name and self.storage.key_from_url(url) is not None:
                copy = self.storage.duplicate(url, name, caller_id, conversation_id)
                copied_keys.append(copy["key"])
                output = {**part.output, "url": copy["url"], "file_id": copy["file_id"]}
                return part.model_copy(update={"output": output})

        return part.model_copy(deep=True)

    def _cleanup(self, keys: list[str]) -> None:
        if not keys:
            return
        try:
            self.storage.delete(keys)
        except Exception:
            logger.exception("Could not remove %d objects copied for a failed fork", len(keys))
