"""
Chat turn orchestrator
======================

Runs one inbound message through the whole pipeline:

    admission → resolution plan → transcript merge → create or fork → streamed model call → commit

Everything up to the model call happens in ``prepare`` and fails with a
``ChatError`` before any stream is opened (the router turns those into HTTP
errors). ``run`` then starts a background task that consumes the model stream
to completion, commits the result and feeds frames into a per-request queue.
The HTTP response only reads that queue, so a client that disconnects stops
seeing frames but does not stop the turn from being committed. A read-only
turn (someone else's public conversation, not forked) is streamed but
neither committed nor charged.

Frames
------
``{"type": "start", ...}``, ``{"type": "delta", "text"}``,
``{"type": "tool", "part"}`` and a terminal ``finish`` or ``error`` frame.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import AsyncIterator
from uuid import uuid4

from chat_backend.api.aws_bucket_funcs.funcs import ObjectStorage
from chat_backend.api.llm_pipeline import (
    StreamFailure,
    StreamFinish,
    TextDelta,
    ToolInvocation,
    TurnStreamer,
    generate_title,
)
from chat_backend.api.models import ChatRequest, Role, Trigger, TurnRecord
from chat_backend.api.prompt_utilities import chat_system_message
from chat_backend.api.utils import Identity
from chat_backend.database.config.config import Settings
from chat_backend.database.core.chat_store import ChatStore
from chat_backend.database.core.quota_store import QuotaStore
from chat_backend.database.helpers.clock import utcnow
from chat_backend.orchestrator.admission import AdmissionController, count_files
from chat_backend.orchestrator.commit import CommitManager
from chat_backend.orchestrator.errors import ChatError, NotFound
from chat_backend.orchestrator.resolver import ConversationResolver, Resolution
from chat_backend.orchestrator.transcript import TranscriptPreparer

logger = logging.getLogger(__name__)

_DONE = object()


@dataclass
class PreparedTurn:
    """Everything decided before the model is called."""
    identity: Identity
    request: ChatRequest
    resolution: Resolution
    transcript: list[TurnRecord]
    user_turn: TurnRecord
    system_message: str
    files: int


@dataclass
class TurnStream:
    """Client view of a running turn; iterate `frames()` to read it."""
    queue: asyncio.Queue
    task: asyncio.Task | None = None

    async def frames(self) -> AsyncIterator[dict]:
        while True:
            frame = await self.queue.get()
            if frame is _DONE:
                return
            yield frame


class ChatTurnOrchestrator:
    """
    Args:
        admission (AdmissionController)
        resolver (ConversationResolver)
        preparer (TranscriptPreparer)
        streamer (TurnStreamer)
        committer (CommitManager)
    """

    def __init__(self, admission: AdmissionController, resolver: ConversationResolver,
                 preparer: TranscriptPreparer, streamer: TurnStreamer, committer: CommitManager):
        self.admission = admission
        self.resolver = resolver
        self.preparer = preparer
        self.streamer = streamer
        self.committer = committer
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def build(cls, chat_store: ChatStore, quota_store: QuotaStore, storage: ObjectStorage, model,
              settings: Settings, tools: list | None = None) -> "ChatTurnOrchestrator":
        """Wire the pipeline from its collaborators."""
        title_generator = None
        if settings.GENERATE_TITLES:
            async def title_generator(parts):
                return await generate_title(model, parts)
        return cls(
            admission=AdmissionController(quota_store),
            resolver=ConversationResolver(chat_store, storage, title_generator),
            preparer=TranscriptPreparer(storage, settings),
            streamer=TurnStreamer.from_settings(model, settings, tools),
            committer=CommitManager(chat_store, quota_store, settings),
        )

    # ------------------------------------------------------------------
    # Pre-stream
    # ------------------------------------------------------------------

    async def prepare(self, identity: Identity, request: ChatRequest) -> PreparedTurn:
        """
        Admission, resolution and transcript merge.

        The inbound turn is validated before the conversation is created or
        forked, so every rejection here leaves the store untouched.

        Raises:
            AdmissionDenied, AccessDenied, NotFound, ValidationError,
            StorageUnavailable, CreateFailed, ForkFailed
        """
        inbound = request.inbound_turn
        role = identity.role.value

        self.admission.admit(identity.user_id, role, inbound.parts)

        plan = self.resolver.plan(request.conversation_id, identity.user_id, request.fork_target_id, request.trigger)
        conversation_id = plan.conversation_id

        prior = plan.turns
        regenerate = request.trigger == Trigger.REGENERATE
        if regenerate:
            target = next((i for i, t in enumerate(prior) if t.id == request.regenerate_target_turn_id), None)
            if target is None:
                raise NotFound(f"turn {request.regenerate_target_turn_id} not found")
            prior = prior[:target]

        user_turn = TurnRecord(
            id=inbound.id,
            conversation_id=conversation_id,
            author_id=identity.user_id,
            role=inbound.role,
            parts=inbound.parts,
            created_at=utcnow(),
        )
        transcript = self.preparer.merge(prior, user_turn, allow_replace=regenerate)

        resolution = await self.resolver.apply(plan, inbound.parts)

        charges_files = not regenerate or request.regenerated_role == Role.USER
        logger.info(
            "Prepared %s turn %s in %s (%d prior turns%s)",
            request.trigger.value, inbound.id, conversation_id, len(transcript) - 1,
            ", read only" if resolution.read_only else "",
        )
        return PreparedTurn(
            identity=identity,
            request=request,
            resolution=resolution,
            transcript=transcript,
            user_turn=user_turn,
            system_message=chat_system_message(request.preferences),
            files=count_files(inbound.parts) if charges_files else 0,
        )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def run(self, prepared: PreparedTurn) -> TurnStream:
        """Start consuming the model stream in the background."""
        stream = TurnStream(queue=asyncio.Queue())
        task = asyncio.create_task(self._consume(prepared, stream.queue))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        stream.task = task
        return stream

    async def handle(self, identity: Identity, request: ChatRequest) -> TurnStream:
        """`prepare` then `run`."""
        prepared = await self.prepare(identity, request)
        return self.run(prepared)

    async def drain(self) -> None:
        """Wait for in-flight turns (used at shutdown)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _consume(self, prepared: PreparedTurn, queue: asyncio.Queue) -> None:
        resolution = prepared.resolution
        await queue.put({
            "type": "start",
            "status": 200,
            "conversation_id": str(resolution.conversation_id),
            "created": resolution.created,
            "forked_from": str(resolution.forked_from) if resolution.forked_from else None,
            "read_only": resolution.read_only,
        })
        try:
            async for event in self.streamer.start(prepared.transcript, prepared.system_message):
                if isinstance(event, TextDelta):
                    await queue.put({"type": "delta", "status": 200, "text": event.text})
                elif isinstance(event, ToolInvocation):
                    await queue.put({"type": "tool", "status": 200, "part": event.part.model_dump(mode="json")})
                elif isinstance(event, StreamFinish):
                    await queue.put(self._finish(prepared, event))
                elif isinstance(event, StreamFailure):
                    await queue.put(self._failure(prepared, event))
        except ChatError as e:
            await queue.put(error_frame(e))
        except Exception:
            logger.exception("Turn %s aborted", prepared.user_turn.id)
            await queue.put(error_frame(ChatError("internal error")))
        finally:
            await queue.put(_DONE)

    def _commit(self, prepared: PreparedTurn, parts: list, usage, finish_reason: str, model: str | None):
        """Persist the assistant turn (and user turn) then charge the quota."""
        request = prepared.request
        identity = prepared.identity
        user_turn = prepared.user_turn
        conversation_id = prepared.resolution.conversation_id

        assistant_turn = TurnRecord(
            id=uuid4(),
            conversation_id=conversation_id,
            role=Role.ASSISTANT,
            parts=parts,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_tokens=usage.total_tokens,
            finish_reason=finish_reason,
            model=model,
            created_at=max(utcnow(), user_turn.created_at + timedelta(microseconds=1)),
        )

        if request.trigger == Trigger.REGENERATE:
            written = self.committer.commit_regenerate(
                identity.user_id, conversation_id, request.regenerate_target_turn_id,
                request.regenerated_role, user_turn, assistant_turn,
            )
        else:
            written = self.committer.commit_new(identity.user_id, conversation_id, user_turn, assistant_turn)

        quota = self.committer.charge(identity.user_id, identity.role.value, usage, prepared.files)
        logger.info("Committed %s in %s (%s)", assistant_turn.id, conversation_id, finish_reason)
        return written, quota

    def _finish(self, prepared: PreparedTurn, event: StreamFinish) -> dict:
        # read-only turns are answered but never stored or charged
        written, quota = [], []
        if not prepared.resolution.read_only:
            written, quota = self._commit(prepared, event.parts, event.usage, event.finish_reason, event.model)
        return {
            "type": "finish",
            "status": 200,
            "conversation_id": str(prepared.resolution.conversation_id),
            "finish_reason": event.finish_reason,
            "usage": event.usage.model_dump(),
            "turn_ids": [str(turn.id) for turn in written],
            "quota": [q.model_dump(mode="json") for q in quota],
            "read_only": prepared.resolution.read_only,
        }

    def _failure(self, prepared: PreparedTurn, event: StreamFailure) -> dict:
        frame = error_frame(event.error)
        if event.has_output and not prepared.resolution.read_only:
            written, _ = self._commit(prepared, event.parts, event.usage, "error", event.model)
            frame["turn_ids"] = [str(turn.id) for turn in written]
        return frame


def error_frame(error: ChatError) -> dict:
    return {"type": "error", "status": error.status_code, "error": error.code, "detail": error.detail}
