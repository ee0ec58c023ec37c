"""
FastAPI Router — Chat • Conversations • Votes • Quota
=====================================================

Purpose
-------
Defines the HTTP API for:
- Chat (`POST /chat`): runs one turn through the orchestrator and streams the
  reply as Server-Sent Events (``data: {json}\\n\\n`` frames)
- Conversations: list, read turns, rename, change visibility
- Votes on turns
- Quota snapshot and health

Key Notes
---------
- Input validation via Pydantic models in `chat_backend.api.models`.
- Auth: JWT from the `token` cookie or an `Authorization: Bearer` header.
- Collaborators (stores, orchestrator, settings) are read from `request.app.state`,
  populated by the application lifespan.
- `ChatError` raised before streaming maps to `HTTPException(status_code, detail)`;
  errors after the stream has started arrive as the terminal `error` frame.
"""

import json
from uuid import UUID

from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, Request
from fastapi.responses import StreamingResponse

from chat_backend.api.models import (
    ChatRequest,
    ConversationRecord,
    QuotaUsage,
    TurnRecord,
    TurnVote,
    UpdateTitle,
    UpdateVisibility,
    Visibility,
)
from chat_backend.api.utils import Identity, resolve_identity
from chat_backend.orchestrator.errors import AccessDenied, ChatError, NotFound

router = APIRouter()
"""Creates the FastAPI router in which we define its routes"""


def to_http(error: ChatError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.detail)


def get_identity(
    request: Request,
    token: str | None = Cookie(None),
    authorization: str | None = Header(None),
) -> Identity:
    """Dependency resolving the caller; 401 when no valid token is present."""
    try:
        return resolve_identity(token, authorization, request.app.state.settings)
    except ChatError as e:
        raise to_http(e)


@router.get('/health')
async def health():
    return {"status": "ok"}


@router.post('/chat')
async def chat_endpoint(data: ChatRequest, request: Request, identity: Identity = Depends(get_identity)):
    """Main chat endpoint (SSE streaming).

    Pre-stream failures:
        429 {"reason", "period_end"} when a quota is exhausted,
        401/403 for identity and access, 404 for unknown regeneration targets,
        422 with the enumerated transcript issues, 500 when create/fork fails,
        503 when file storage cannot be reached.

    Response:
        StreamingResponse with "data: {json}\\n\\n" frames: start, delta*, tool*,
        then finish or error. Non-owners of a public conversation who do not
        fork get a read_only stream that is neither stored nor charged.
    """
    orchestrator = request.app.state.orchestrator
    try:
        stream = await orchestrator.handle(identity, data)
    except ChatError as e:
        raise to_http(e)

    async def generate():
        async for frame in stream.frames():
            yield f"data: {json.dumps(frame, default=str)}\n\n"

    return StreamingResponse(generate(), media_type="text/event-stream")


@router.get('/conversations', response_model=list[ConversationRecord])
async def conversations(request: Request, identity: Identity = Depends(get_identity)):
    """Conversations owned by the caller, most recently updated first."""
    return request.app.state.chat_store.list_conversations(identity.user_id)


@router.get('/conversations/{conversation_id}/turns', response_model=list[TurnRecord])
async def conversation_turns(conversation_id: UUID, request: Request, identity: Identity = Depends(get_identity)):
    """Ordered turns of a conversation.

    Public conversations are readable by anyone signed in; non-owners see the
    vote state cleared.
    """
    store = request.app.state.chat_store
    conversation = store.get_conversation(conversation_id)
    if conversation is None:
        raise to_http(NotFound("conversation not found"))
    is_owner = conversation.owner_id == identity.user_id
    if not is_owner and conversation.visibility != Visibility.PUBLIC:
        raise to_http(AccessDenied("conversation is private"))

    turns = store.get_turns(conversation_id)
    if not is_owner:
        turns = [turn.model_copy(update={"is_upvoted": False, "is_downvoted": False}) for turn in turns]
    return turns


@router.patch('/conversations/{conversation_id}/title', response_model=ConversationRecord)
async def update_title(conversation_id: UUID, data: UpdateTitle, request: Request,
                       identity: Identity = Depends(get_identity)):
    try:
        return request.app.state.chat_store.update_title(conversation_id, identity.user_id, data.title.strip())
    except ChatError as e:
        raise to_http(e)


@router.patch('/conversations/{conversation_id}/visibility', response_model=ConversationRecord)
async def update_visibility(conversation_id: UUID, data: UpdateVisibility, request: Request,
                            identity: Identity = Depends(get_identity)):
    try:
        return request.app.state.chat_store.update_visibility(conversation_id, identity.user_id, data.visibility)
    except ChatError as e:
        raise to_http(e)


@router.post('/conversations/{conversation_id}/turns/{turn_id}/vote', response_model=TurnRecord)
async def vote_turn(conversation_id: UUID, turn_id: UUID, data: TurnVote, request: Request,
                    identity: Identity = Depends(get_identity)):
    """Up/down vote a turn (owner only); `{"vote": null}` clears it."""
    try:
        return request.app.state.chat_store.vote_turn(conversation_id, identity.user_id, turn_id, data.vote)
    except ChatError as e:
        raise to_http(e)


@router.get('/quota', response_model=list[QuotaUsage])
async def quota(request: Request, identity: Identity = Depends(get_identity)):
    """Usage of every quota resource in the current window."""
    return request.app.state.quota_store.snapshot(identity.user_id, identity.role.value)
