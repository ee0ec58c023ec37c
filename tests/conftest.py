import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from botocore.exceptions import ClientError
from langchain_core.messages import AIMessage, AIMessageChunk
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from chat_backend.api.aws_bucket_funcs.funcs import ObjectStorage
from chat_backend.api.models import (
    ChatRequest,
    ConversationRecord,
    InboundTurn,
    Role,
    TextPart,
    TurnRecord,
    UserRole,
    Visibility,
)
from chat_backend.api.utils import Identity, create_access_token
from chat_backend.database.config.config import Settings
from chat_backend.database.config.connection_engine import build_session_factory, metadata
from chat_backend.database.core.chat_store import ChatStore
from chat_backend.database.core.quota_store import QuotaStore
from chat_backend.database.entities import conversations, messages, quota  # noqa: F401
from chat_backend.orchestrator.pipeline import ChatTurnOrchestrator

PUBLIC_URL = "https://files.test/bucket"


# --------------------------------------------------------------------
# Fakes
# --------------------------------------------------------------------

class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client calls ObjectStorage makes."""

    def __init__(self, objects=None, fail_copy_after=None, head_error=None):
        self.objects = set(objects or [])
        self.fail_copy_after = fail_copy_after
        self.head_error = head_error
        self.copies = []
        self.deleted = []

    def head_object(self, Bucket, Key):
        if self.head_error:
            raise ClientError({"Error": {"Code": self.head_error, "Message": "error"}}, "HeadObject")
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {"ContentLength": 1}

    def copy_object(self, Bucket, Key, CopySource):
        if self.fail_copy_after is not None and len(self.copies) >= self.fail_copy_after:
            raise ClientError({"Error": {"Code": "500", "Message": "boom"}}, "CopyObject")
        if CopySource["Key"] not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "CopyObject")
        self.objects.add(Key)
        self.copies.append((CopySource["Key"], Key))
        return {}

    def delete_objects(self, Bucket, Delete):
        for item in Delete["Objects"]:
            self.objects.discard(item["Key"])
            self.deleted.append(item["Key"])
        return {}


def text_chunks(text, input_tokens=5, output_tokens=3, finish_reason="stop"):
    """Split `text` into streamed chunks; the last one carries usage and the finish reason."""
    words = text.split(" ")
    chunks = [AIMessageChunk(content=w if i == 0 else " " + w) for i, w in enumerate(words)]
    chunks.append(AIMessageChunk(
        content="",
        usage_metadata={
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
        },
        response_metadata={"finish_reason": finish_reason},
    ))
    return chunks


class FakeChatModel:
    """
    Chat model double: each `astream` call plays the next script (a list of
    chunks). A script entry that is an exception is raised at that point; a
    float entry sleeps that many seconds.
    """

    def __init__(self, *scripts, title="Generated Title"):
        self.scripts = list(scripts)
        self.title = title
        self.calls = []
        self.bound_tools = None

    def bind_tools(self, tools):
        self.bound_tools = tools
        return self

    async def astream(self, messages):
        self.calls.append(list(messages))
        script = self.scripts.pop(0) if self.scripts else text_chunks("ok")
        for item in script:
            if isinstance(item, Exception):
                raise item
            if isinstance(item, float):
                await asyncio.sleep(item)
                continue
            yield item

    async def ainvoke(self, messages):
        return AIMessage(content=self.title)


# --------------------------------------------------------------------
# Fixtures
# --------------------------------------------------------------------

@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        SECRET_KEY="test-secret",
        GENERATE_TITLES=False,
        STORAGE_PUBLIC_URL=PUBLIC_URL,
        BUCKET_NAME="bucket",
        QUOTA_USER_MESSAGES=5,
        QUOTA_USER_TOKENS=1000,
        QUOTA_USER_FILES=2,
        CHAT_CHARACTER_MAX_LIMIT=100,
        CHAT_FILES_MAX_LIMIT=3,
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def chat_store(session_factory):
    return ChatStore(session_factory)


@pytest.fixture
def quota_store(session_factory, settings):
    return QuotaStore(session_factory, settings)


@pytest.fixture
def s3():
    return FakeS3Client()


@pytest.fixture
def storage(s3):
    return ObjectStorage(s3, "bucket", PUBLIC_URL)


@pytest.fixture
def model():
    return FakeChatModel()


@pytest.fixture
def orchestrator(chat_store, quota_store, storage, model, settings):
    return ChatTurnOrchestrator.build(chat_store, quota_store, storage, model, settings)


@pytest.fixture
def alice():
    return Identity(user_id=uuid.uuid4(), role=UserRole.USER)


@pytest.fixture
def bob():
    return Identity(user_id=uuid.uuid4(), role=UserRole.USER)


# --------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------

def token_for(identity, settings):
    return create_access_token({"sub": str(identity.user_id), "role": identity.role.value}, settings)


def user_turn(text="Hello", turn_id=None, parts=None):
    return InboundTurn(id=turn_id or uuid.uuid4(), role=Role.USER, parts=parts or [TextPart(text=text)])


def chat_request(conversation_id=None, inbound=None, **kwargs):
    return ChatRequest(
        conversation_id=conversation_id or uuid.uuid4(),
        inbound_turn=inbound or user_turn(),
        **kwargs,
    )


def run_turn(orchestrator, identity, request):
    """Run a turn to completion and return the frames it produced."""
    async def run():
        stream = await orchestrator.handle(identity, request)
        return [frame async for frame in stream.frames()]
    return asyncio.run(run())


def seed_conversation(chat_store, owner_id, turns=0, visibility=Visibility.PRIVATE, title="Seeded"):
    """Create a conversation with `turns` alternating user/assistant turns, one second apart."""
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    conversation = ConversationRecord(
        id=uuid.uuid4(),
        owner_id=owner_id,
        title=title,
        visibility=visibility,
        created_at=start,
        updated_at=start,
    )
    records = []
    for i in range(turns):
        role = Role.USER if i % 2 == 0 else Role.ASSISTANT
        records.append(TurnRecord(
            id=uuid.uuid4(),
            conversation_id=conversation.id,
            author_id=owner_id if role == Role.USER else None,
            role=role,
            parts=[TextPart(text=f"turn {i + 1}")],
            created_at=start + timedelta(seconds=i + 1),
        ))
    chat_store.insert_fork(conversation, records)
    return conversation, records
