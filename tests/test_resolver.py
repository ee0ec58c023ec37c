import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from chat_backend.api.models import (
    ConversationRecord,
    FilePart,
    Role,
    TextPart,
    ToolPart,
    Trigger,
    TurnRecord,
    Visibility,
)
from chat_backend.orchestrator.errors import AccessDenied, ForkFailed, NotFound
from chat_backend.orchestrator.resolver import Action, ConversationResolver

from conftest import PUBLIC_URL, seed_conversation

HELLO = [TextPart(text="Hello")]


@pytest.fixture
def resolver(chat_store, storage):
    return ConversationResolver(chat_store, storage)


def resolve(resolver, conversation_id, caller_id, fork_target_id=None, trigger=Trigger.NEW, parts=HELLO):
    return asyncio.run(resolver.resolve(conversation_id, caller_id, fork_target_id, trigger, parts))


def seed_with_files(chat_store, s3, owner_id):
    """Public conversation whose turns reference stored, tool-generated and foreign files."""
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    conversation = ConversationRecord(
        id=uuid.uuid4(), owner_id=owner_id, title="Charts", visibility=Visibility.PUBLIC,
        created_at=start, updated_at=start,
    )
    s3.objects.update({"a/b/data-1.csv", "a/b/chart-2.png"})
    parts = [
        [TextPart(text="plot this"), FilePart(media_type="text/csv", url=f"{PUBLIC_URL}/a/b/data-1.csv", name="data.csv")],
        [
            ToolPart(tool_name="plot", tool_call_id="call_1", input={"kind": "bar"},
                     output={"url": f"{PUBLIC_URL}/a/b/chart-2.png", "name": "chart.png"}),
            FilePart(media_type="image/png", url="https://cdn.example.org/logo.png", name="logo.png", generated=True),
            TextPart(text="here you go"),
        ],
        [TextPart(text="thanks")],
        [TextPart(text="any time")],
    ]
    turns = [
        TurnRecord(
            id=uuid.uuid4(),
            conversation_id=conversation.id,
            author_id=owner_id if i % 2 == 0 else None,
            role=Role.USER if i % 2 == 0 else Role.ASSISTANT,
            parts=p,
            is_upvoted=i == 1,
            created_at=start + timedelta(seconds=i),
        )
        for i, p in enumerate(parts)
    ]
    chat_store.insert_fork(conversation, turns)
    return conversation, turns


def test_unknown_conversation_is_created_for_the_caller(resolver, chat_store):
    caller = uuid.uuid4()
    conversation_id = uuid.uuid4()

    resolution = resolve(resolver, conversation_id, caller)

    assert resolution.created
    assert resolution.conversation_id == conversation_id
    stored = chat_store.get_conversation(conversation_id)
    assert stored.owner_id == caller
    assert stored.title == "Hello"
    assert stored.visibility == Visibility.PRIVATE


def test_regenerate_on_unknown_conversation(resolver, chat_store):
    conversation_id = uuid.uuid4()

    with pytest.raises(NotFound):
        resolve(resolver, conversation_id, uuid.uuid4(), trigger=Trigger.REGENERATE)

    assert chat_store.get_conversation(conversation_id) is None


def test_owner_gets_the_conversation(resolver, chat_store):
    owner = uuid.uuid4()
    conversation, _ = seed_conversation(chat_store, owner, turns=2)

    resolution = resolve(resolver, conversation.id, owner)

    assert resolution.conversation_id == conversation.id
    assert not resolution.created
    assert not resolution.read_only


def test_private_conversation_of_someone_else(resolver, chat_store):
    conversation, _ = seed_conversation(chat_store, uuid.uuid4(), turns=2)

    with pytest.raises(AccessDenied):
        resolve(resolver, conversation.id, uuid.uuid4(), fork_target_id=uuid.uuid4())


def test_public_conversation_without_fork_target_is_read_only(resolver, chat_store):
    conversation, _ = seed_conversation(chat_store, uuid.uuid4(), turns=2, visibility=Visibility.PUBLIC)

    without_target = resolve(resolver, conversation.id, uuid.uuid4())
    same_target = resolve(resolver, conversation.id, uuid.uuid4(), fork_target_id=conversation.id)

    assert without_target.read_only
    assert same_target.read_only


def test_plan_reads_without_writing(resolver, chat_store, s3):
    owner, caller = uuid.uuid4(), uuid.uuid4()
    source, source_turns = seed_with_files(chat_store, s3, owner)
    fork_id, new_id = uuid.uuid4(), uuid.uuid4()

    fork = resolver.plan(source.id, caller, fork_id, Trigger.NEW)
    create = resolver.plan(new_id, caller, None, Trigger.NEW)
    read = resolver.plan(source.id, caller, None, Trigger.NEW)

    assert (fork.action, fork.conversation_id, fork.forked_from) == (Action.FORK, fork_id, source.id)
    assert [t.id for t in fork.turns] == [t.id for t in source_turns]
    assert create.action == Action.CREATE
    assert read.action == Action.READ
    assert chat_store.get_conversation(fork_id) is None
    assert chat_store.get_conversation(new_id) is None
    assert s3.copies == []


def test_fork_copies_turns_and_files(resolver, chat_store, s3):
    owner, caller = uuid.uuid4(), uuid.uuid4()
    source, source_turns = seed_with_files(chat_store, s3, owner)
    fork_id = uuid.uuid4()

    resolution = resolve(resolver, source.id, caller, fork_target_id=fork_id)

    assert resolution.created
    assert resolution.forked_from == source.id
    fork = chat_store.get_conversation(fork_id)
    assert fork.owner_id == caller
    assert fork.visibility == Visibility.PRIVATE
    assert fork.title == "Charts"

    copies = chat_store.get_turns(fork_id)
    assert [t.role for t in copies] == [t.role for t in source_turns]
    assert not {t.id for t in copies} & {t.id for t in source_turns}
    assert [t.author_id for t in copies] == [caller, None, caller, None]
    assert not any(t.is_upvoted or t.is_downvoted for t in copies)

    user_file = copies[0].parts[1]
    assert user_file.url != source_turns[0].parts[1].url
    assert user_file.url.startswith(PUBLIC_URL)
    assert user_file.file_id
    tool_output = copies[1].parts[0].output
    assert tool_output["url"] != f"{PUBLIC_URL}/a/b/chart-2.png"
    assert tool_output["name"] == "chart.png"
    # foreign urls are kept as they are
    assert copies[1].parts[1].url == "https://cdn.example.org/logo.png"
    assert len(s3.copies) == 2

    # source untouched
    assert chat_store.get_turns(source.id) == source_turns


def test_repeated_fork_returns_the_existing_copy(resolver, chat_store, s3):
    source, _ = seed_with_files(chat_store, s3, uuid.uuid4())
    caller, fork_id = uuid.uuid4(), uuid.uuid4()

    resolve(resolver, source.id, caller, fork_target_id=fork_id)
    again = resolve(resolver, source.id, caller, fork_target_id=fork_id)

    assert again.conversation_id == fork_id
    assert len(chat_store.get_turns(fork_id)) == 4
    assert len(s3.copies) == 2


def test_fork_target_taken_by_someone_else(resolver, chat_store, s3):
    source, _ = seed_with_files(chat_store, s3, uuid.uuid4())
    taken, _ = seed_conversation(chat_store, uuid.uuid4())

    with pytest.raises(ForkFailed):
        resolve(resolver, source.id, uuid.uuid4(), fork_target_id=taken.id)


def test_failed_fork_removes_copied_files(resolver, chat_store, s3):
    source, _ = seed_with_files(chat_store, s3, uuid.uuid4())
    s3.fail_copy_after = 1
    fork_id = uuid.uuid4()

    with pytest.raises(ForkFailed):
        resolve(resolver, source.id, uuid.uuid4(), fork_target_id=fork_id)

    assert chat_store.get_conversation(fork_id) is None
    assert s3.deleted == [s3.copies[0][1]]
    assert len(chat_store.get_turns(source.id)) == 4


def test_titles(chat_store, storage):
    async def generated(parts):
        return "Weather, Today!"

    async def unavailable(parts):
        return None

    long_text = "Tell me, please, all about the history of Rome"
    heuristic = ConversationResolver(chat_store, storage)

    assert asyncio.run(ConversationResolver(chat_store, storage, generated).make_title(HELLO)) == "Weather Today"
    assert asyncio.run(ConversationResolver(chat_store, storage, unavailable).make_title(HELLO)) == "Hello"
    assert asyncio.run(heuristic.make_title([TextPart(text=long_text)])) == "Tell me please all about..."
    assert asyncio.run(heuristic.make_title([TextPart(text="?!")])) == "New Chat"
