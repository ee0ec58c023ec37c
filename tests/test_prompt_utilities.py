import uuid
from datetime import date, datetime, timezone

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from chat_backend.api.models import ChatPreferences, FilePart, Role, TextPart, ToolPart, TurnRecord, UserRole
from chat_backend.api.prompt_utilities import (
    build_turn_content,
    chat_system_message,
    create_title_from_turn,
    remove_punctuation,
    turns_to_messages,
)
from chat_backend.api.utils import Identity, create_access_token, resolve_identity, verify_token

from conftest import token_for


def record(role, parts):
    return TurnRecord(
        id=uuid.uuid4(), conversation_id=uuid.uuid4(), role=role, parts=parts,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def test_system_message_includes_preferences():
    preferences = ChatPreferences(personality="yoda", characteristics=["DIRECT", "UNKNOWN"], occupation="baker")

    message = chat_system_message(preferences, today=date(2024, 5, 1))

    assert "Today's date is 2024-05-01." in message
    assert "Speak like Yoda" in message
    assert "- Get straight to the point." in message
    assert "The user works as: baker." in message
    assert chat_system_message(None, today=date(2024, 5, 1)).count("\n") == 3


def test_turn_content_blocks():
    blocks = build_turn_content([
        TextPart(text="compare these"),
        FilePart(media_type="image/PNG", url="https://files.test/a.png", name="a.png"),
        FilePart(media_type="application/pdf", url="https://files.test/b.pdf", name="b.pdf"),
    ])

    assert blocks[0] == {"type": "text", "text": "compare these"}
    assert blocks[1] == {"type": "image_url", "image_url": {"url": "https://files.test/a.png"}}
    assert blocks[2]["text"] == "Attached files:\n- b.pdf (application/pdf): https://files.test/b.pdf"


def test_tool_parts_are_replayed_as_calls_and_results():
    messages = turns_to_messages([
        record(Role.USER, [TextPart(text="weather?")]),
        record(Role.ASSISTANT, [
            ToolPart(tool_name="weather", tool_call_id="call_1", input={"city": "Rome"}, output="Hot"),
            TextPart(text="It is hot."),
        ]),
    ], system_message="be brief")

    assert [type(m) for m in messages] == [SystemMessage, HumanMessage, AIMessage, ToolMessage]
    assert messages[2].tool_calls[0]["args"] == {"city": "Rome"}
    assert messages[2].content == "It is hot."
    assert messages[3].tool_call_id == "call_1"


def test_titles_from_text():
    assert remove_punctuation("¿Qué tal, amigo?") == "Qué tal amigo"
    assert create_title_from_turn([TextPart(text="Plan my_trip!")]) == "Plan mytrip"
    assert create_title_from_turn([FilePart(media_type="image/png", url="u", name="n.png")]) == "New Chat"


def test_tokens_round_trip_identity(settings):
    identity = Identity(user_id=uuid.uuid4(), role=UserRole.ADMIN)
    token = token_for(identity, settings)

    assert verify_token(token, settings) == identity
    assert resolve_identity(None, f"Bearer {token}", settings) == identity
    assert verify_token(token, settings.model_copy(update={"SECRET_KEY": "other"})) is None


def test_unknown_role_falls_back_to_guest(settings):
    token = create_access_token({"sub": str(uuid.uuid4()), "role": "superuser"}, settings)

    assert verify_token(token, settings).role == UserRole.GUEST
    assert verify_token(create_access_token({"sub": "not-a-uuid"}, settings), settings) is None
