import uuid
from datetime import datetime, timezone

import pytest

from chat_backend.api.models import FilePart, Role, TextPart, ToolPart, TurnRecord
from chat_backend.orchestrator.errors import StorageUnavailable, ValidationError
from chat_backend.orchestrator.transcript import TranscriptPreparer

from conftest import PUBLIC_URL

CONVERSATION_ID = uuid.uuid4()
NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def turn(parts, role=Role.USER, turn_id=None):
    return TurnRecord(
        id=turn_id or uuid.uuid4(),
        conversation_id=CONVERSATION_ID,
        role=role,
        parts=parts,
        created_at=NOW,
    )


def uploaded(name="report.pdf", media_type="application/pdf", key="u/c/report-1.pdf"):
    return FilePart(media_type=media_type, url=f"{PUBLIC_URL}/{key}", name=name)


@pytest.fixture
def preparer(storage, settings):
    return TranscriptPreparer(storage, settings)


def test_inbound_turn_is_appended(preparer):
    prior = [turn([TextPart(text="hi")]), turn([TextPart(text="hello!")], role=Role.ASSISTANT)]
    inbound = turn([TextPart(text="how are you?")])

    merged = preparer.merge(prior, inbound)

    assert [t.id for t in merged] == [prior[0].id, prior[1].id, inbound.id]


def test_reused_id_is_rejected_for_new_turns(preparer):
    prior = [turn([TextPart(text="hi")])]
    again = turn([TextPart(text="hi")], turn_id=prior[0].id)

    with pytest.raises(ValidationError) as error:
        preparer.merge(prior, again)

    assert error.value.detail == [
        {"turn_index": 0, "part_index": None, "message": f"turn {again.id} already exists"},
    ]


def test_reused_id_replaces_in_position_when_allowed(preparer):
    prior = [turn([TextPart(text="hi")]), turn([TextPart(text="hello!")], role=Role.ASSISTANT)]
    edited = turn([TextPart(text="hey")], turn_id=prior[0].id)

    merged = preparer.merge(prior, edited, allow_replace=True)

    assert len(merged) == 2
    assert merged[0].parts[0].text == "hey"


def test_every_issue_is_reported(preparer):
    inbound = turn([
        TextPart(text="   "),
        TextPart(text="x" * 101),
        uploaded(name="movie.mp4", media_type="video/mp4", key="u/c/movie-1.mp4"),
        uploaded(),
    ])

    with pytest.raises(ValidationError) as error:
        preparer.merge([], inbound)

    assert [(i["turn_index"], i["part_index"]) for i in error.value.detail] == [(0, 0), (0, 1), (0, 2), (0, 3)]
    messages = [i["message"] for i in error.value.detail]
    assert messages[0] == "text part is empty"
    assert "100 characters" in messages[1]
    assert "video/mp4" in messages[2]
    assert "was not uploaded" in messages[3]


def test_turn_level_issues(preparer):
    with pytest.raises(ValidationError) as empty:
        preparer.merge([], turn([]))
    with pytest.raises(ValidationError) as assistant:
        preparer.merge([], turn([TextPart(text="hi")], role=Role.ASSISTANT))
    with pytest.raises(ValidationError) as too_many:
        preparer.merge([], turn([uploaded(key=f"u/c/f-{i}.pdf") for i in range(4)]))

    assert empty.value.detail[0]["message"] == "inbound turn has no parts"
    assert assistant.value.detail[0]["message"] == "inbound turn must have role 'user'"
    assert any("too many files" in i["message"] for i in too_many.value.detail)


def test_uploaded_files_are_checked_in_storage(preparer, s3):
    s3.objects.add("u/c/report-1.pdf")
    inbound = turn([TextPart(text="summarise"), uploaded(media_type="application/pdf; charset=binary")])

    merged = preparer.merge([], inbound)

    assert merged[-1].parts[1].name == "report.pdf"


def test_prior_turns_are_not_looked_up_in_storage(preparer):
    # files of older turns may have been cleaned up; only the inbound turn is checked
    prior = [turn([TextPart(text="look"), uploaded()])]

    merged = preparer.merge(prior, turn([TextPart(text="and now?")]))

    assert len(merged) == 2


def test_long_assistant_text_and_generated_files_pass(preparer):
    prior = [
        turn([TextPart(text="draw")]),
        turn([
            TextPart(text="y" * 500),
            FilePart(media_type="video/mp4", url="https://elsewhere.test/a.mp4", name="a.mp4", generated=True),
            ToolPart(tool_name="draw", tool_call_id="call_1", input={"what": "cat"}, output="done"),
        ], role=Role.ASSISTANT),
    ]

    merged = preparer.merge(prior, turn([TextPart(text="thanks")]))

    assert len(merged) == 3


def test_tool_part_without_call_id(preparer):
    with pytest.raises(ValidationError) as error:
        preparer.merge([], turn([TextPart(text="ok"), ToolPart(tool_name="draw", tool_call_id="")]))

    assert error.value.detail == [
        {"turn_index": 0, "part_index": 1, "message": "tool part is missing its name or call id"},
    ]


def test_prior_turns_are_not_revalidated(preparer):
    prior = [
        turn([TextPart(text="hi")]),
        turn([TextPart(text="\n\n"), ToolPart(tool_name="draw", tool_call_id="")], role=Role.ASSISTANT),
        turn([TextPart(text="z" * 500)]),
    ]

    merged = preparer.merge(prior, turn([TextPart(text="still there?")]))

    assert len(merged) == 4


def test_storage_outage_is_not_reported_as_missing_file(preparer, s3):
    s3.head_error = "403"

    with pytest.raises(StorageUnavailable) as error:
        preparer.merge([], turn([TextPart(text="summarise"), uploaded()]))

    assert error.value.status_code == 503
