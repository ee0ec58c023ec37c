"""
Transcript preparation: validate the inbound turn and merge it into the
prior turns of the conversation.

Validation is exhaustive over the part union and collects every problem
before failing, so the client gets the full list at once. Only the inbound
turn is checked: prior turns were validated when they were committed, and
their shape is enforced by the part models on the way out of the store.
Nothing is mutated or written here.
"""

import logging

from botocore.exceptions import ClientError

from chat_backend.api.aws_bucket_funcs.funcs import ObjectStorage
from chat_backend.api.models import FilePart, Role, TextPart, ToolPart, TurnRecord
from chat_backend.api.prompt_utilities import normalize_mime
from chat_backend.database.config.config import Settings
from chat_backend.orchestrator.errors import StorageUnavailable, ValidationError

logger = logging.getLogger(__name__)


class TranscriptPreparer:
    """
    Args:
        storage (ObjectStorage): Used to confirm uploaded files exist.
        settings (Settings): Character, file count and media type limits.
    """

    def __init__(self, storage: ObjectStorage, settings: Settings):
        self.storage = storage
        self.max_characters = settings.CHAT_CHARACTER_MAX_LIMIT
        self.max_files = settings.CHAT_FILES_MAX_LIMIT
        self.accepted_media_types = {normalize_mime(mt) for mt in settings.CHAT_ACCEPTED_MEDIA_TYPES}

    def merge(self, prior_turns: list[TurnRecord], inbound_turn: TurnRecord,
              allow_replace: bool = False) -> list[TurnRecord]:
        """
        Return ``prior_turns`` with ``inbound_turn`` appended.

        With ``allow_replace`` (regeneration), a prior turn carrying the same id
        is replaced in position instead; otherwise a reused id is an error.

        Raises:
            ValidationError: listing ``(turn_index, part_index, message)`` issues.
            StorageUnavailable: the uploaded files could not be looked up.
        """
        turns = list(prior_turns)
        position = next((i for i, turn in enumerate(turns) if turn.id == inbound_turn.id), None)
        issues = []
        if position is None:
            turns.append(inbound_turn)
            position = len(turns) - 1
        elif allow_replace:
            turns[position] = inbound_turn
        else:
            issues.append((position, None, f"turn {inbound_turn.id} already exists"))

        issues.extend(self._validate_inbound(position, inbound_turn))
        if issues:
            raise ValidationError(issues)
        return turns

    def _validate_inbound(self, index: int, turn: TurnRecord) -> list[tuple]:
        issues = []
        if turn.role != Role.USER:
            issues.append((index, None, "inbound turn must have role 'user'"))
        if not turn.parts:
            issues.append((index, None, "inbound turn has no parts"))
        files = sum(1 for part in turn.parts if isinstance(part, FilePart))
        if files > self.max_files:
            issues.append((index, None, f"too many files ({files} > {self.max_files})"))

        for part_index, part in enumerate(turn.parts):
            message = self._validate_part(part)
            if message:
                issues.append((index, part_index, message))
        return issues

    def _validate_part(self, part) -> str | None:
        if isinstance(part, TextPart):
            if not part.text.strip():
                return "text part is empty"
            if len(part.text) > self.max_characters:
                return f"text part exceeds {self.max_characters} characters"
            return None

        if isinstance(part, FilePart):
            if part.generated:
                return None
            if normalize_mime(part.media_type) not in self.accepted_media_types:
                return f"unsupported media type {part.media_type}"
            if not self._uploaded(part):
                return f"file {part.name} was not uploaded"
            return None

        if isinstance(part, ToolPart):
            if not part.tool_name or not part.tool_call_id:
                return "tool part is missing its name or call id"
            return None

        return f"unknown part type {getattr(part, 'type', type(part).__name__)}"

    def _uploaded(self, part: FilePart) -> bool:
        try:
            return self.storage.exists(part.url)
        except ClientError as e:
            logger.exception("Could not look up %s in storage", part.url)
            raise StorageUnavailable("file storage is unavailable") from e
