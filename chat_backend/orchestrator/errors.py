"""
Error taxonomy of the chat turn pipeline.

Every error carries the HTTP status the router answers with. Errors raised
before streaming starts become ``HTTPException``; errors raised afterwards are
delivered as the terminal ``error`` frame of the stream.
"""

from datetime import datetime


class ChatError(Exception):
    """Base class; ``detail`` is what the client sees."""

    status_code = 500
    code = "chat_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    @property
    def detail(self):
        return self.message


class AdmissionDenied(ChatError):
    """Quota exhausted for a resource; nothing was written."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, reason: str, period_end: datetime | None):
        super().__init__(reason)
        self.reason = reason
        self.period_end = period_end

    @property
    def detail(self):
        return {
            "reason": self.reason,
            "period_end": self.period_end.isoformat() if self.period_end else None,
        }


class AccessDenied(ChatError):
    status_code = 403
    code = "forbidden"


class Unauthenticated(AccessDenied):
    """Missing or invalid credentials."""

    status_code = 401
    code = "unauthorized"


class NotFound(ChatError):
    status_code = 404
    code = "not_found"


class ValidationError(ChatError):
    """
    Transcript validation failed.

    ``issues`` enumerates ``(turn_index, part_index, message)`` tuples;
    ``part_index`` is ``None`` for turn-level problems.
    """

    status_code = 422
    code = "invalid_transcript"

    def __init__(self, issues: list[tuple[int, int | None, str]]):
        super().__init__("; ".join(message for _, _, message in issues))
        self.issues = issues

    @property
    def detail(self):
        return [
            {"turn_index": turn_index, "part_index": part_index, "message": message}
            for turn_index, part_index, message in self.issues
        ]


class CreateFailed(ChatError):
    code = "create_failed"


class ForkFailed(ChatError):
    code = "fork_failed"


class StorageUnavailable(ChatError):
    """Object storage failed for a reason other than a missing object."""

    status_code = 503
    code = "storage_unavailable"


class StreamError(ChatError):
    """The model invocation failed."""

    status_code = 502
    code = "stream_error"


class CommitFailed(ChatError):
    """Post-stream persistence failed after all retries."""

    code = "commit_failed"
