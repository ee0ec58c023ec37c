"""
Commit & regeneration: persists the outcome of a streamed turn and charges
the caller's quota.

- NEW appends ``[user_turn, assistant_turn]`` in one transaction.
- REGENERATE truncates from the target turn (inclusive) and appends the new
  assistant turn in one transaction; when the user turn was edited, it is
  kept and its content replaced in place.

Each store call is retried; when every attempt fails an ERROR record tagged
``commit_failed`` is logged and ``CommitFailed`` is raised.
"""

import logging
from typing import Callable
from uuid import UUID

from chat_backend.api.models import QuotaResource, QuotaUsage, Role, TurnRecord, Usage
from chat_backend.database.config.config import Settings
from chat_backend.database.core.chat_store import ChatStore
from chat_backend.database.core.quota_store import QuotaStore
from chat_backend.orchestrator.errors import AccessDenied, CommitFailed, NotFound

logger = logging.getLogger(__name__)


class CommitManager:
    """
    Args:
        chat_store (ChatStore): Turn persistence.
        quota_store (QuotaStore): Usage counters.
        settings (Settings): Retry count and input-token charging.
    """

    def __init__(self, chat_store: ChatStore, quota_store: QuotaStore, settings: Settings):
        self.chat_store = chat_store
        self.quota_store = quota_store
        self.attempts = max(1, settings.COMMIT_RETRY_ATTEMPTS)
        self.count_input_tokens = settings.QUOTA_COUNT_INPUT_TOKENS

    def commit_new(self, owner_id: UUID, conversation_id: UUID, user_turn: TurnRecord,
                   assistant_turn: TurnRecord) -> list[TurnRecord]:
        return self._retry(
            f"new turn in {conversation_id}",
            lambda: self.chat_store.commit_new(conversation_id, owner_id, [user_turn, assistant_turn]),
        )

    def commit_regenerate(self, owner_id: UUID, conversation_id: UUID, target_turn_id: UUID,
                          regenerated_role: Role, user_turn: TurnRecord,
                          assistant_turn: TurnRecord) -> list[TurnRecord]:
        replaced = user_turn if regenerated_role == Role.USER else None
        return self._retry(
            f"regeneration of {target_turn_id} in {conversation_id}",
            lambda: self.chat_store.commit_regenerate(
                conversation_id, owner_id, target_turn_id, assistant_turn, replaced_user_turn=replaced
            ),
        )

    def charge(self, user_id: UUID, role: str, usage: Usage, files: int) -> list[QuotaUsage]:
        """
        Increment the counters after a committed turn: one message, the output
        tokens (plus input tokens when configured) and the uploaded files.
        """
        tokens = usage.output_tokens + (usage.input_tokens if self.count_input_tokens else 0)
        charges = [(QuotaResource.MESSAGES, 1), (QuotaResource.TOKENS, tokens)]
        if files:
            charges.append((QuotaResource.FILES, files))

        snapshot = []
        for resource, amount in charges:
            snapshot.append(self._retry(
                f"quota {resource.value} for {user_id}",
                lambda resource=resource, amount=amount: self.quota_store.increment(user_id, role, resource, amount),
            ))
        return snapshot

    def _retry(self, what: str, operation: Callable):
        last_error = None
        for attempt in range(1, self.attempts + 1):
            try:
                return operation()
            except (NotFound, AccessDenied):
                raise
            except Exception as e:
                last_error = e
                logger.warning("Persisting %s failed (attempt %d/%d): %s", what, attempt, self.attempts, e)
        logger.error("commit_failed: %s", what, exc_info=last_error, extra={"event": "commit_failed"})
        raise CommitFailed(f"could not persist {what}") from last_error
