"""
Admission control: quota checks run before anything else in the pipeline.

A rejected request has no side effects; the check itself never writes.
"""

import logging
from uuid import UUID

from chat_backend.api.models import FilePart, QuotaDecision, QuotaResource
from chat_backend.database.core.quota_store import QuotaStore
from chat_backend.orchestrator.errors import AdmissionDenied

logger = logging.getLogger(__name__)


def count_files(parts: list) -> int:
    return sum(1 for part in parts if isinstance(part, FilePart))


class AdmissionController:
    """
    Args:
        quota_store (QuotaStore): Source of the usage counters.
    """

    def __init__(self, quota_store: QuotaStore):
        self.quota_store = quota_store

    def check_quota(self, user_id: UUID, role: str, resource: QuotaResource) -> QuotaDecision:
        return self.quota_store.check(user_id, role, resource)

    def admit(self, user_id: UUID, role: str, parts: list) -> list[QuotaDecision]:
        """
        Check the message quota (tokens, then messages) and, when the turn
        carries files, the file quota.

        Raises:
            AdmissionDenied: on the first exhausted resource.
        """
        resources = [QuotaResource.TOKENS, QuotaResource.MESSAGES]
        if count_files(parts):
            resources.append(QuotaResource.FILES)

        decisions = []
        for resource in resources:
            decision = self.check_quota(user_id, role, resource)
            if not decision.allowed:
                logger.info("Admission denied for %s: %s", user_id, decision.reason)
                raise AdmissionDenied(decision.reason, decision.period_end)
            decisions.append(decision)
        return decisions
