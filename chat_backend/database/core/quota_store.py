"""
Quota store: rolling-window usage counters per user and resource.

`check` is read-only: an expired or missing counter reads as zero and nothing
is written. `increment` performs the lazy reset, starting a fresh window at
the time of the first charge after expiry.
"""

import logging
from datetime import timedelta
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from chat_backend.api.models import QuotaDecision, QuotaResource, QuotaUsage
from chat_backend.database.config.config import Settings
from chat_backend.database.daos.quota_dao import QuotaDao
from chat_backend.database.entities.quota import QuotaCounter
from chat_backend.database.helpers.clock import as_utc, utcnow
from chat_backend.database.helpers.transactionManagement import transactional

logger = logging.getLogger(__name__)


def limit_reason(resource: QuotaResource) -> str:
    return f"{resource.value.upper()}_LIMIT_EXCEEDED"


class QuotaStore:
    """
    Parameters
    ----------
    session_factory : sessionmaker
        Factory used by `@transactional`.
    settings : Settings
        Supplies the per-role entitlements and the window length.
    """

    def __init__(self, session_factory: sessionmaker, settings: Settings):
        self.session_factory = session_factory
        self.settings = settings
        self.quota_dao = QuotaDao()

    @property
    def window(self) -> timedelta:
        return timedelta(hours=self.settings.QUOTA_WINDOW_HOURS)

    def limit_for(self, role: str, resource: QuotaResource) -> int:
        return self.settings.entitlements_for(role)[resource.value]

    @staticmethod
    def _active(row: QuotaCounter | None, now) -> bool:
        return row is not None and now <= as_utc(row.period_end)

    @transactional
    def check(self, user_id: UUID, role: str, resource: QuotaResource, session: Session = None) -> QuotaDecision:
        """
        Decide whether `user_id` may spend more of `resource`.

        Never writes: an expired window is reported as zero usage.
        """
        now = utcnow()
        row = self.quota_dao.fetchCounter(session, user_id, resource.value)
        limit = self.limit_for(role, resource)
        if self._active(row, now):
            counter, period_end = row.counter, as_utc(row.period_end)
        else:
            counter, period_end = 0, None
        allowed = counter < limit
        return QuotaDecision(
            allowed=allowed,
            resource=resource,
            counter=counter,
            limit=limit,
            period_end=period_end,
            reason=None if allowed else limit_reason(resource),
        )

    @transactional
    def increment(
        self, user_id: UUID, role: str, resource: QuotaResource, amount: int, session: Session = None
    ) -> QuotaUsage:
        """
        Add `amount` to the counter, resetting an expired window first.

        Returns the counter state after the increment.
        """
        now = utcnow()
        limit = self.limit_for(role, resource)
        row = self.quota_dao.fetchCounter(session, user_id, resource.value)
        if row is None:
            row = QuotaCounter(user_id, resource.value, period_start=now, period_end=now + self.window, counter=amount)
            self.quota_dao.createCounter(session, row)
        elif not self._active(row, now):
            row.period_start = now
            row.period_end = now + self.window
            row.counter = amount
        else:
            row.counter = QuotaCounter.counter + amount
            session.flush()
            session.refresh(row)
        row.is_over_limit = row.counter >= limit
        session.flush()
        logger.info("Quota %s for %s: %s/%s", resource.value, user_id, row.counter, limit)
        return QuotaUsage(
            resource=resource,
            used=row.counter,
            limit=limit,
            period_end=as_utc(row.period_end),
            is_over_limit=row.is_over_limit,
        )

    @transactional
    def snapshot(self, user_id: UUID, role: str, session: Session = None) -> list[QuotaUsage]:
        """Current usage of every resource (expired windows read as zero)."""
        now = utcnow()
        rows = {row.resource: row for row in self.quota_dao.fetchCountersByUserId(session, user_id)}
        usage = []
        for resource in QuotaResource:
            row = rows.get(resource.value)
            limit = self.limit_for(role, resource)
            if self._active(row, now):
                usage.append(QuotaUsage(
                    resource=resource,
                    used=row.counter,
                    limit=limit,
                    period_end=as_utc(row.period_end),
                    is_over_limit=row.counter >= limit,
                ))
            else:
                usage.append(QuotaUsage(resource=resource, used=0, limit=limit))
        return usage
