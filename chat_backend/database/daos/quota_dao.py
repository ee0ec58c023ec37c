"""
Quota DAO

Reads and stages `QuotaCounter` rows. Window arithmetic and limits live in
`QuotaStore`; this layer only touches rows.
"""

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from chat_backend.database.entities.quota import QuotaCounter

logger = logging.getLogger(__name__)


class QuotaDao:
    """Data Access Object (DAO) for quota counters."""

    def fetchCounter(self, session: Session, user_id: UUID, resource: str) -> QuotaCounter | None:
        try:
            return session.get(QuotaCounter, (user_id, resource))
        except Exception:
            logger.exception("Error in QuotaDao.fetchCounter (user=%s, resource=%s)", user_id, resource)
            raise

    def fetchCountersByUserId(self, session: Session, user_id: UUID) -> list[QuotaCounter]:
        try:
            return session.query(QuotaCounter).filter(QuotaCounter.user_id == user_id).all()
        except Exception:
            logger.exception("Error in QuotaDao.fetchCountersByUserId (user=%s)", user_id)
            raise

    def createCounter(self, session: Session, counter: QuotaCounter) -> QuotaCounter:
        try:
            session.add(counter)
            return counter
        except Exception:
            logger.exception("Error in QuotaDao.createCounter (user=%s)", counter.user_id)
            raise
