"""
QuotaCounter ORM Model
======================

One row per ``(user_id, resource)`` holding the usage counter for the current
rolling window. A row whose ``period_end`` lies in the past is expired and
counts as zero; it is rewritten on the next increment.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Integer, TEXT, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from chat_backend.database.config.connection_engine import declarativeBase
from chat_backend.database.helpers.clock import utcnow


class QuotaCounter(declarativeBase):
    """
    ORM model for the `quota_counter` table.

    Attributes
    ----------
    user_id : UUID
        Counted user (part of the primary key).
    resource : str
        ``"messages"``, ``"tokens"`` or ``"files"`` (part of the primary key).
    counter : int
        Usage accumulated within ``[period_start, period_end)``.
    is_over_limit : bool
        Set by the increment that pushed ``counter`` to or past the limit.
    """

    __tablename__ = 'quota_counter'

    user_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    resource: Mapped[str] = mapped_column(TEXT, primary_key=True)
    counter: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_over_limit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __init__(self, user_id: UUID, resource: str, period_start: datetime, period_end: datetime, counter: int = 0):
        self.user_id = user_id
        self.resource = resource
        self.counter = counter
        self.period_start = period_start
        self.period_end = period_end
        self.is_over_limit = False
        self.updated_at = period_start

    def __str__(self) -> str:
        return f"Quota: user:{self.user_id}, {self.resource}={self.counter}, until: {self.period_end}"
