"""
Per-tenant order number counters.

Each counter is a row in ``sequence_counters`` that is read ``FOR UPDATE``
and bumped inside the caller's transaction, so two concurrent order creates
for one tenant serialize on that row and can never draw the same number.
A rolled-back order hands its number back with the rest of its transaction.

The first draw for a counter is seeded from how many orders the tenant
already has, which keeps numbering continuous for tenants whose orders
predate the counter table.
"""

from typing import Callable

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from concession_kernel.db.base import Base
from concession_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


def order_sequence_name(tenant_id) -> str:
    return f"order_number:{tenant_id}"


class SequenceService:
    """Draws the next counter value; commit and rollback stay with the caller."""

    def __init__(self, session: Session):
        self._session = session

    def _lock(self, name: str) -> SequenceCounter | None:
        stmt = (
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def _create(self, name: str, first: int) -> SequenceCounter | None:
        """Insert a new counter at ``first``; None if another writer inserted it first."""
        savepoint = self._session.begin_nested()
        try:
            row = SequenceCounter(name=name, current_value=first)
            self._session.add(row)
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
            return None
        savepoint.commit()
        return row

    def next_value(self, sequence_name: str, seed: Callable[[], int] | None = None) -> int:
        """
        Return the next value of ``sequence_name``, always at least 1.

        ``seed`` is consulted only when the counter row does not exist yet;
        the first value handed out is then ``seed() + 1``.
        """
        row = self._lock(sequence_name)
        if row is None:
            start = seed() if seed is not None else 0
            created = self._create(sequence_name, start + 1)
            if created is not None:
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": created.current_value, "seeded_from": start},
                )
                return created.current_value
            row = self._lock(sequence_name)
            if row is None:
                raise RuntimeError(f"sequence counter {sequence_name!r} vanished after insert race")

        row.current_value += 1
        self._session.flush()
        logger.debug("sequence_allocated", extra={"sequence_name": sequence_name, "value": row.current_value})
        return row.current_value
