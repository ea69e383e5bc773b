"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing, gap-free numbers for invoice numbering
    (one counter per invoice prefix) and rate configuration versions.  Uses
    a dedicated counter table with row-level locking (``SELECT ... FOR
    UPDATE``) so concurrent callers are serialized per counter.

Invariants enforced:
    - Monotonicity: the locked counter row is the sole source of truth for
      the next value.  ``MAX(number) + 1`` is never used.
    - Gap-free: the increment is part of the caller's transaction.  If the
      caller rolls back (e.g. the invoice insert fails), the value is
      returned to the counter.

Failure modes:
    - IntegrityError on a concurrent first-use race, handled with a
      savepoint rollback and a locked re-read.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from market_kernel.db.base import Base
from market_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row is a named sequence with the last value handed out.
    """

    __tablename__ = "sequence_counters"

    # e.g. "invoice:INV", "rate_config_version"
    name: Mapped[str] = mapped_column(
        String(80),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        ``next_value(name, start)`` returns the next value of the named
        sequence.  The first value handed out is ``start``.

    Non-goals:
        - Does NOT call ``session.commit()``; the caller owns the boundary.
    """

    RATE_CONFIG_VERSION = "rate_config_version"

    @staticmethod
    def invoice_counter(prefix: str) -> str:
        return f"invoice:{prefix}"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str, start: int = 1) -> int:
        """
        Get the next value for a named sequence.

        Locks the counter row (creating it on first use), increments it and
        returns the new value.  Only committed with the caller's transaction.

        Args:
            sequence_name: Name of the sequence.
            start: Value returned by the very first allocation.

        Returns:
            The next sequence value (always >= start).
        """
        if start < 1:
            raise ValueError("start must be positive")

        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use.  Another session may be creating the same row, so
            # insert under a savepoint and re-read on conflict.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=start)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": start},
                )
                return start
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

