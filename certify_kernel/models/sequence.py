"""Named counter rows backing monotonic sequences."""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from certify_kernel.db.base import Base


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    Row-level locking ensures monotonicity under concurrency.
    """

    __tablename__ = "sequence_counters"

    # Sequence name (e.g., "virtual_code", "lot:<manufacturer id>")
    name: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
