"""
Module: stock_kernel.models.identifier_issue
Responsibility: Append-only log of every issued batch and serial number.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only (db/immutability.py).
    - identifier is unique: a second issue of the same value surfaces as
      DuplicateIdentifierError, never as a silent overwrite.

Audit relevance:
    Answers who issued an identifier, when, and why.
"""

from datetime import datetime

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class IdentifierIssue(Base):
    """One issued identifier."""

    __tablename__ = "identifier_issues"

    __table_args__ = (
        Index("idx_identifier_issue_partition", "partition_key"),
    )

    identifier: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    # BATCH / FULL_SERIAL / SHORT_SERIAL
    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    partition_key: Mapped[str] = mapped_column(String(120), nullable=False)

    sequence_value: Mapped[int] = mapped_column(nullable=False)

    issued_at: Mapped[datetime] = mapped_column(nullable=False)

    issued_by: Mapped[str] = mapped_column(String(100), nullable=False)

    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<IdentifierIssue {self.kind} {self.identifier}>"
