"""
Ledger entry model.

Entries are immutable. Once posted, they are never modified or
deleted. A correction is a new entry with the negated value that
points back at the original through reversal_of_entry_id.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, DateTime, Numeric, ForeignKey, Index,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from banca_ledger.models.base import Base, utcnow
from banca_ledger.models.enums import LedgerType, ReferenceType


class LedgerEntry(Base):
    """
    A signed movement against one account.

    Positive values increase the account balance, negative values
    decrease it. An entry may be reversed at most once, which the
    unique reversal_of_entry_id column enforces at the storage level.
    """

    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index(
            "ix_ledger_entries_account_request", "account_id", "request_id",
            unique=True,
        ),
        Index("ix_ledger_entries_account_date", "account_id", "date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False, index=True
    )
    type: Mapped[LedgerType] = mapped_column(
        SAEnum(LedgerType, name="ledger_type_enum"),
        nullable=False,
    )
    value_signed: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False
    )
    reference_type: Mapped[ReferenceType | None] = mapped_column(
        SAEnum(ReferenceType, name="reference_type_enum"),
        nullable=True,
    )
    reference_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)
    request_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )
    created_by: Mapped[int] = mapped_column(nullable=False)
    reversal_of_entry_id: Mapped[int | None] = mapped_column(
        ForeignKey("ledger_entries.id"), nullable=True, unique=True
    )
    date: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    account: Mapped["Account"] = relationship(back_populates="entries")
    reversal_of: Mapped["LedgerEntry | None"] = relationship(
        remote_side=[id]
    )

    def __repr__(self) -> str:
        return f"<LedgerEntry {self.type.value} {self.value_signed}>"
