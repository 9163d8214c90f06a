"""
Bank deposits and daily balance snapshots.

Both hang off a ledger account. A deposit is always accompanied by
a DEPOSIT ledger entry posted in the same transaction; a snapshot
is a closing figure computed from entries when a day is closed.
"""

import datetime as dt
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Date, DateTime, Numeric, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from banca_ledger.models.base import Base, utcnow


class BankDeposit(Base):
    __tablename__ = "bank_deposits"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False, index=True
    )
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    doc_number: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)
    bank_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[int] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<BankDeposit {self.doc_number} {self.amount}>"


class DailyBalanceSnapshot(Base):
    __tablename__ = "daily_balance_snapshots"
    __table_args__ = (
        UniqueConstraint("account_id", "date", name="uq_snapshot_account_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False, index=True
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    opening: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)
    debit: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)
    credit: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)
    closing: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<DailyBalanceSnapshot {self.account_id} {self.date}>"
