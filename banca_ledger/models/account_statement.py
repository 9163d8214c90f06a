"""
Daily account statement and the payments applied to it.

One statement per (business date, dimension). The dimension is the
most specific owner the statement describes: a vendedor, a ventana
or a banca. dimension_key ("vendedor:12") makes the uniqueness rule
a plain composite unique constraint.

Derived fields follow two formulas:

    balance           = total_sales - total_payouts
                        - listero_commission - vendedor_commission
    remaining_balance = balance - total_paid + total_collected

accumulated_balance carries the owner's running position through the
month: the previous day's accumulated_balance (or, on the first
statement of a month, the previous month's closing balance) plus this
day's remaining_balance.
"""

import datetime as dt
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Boolean, Date, DateTime, Numeric, ForeignKey,
    UniqueConstraint, Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from banca_ledger.models.base import Base, utcnow
from banca_ledger.models.enums import PaymentType, PaymentMethod

MONEY = Numeric(19, 2)
ZERO = Decimal("0")


class AccountStatement(Base):
    __tablename__ = "account_statements"
    __table_args__ = (
        UniqueConstraint("date", "dimension_key", name="uq_statement_date_dimension"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    month: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    dimension_key: Mapped[str] = mapped_column(String(40), nullable=False)
    banca_id: Mapped[int | None] = mapped_column(
        ForeignKey("bancas.id"), nullable=True, index=True
    )
    ventana_id: Mapped[int | None] = mapped_column(
        ForeignKey("ventanas.id"), nullable=True, index=True
    )
    vendedor_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), nullable=True, index=True
    )

    ticket_count: Mapped[int] = mapped_column(nullable=False, default=0)
    total_sales: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    total_payouts: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    listero_commission: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=ZERO
    )
    vendedor_commission: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=ZERO
    )
    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    total_paid: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    total_collected: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=ZERO
    )
    remaining_balance: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=ZERO
    )
    accumulated_balance: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=ZERO
    )
    is_settled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    can_edit: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    # Set by close_day; blocks payment mutations until reopened
    closed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    closed_by: Mapped[int | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    payments: Mapped[list["AccountPayment"]] = relationship(
        back_populates="statement"
    )

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    def __repr__(self) -> str:
        return f"<AccountStatement {self.date} {self.dimension_key}>"


class AccountPayment(Base):
    """
    A manual payment or collection against a statement.

    Never deleted by normal operation: a reversal flips is_reversed
    and the row stops counting toward the statement totals. Only a
    draw-evaluation revert removes rows, as part of reopening a day.
    """

    __tablename__ = "account_payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_statement_id: Mapped[int] = mapped_column(
        ForeignKey("account_statements.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    banca_id: Mapped[int | None] = mapped_column(nullable=True)
    ventana_id: Mapped[int | None] = mapped_column(nullable=True)
    vendedor_id: Mapped[int | None] = mapped_column(nullable=True)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    type: Mapped[PaymentType] = mapped_column(
        SAEnum(PaymentType, name="payment_type_enum", create_constraint=True),
        nullable=False,
    )
    method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(PaymentMethod, name="payment_method_enum", create_constraint=True),
        nullable=False,
        default=PaymentMethod.CASH,
    )
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_final: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    idempotency_key: Mapped[str | None] = mapped_column(
        String(100), unique=True, nullable=True
    )
    paid_by_id: Mapped[int] = mapped_column(nullable=False)
    paid_by_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_reversed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    reversed_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    reversed_by: Mapped[int | None] = mapped_column(nullable=True)
    reversal_reason: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    statement: Mapped["AccountStatement"] = relationship(
        back_populates="payments"
    )

    def __repr__(self) -> str:
        return f"<AccountPayment {self.type.value} {self.amount}>"


class MonthlyClosingBalance(Base):
    """
    An owner's position at the end of a month.

    Written by close_month and read back as the opening figure of the
    next month's first statement. Re-closing a month overwrites the
    row with a fresh computation.
    """

    __tablename__ = "monthly_closing_balances"
    __table_args__ = (
        UniqueConstraint(
            "closing_month", "dimension_key", name="uq_monthly_closing_dimension"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    closing_month: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    dimension_key: Mapped[str] = mapped_column(String(40), nullable=False)
    banca_id: Mapped[int | None] = mapped_column(nullable=True)
    ventana_id: Mapped[int | None] = mapped_column(nullable=True)
    vendedor_id: Mapped[int | None] = mapped_column(nullable=True)

    opening_balance: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=ZERO
    )
    closing_balance: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=ZERO
    )
    ticket_count: Mapped[int] = mapped_column(nullable=False, default=0)
    total_sales: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    total_payouts: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    total_commission: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=ZERO
    )
    total_paid: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    total_collected: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=ZERO
    )
    closed_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    closed_by: Mapped[int] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<MonthlyClosingBalance {self.closing_month} {self.dimension_key}>"
