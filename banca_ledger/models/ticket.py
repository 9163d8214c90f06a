"""
Tickets, bet lines (jugadas) and prize payments.

Payout fields stay at zero until the draw is evaluated. Commission
figures are snapshotted onto each line at sale time so later policy
changes never alter past sales.
"""

import datetime as dt
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Boolean, Date, DateTime, Numeric, ForeignKey, Index,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from banca_ledger.models.base import Base, utcnow
from banca_ledger.models.enums import (
    BetType,
    CommissionOrigin,
    TicketStatus,
)

MONEY = Numeric(19, 2)
# Prize figures hold amount × multiplier unrounded
PAYOUT = Numeric(19, 4)
ZERO = Decimal("0")


class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        Index("ix_tickets_business_date_ventana", "business_date", "ventana_id"),
        Index("ix_tickets_business_date_vendedor", "business_date", "vendedor_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    ticket_number: Mapped[str] = mapped_column(
        String(30), unique=True, nullable=False
    )
    sorteo_id: Mapped[int] = mapped_column(
        ForeignKey("sorteos.id"), nullable=False, index=True
    )
    loteria_id: Mapped[int] = mapped_column(
        ForeignKey("loterias.id"), nullable=False
    )
    banca_id: Mapped[int] = mapped_column(
        ForeignKey("bancas.id"), nullable=False, index=True
    )
    ventana_id: Mapped[int] = mapped_column(
        ForeignKey("ventanas.id"), nullable=False
    )
    vendedor_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False
    )
    business_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    status: Mapped[TicketStatus] = mapped_column(
        SAEnum(TicketStatus, name="ticket_status_enum", create_constraint=True),
        nullable=False,
        default=TicketStatus.ACTIVE,
    )
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    total_payout: Mapped[Decimal] = mapped_column(PAYOUT, nullable=False, default=ZERO)
    total_paid: Mapped[Decimal] = mapped_column(PAYOUT, nullable=False, default=ZERO)
    remaining_amount: Mapped[Decimal] = mapped_column(
        PAYOUT, nullable=False, default=ZERO
    )
    is_winner: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    is_sorteo_closed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    last_payment_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    paid_by_id: Mapped[int | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    sorteo: Mapped["Sorteo"] = relationship(back_populates="tickets")
    jugadas: Mapped[list["Jugada"]] = relationship(
        back_populates="ticket", cascade="all, delete-orphan"
    )
    payments: Mapped[list["TicketPayment"]] = relationship(
        back_populates="ticket"
    )

    def __repr__(self) -> str:
        return f"<Ticket {self.ticket_number} ({self.status.value})>"


class Jugada(Base):
    __tablename__ = "jugadas"

    id: Mapped[int] = mapped_column(primary_key=True)
    ticket_id: Mapped[int] = mapped_column(
        ForeignKey("tickets.id"), nullable=False, index=True
    )
    type: Mapped[BetType] = mapped_column(
        SAEnum(BetType, name="bet_type_enum"),
        nullable=False,
        default=BetType.NUMERO,
    )
    number: Mapped[str] = mapped_column(String(10), nullable=False)
    # Side number a REVENTADO line pays on; defaults to number
    reventado_number: Mapped[str | None] = mapped_column(
        String(10), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    multiplier_id: Mapped[int | None] = mapped_column(
        ForeignKey("loteria_multipliers.id"), nullable=True
    )
    final_multiplier_x: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=ZERO
    )
    commission_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=ZERO
    )
    commission_amount: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=ZERO
    )
    commission_origin: Mapped[CommissionOrigin | None] = mapped_column(
        SAEnum(CommissionOrigin, name="commission_origin_enum"),
        nullable=True,
    )
    commission_rule_id: Mapped[str | None] = mapped_column(
        String(50), nullable=True
    )
    listero_commission_amount: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=ZERO
    )
    is_winner: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    payout: Mapped[Decimal] = mapped_column(PAYOUT, nullable=False, default=ZERO)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    ticket: Mapped["Ticket"] = relationship(back_populates="jugadas")

    @property
    def side_number(self) -> str:
        return self.reventado_number or self.number

    def __repr__(self) -> str:
        return f"<Jugada {self.type.value} {self.number} {self.amount}>"


class TicketPayment(Base):
    """A prize payment against a winning ticket."""

    __tablename__ = "ticket_payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    ticket_id: Mapped[int] = mapped_column(
        ForeignKey("tickets.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    paid_by_id: Mapped[int] = mapped_column(nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(
        String(100), unique=True, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    ticket: Mapped["Ticket"] = relationship(back_populates="payments")

    def __repr__(self) -> str:
        return f"<TicketPayment {self.ticket_id} {self.amount}>"
