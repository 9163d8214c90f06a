"""
Sorteo (draw) model.

The draw has a state machine governing its lifecycle. Invalid
state transitions are rejected. EVALUATED -> OPEN is only reachable
through revert_evaluation, and CLOSED -> OPEN only through the
elevated force-open; both are checked by the service, not listed
here as ordinary transitions.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Boolean, DateTime, Numeric, ForeignKey, UniqueConstraint,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from banca_ledger.models.base import Base, utcnow
from banca_ledger.models.enums import SorteoStatus


VALID_TRANSITIONS: dict[SorteoStatus, set[SorteoStatus]] = {
    SorteoStatus.SCHEDULED: {SorteoStatus.OPEN},
    SorteoStatus.OPEN: {SorteoStatus.EVALUATED, SorteoStatus.CLOSED},
    SorteoStatus.EVALUATED: {SorteoStatus.CLOSED},
    SorteoStatus.CLOSED: set(),  # Terminal, except for force-open
}


class Sorteo(Base):
    __tablename__ = "sorteos"
    __table_args__ = (
        UniqueConstraint("loteria_id", "scheduled_at", name="uq_sorteo_loteria_scheduled"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    loteria_id: Mapped[int] = mapped_column(
        ForeignKey("loterias.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[SorteoStatus] = mapped_column(
        SAEnum(SorteoStatus, name="sorteo_status_enum", create_constraint=True),
        nullable=False,
        default=SorteoStatus.SCHEDULED,
    )
    winning_number: Mapped[str | None] = mapped_column(
        String(10), nullable=True
    )
    extra_outcome_code: Mapped[str | None] = mapped_column(
        String(50), nullable=True
    )
    extra_multiplier_id: Mapped[int | None] = mapped_column(
        ForeignKey("loteria_multipliers.id"), nullable=True
    )
    # Point-in-time copy of the multiplier value used for REVENTADO payouts
    extra_multiplier_x: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    has_winner: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    evaluated_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    tickets: Mapped[list["Ticket"]] = relationship(back_populates="sorteo")

    def can_transition_to(self, new_status: SorteoStatus) -> bool:
        """Check if a state transition is valid."""
        return new_status in VALID_TRANSITIONS.get(self.status, set())

    def __repr__(self) -> str:
        return f"<Sorteo {self.name} ({self.status.value})>"
