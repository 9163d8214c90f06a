"""
Lottery catalog and its multipliers.

A NUMERO multiplier is frozen onto each bet line at sale time.
A REVENTADO multiplier is chosen when the draw is evaluated and
snapshotted onto the draw row.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Boolean, DateTime, Numeric, ForeignKey,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from banca_ledger.models.base import Base, utcnow
from banca_ledger.models.enums import BetType


class Loteria(Base):
    __tablename__ = "loterias"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    multipliers: Mapped[list["LoteriaMultiplier"]] = relationship(
        back_populates="loteria"
    )

    def __repr__(self) -> str:
        return f"<Loteria {self.name}>"


class LoteriaMultiplier(Base):
    __tablename__ = "loteria_multipliers"

    id: Mapped[int] = mapped_column(primary_key=True)
    loteria_id: Mapped[int] = mapped_column(
        ForeignKey("loterias.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[BetType] = mapped_column(
        SAEnum(BetType, name="bet_type_enum"),
        nullable=False,
        default=BetType.NUMERO,
    )
    value_x: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    loteria: Mapped["Loteria"] = relationship(back_populates="multipliers")

    def __repr__(self) -> str:
        return f"<LoteriaMultiplier {self.name} x{self.value_x}>"
