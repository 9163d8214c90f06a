"""
Ledger account model.

One account per owner (banca, ventana or vendedor). The balance
column is a cache: it always equals the signed sum of the
account's ledger entries, and only LedgerService writes it, in
the same transaction as the entry that justifies the change.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Boolean, DateTime, Numeric, UniqueConstraint,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from banca_ledger.models.base import Base, utcnow
from banca_ledger.models.enums import OwnerType


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("owner_type", "owner_id", name="uq_account_owner"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    owner_type: Mapped[OwnerType] = mapped_column(
        SAEnum(OwnerType, name="owner_type_enum", create_constraint=True),
        nullable=False,
    )
    owner_id: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="CRC"
    )
    balance: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    entries: Mapped[list["LedgerEntry"]] = relationship(
        back_populates="account"
    )

    def __repr__(self) -> str:
        return (
            f"<Account {self.owner_type.value}:{self.owner_id} "
            f"{self.balance} {self.currency}>"
        )
