"""
Sales hierarchy: banca -> ventana -> vendedor (user).

Each level may carry a commission policy document. The policy
is stored as JSON and parsed into a typed structure by the
commission resolver at the point of use.
"""

from datetime import datetime

from sqlalchemy import (
    String, Boolean, DateTime, ForeignKey, JSON,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from banca_ledger.models.base import Base, utcnow
from banca_ledger.models.enums import Role


class Banca(Base):
    __tablename__ = "bancas"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    commission_policy_json: Mapped[dict | None] = mapped_column(
        JSON, nullable=True
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    ventanas: Mapped[list["Ventana"]] = relationship(back_populates="banca")

    def __repr__(self) -> str:
        return f"<Banca {self.code}>"


class Ventana(Base):
    __tablename__ = "ventanas"

    id: Mapped[int] = mapped_column(primary_key=True)
    banca_id: Mapped[int] = mapped_column(
        ForeignKey("bancas.id"), nullable=False, index=True
    )
    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    commission_policy_json: Mapped[dict | None] = mapped_column(
        JSON, nullable=True
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    banca: Mapped["Banca"] = relationship(back_populates="ventanas")
    users: Mapped[list["User"]] = relationship(back_populates="ventana")

    def __repr__(self) -> str:
        return f"<Ventana {self.code}>"


class User(Base):
    """An operator: admin, ventana (listero) or vendedor."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[Role] = mapped_column(
        SAEnum(Role, name="role_enum", create_constraint=True),
        nullable=False,
        default=Role.VENDEDOR,
    )
    # Current assignment; statements infer their ventana from here
    ventana_id: Mapped[int | None] = mapped_column(
        ForeignKey("ventanas.id"), nullable=True, index=True
    )
    commission_policy_json: Mapped[dict | None] = mapped_column(
        JSON, nullable=True
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    ventana: Mapped["Ventana | None"] = relationship(back_populates="users")

    def __repr__(self) -> str:
        return f"<User {self.username} ({self.role.value})>"
