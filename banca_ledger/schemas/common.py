"""
Shared schemas.
"""

from pydantic import BaseModel

from banca_ledger.models.enums import Role


class Actor(BaseModel):
    """
    The authenticated caller, as supplied by the request layer.

    Authentication itself happens upstream; the core only checks
    role and ownership.
    """
    user_id: int
    role: Role
    ventana_id: int | None = None
    name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
