"""
Request-scoped dependencies shared by the routers.
"""

from fastapi import Header, HTTPException

from banca_ledger.errors import DomainError
from banca_ledger.models.enums import Role
from banca_ledger.schemas.common import Actor


def get_actor(
    x_actor_id: int = Header(...),
    x_actor_role: Role = Header(...),
    x_actor_ventana_id: int | None = Header(default=None),
    x_actor_name: str | None = Header(default=None),
) -> Actor:
    """
    Build the acting user from request headers.

    Authentication happens upstream; these headers are trusted.
    """
    return Actor(
        user_id=x_actor_id,
        role=x_actor_role,
        ventana_id=x_actor_ventana_id,
        name=x_actor_name,
    )


def http_error(error: DomainError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.to_dict())
