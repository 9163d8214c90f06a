"""
Commission API endpoint.

Read-only: prices a bet through the waterfall without selling it.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from banca_ledger.api.deps import http_error
from banca_ledger.errors import DomainError
from banca_ledger.models.base import get_db
from banca_ledger.schemas.commission import (
    ResolveCommissionRequest,
    ResolveCommissionResponse,
)
from banca_ledger.services.ticket_service import TicketService

router = APIRouter(prefix="/commissions", tags=["Commissions"])


@router.post("/resolve", response_model=ResolveCommissionResponse)
def resolve_commission(
    request: ResolveCommissionRequest,
    db: Session = Depends(get_db),
):
    """
    Resolve the vendedor and ventana commissions for one bet.

    Each resolution reports the tier it came from (USER, VENTANA,
    BANCA or DEFAULT).
    """
    try:
        return TicketService(db).quote_commission(request)
    except DomainError as e:
        raise http_error(e)
