"""
Ticket API endpoints: sales, cancellations and prize payments.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from banca_ledger.api.deps import get_actor, http_error
from banca_ledger.errors import DomainError
from banca_ledger.models.base import get_db
from banca_ledger.retry import run_unit_of_work
from banca_ledger.schemas.common import Actor
from banca_ledger.schemas.sorteo import (
    PrizePaymentCreate,
    TicketPaymentResponse,
    TicketResponse,
    TicketSell,
)
from banca_ledger.services.ticket_service import TicketService

router = APIRouter(prefix="/tickets", tags=["Tickets"])


@router.post("", response_model=TicketResponse, status_code=201)
def sell_ticket(
    request: TicketSell,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    service = TicketService(db)
    try:
        return run_unit_of_work(db, lambda: service.sell(request, actor))
    except DomainError as e:
        raise http_error(e)


@router.get("/{ticket_id}", response_model=TicketResponse)
def get_ticket(ticket_id: int, db: Session = Depends(get_db)):
    try:
        return TicketService(db).get(ticket_id)
    except DomainError as e:
        raise http_error(e)


@router.post("/{ticket_id}/cancel", response_model=TicketResponse)
def cancel_ticket(
    ticket_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    service = TicketService(db)
    try:
        return run_unit_of_work(db, lambda: service.cancel(ticket_id, actor))
    except DomainError as e:
        raise http_error(e)


@router.post(
    "/{ticket_id}/payments",
    response_model=TicketPaymentResponse,
    status_code=201,
)
def pay_prize(
    ticket_id: int,
    request: PrizePaymentCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Pay all or part of a winning ticket's prize."""
    service = TicketService(db)
    try:
        return run_unit_of_work(
            db, lambda: service.pay_prize(ticket_id, request, actor)
        )
    except DomainError as e:
        raise http_error(e)
