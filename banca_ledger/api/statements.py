"""
Account statement API endpoints.

Payments, reversals, the day lock and month closing. All writes go through the
StatementService inside one unit of work.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from banca_ledger.api.deps import get_actor, http_error
from banca_ledger.errors import DomainError
from banca_ledger.models.base import get_db
from banca_ledger.retry import run_unit_of_work
from banca_ledger.schemas.common import Actor
from banca_ledger.schemas.statement import (
    CloseDayRequest,
    CloseMonthRequest,
    DailySummary,
    MonthlyClosingResponse,
    MonthTotals,
    PaymentCreate,
    PaymentResponse,
    PaymentReverse,
    StatementLookup,
    StatementResponse,
)
from banca_ledger.services.statement_service import StatementService

router = APIRouter(prefix="/statements", tags=["Statements"])


@router.post("/find", response_model=StatementResponse)
def find_or_create_statement(
    request: StatementLookup,
    db: Session = Depends(get_db),
):
    """Return the statement for a day and owner, creating it if needed."""
    service = StatementService(db)
    try:
        return run_unit_of_work(db, lambda: service.find_or_create(
            request.date,
            banca_id=request.banca_id,
            ventana_id=request.ventana_id,
            vendedor_id=request.vendedor_id,
        ))
    except DomainError as e:
        raise http_error(e)


@router.post("/payments", response_model=PaymentResponse, status_code=201)
def create_payment(
    request: PaymentCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """
    Register a payment or collection.

    Re-sending the same idempotency_key returns the original payment.
    """
    service = StatementService(db)
    try:
        return run_unit_of_work(db, lambda: service.create_payment(request, actor))
    except DomainError as e:
        raise http_error(e)


@router.post("/payments/{payment_id}/reverse", response_model=PaymentResponse)
def reverse_payment(
    payment_id: int,
    request: PaymentReverse,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    service = StatementService(db)
    try:
        return run_unit_of_work(
            db, lambda: service.reverse_payment(payment_id, actor, request.reason)
        )
    except DomainError as e:
        raise http_error(e)


@router.post("/close-day", response_model=StatementResponse)
def close_day(
    request: CloseDayRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    service = StatementService(db)
    try:
        return run_unit_of_work(
            db, lambda: service.close_day(request.account_id, request.date, actor)
        )
    except DomainError as e:
        raise http_error(e)


@router.post("/{statement_id}/reopen", response_model=StatementResponse)
def reopen_day(
    statement_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    service = StatementService(db)
    try:
        return run_unit_of_work(db, lambda: service.reopen_day(statement_id, actor))
    except DomainError as e:
        raise http_error(e)


@router.get("/daily-summary", response_model=DailySummary)
def get_daily_summary(
    day: date = Query(alias="date"),
    banca_id: int | None = None,
    ventana_id: int | None = None,
    vendedor_id: int | None = None,
    db: Session = Depends(get_db),
):
    try:
        return StatementService(db).get_daily_summary(
            day, banca_id, ventana_id, vendedor_id
        )
    except DomainError as e:
        raise http_error(e)


@router.get("/month-totals", response_model=MonthTotals)
def get_month_totals(
    month: str = Query(pattern=r"^\d{4}-\d{2}$"),
    banca_id: int | None = None,
    ventana_id: int | None = None,
    vendedor_id: int | None = None,
    db: Session = Depends(get_db),
):
    try:
        return StatementService(db).get_month_totals(
            month, banca_id, ventana_id, vendedor_id
        )
    except DomainError as e:
        raise http_error(e)


@router.post("/close-month", response_model=list[MonthlyClosingResponse])
def close_month(
    request: CloseMonthRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """
    Store month-end balances. Without an owner id every owner with
    statements in the month is closed.
    """
    service = StatementService(db)
    try:
        return run_unit_of_work(db, lambda: service.close_month(
            request.month,
            actor,
            banca_id=request.banca_id,
            ventana_id=request.ventana_id,
            vendedor_id=request.vendedor_id,
        ))
    except DomainError as e:
        raise http_error(e)


@router.get("/month-closing", response_model=MonthlyClosingResponse)
def get_month_closing(
    month: str = Query(pattern=r"^\d{4}-\d{2}$"),
    banca_id: int | None = None,
    ventana_id: int | None = None,
    vendedor_id: int | None = None,
    db: Session = Depends(get_db),
):
    try:
        return StatementService(db).get_month_closing(
            month, banca_id, ventana_id, vendedor_id
        )
    except DomainError as e:
        raise http_error(e)


@router.delete("/{statement_id}", status_code=204)
def delete_statement(
    statement_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Delete an empty statement."""
    service = StatementService(db)
    try:
        run_unit_of_work(db, lambda: service.delete_statement(statement_id, actor))
    except DomainError as e:
        raise http_error(e)
    return Response(status_code=204)
