"""
Ledger API endpoints.

These endpoints expose the ledger operations to HTTP clients.
The API layer is thin. It handles HTTP concerns (status codes,
response formatting) and delegates all business logic to the
LedgerService. Every write runs as one unit of work.
"""

from datetime import date, datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from banca_ledger.api.deps import get_actor, http_error
from banca_ledger.errors import DomainError, Forbidden
from banca_ledger.models.base import get_db
from banca_ledger.models.enums import LedgerType, ReferenceType
from banca_ledger.retry import run_unit_of_work
from banca_ledger.schemas.common import Actor
from banca_ledger.schemas.ledger import (
    AccountGetOrCreate,
    AccountResponse,
    BalanceSummaryResponse,
    BankDepositCreate,
    BankDepositResponse,
    DailySnapshotResponse,
    LedgerEntryCreate,
    LedgerEntryResponse,
    PaymentDocumentCreate,
    ReverseEntryRequest,
)
from banca_ledger.services.ledger_service import LedgerService

router = APIRouter(prefix="/ledger", tags=["Ledger"])


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise Forbidden("Only an admin may post ledger entries", code="LEDGER_FORBIDDEN")


@router.post("/accounts", response_model=AccountResponse, status_code=201)
def get_or_create_account(
    request: AccountGetOrCreate,
    db: Session = Depends(get_db),
):
    """
    Return the owner's account, creating it on first use.

    Calling this twice for the same owner returns the same account.
    """
    service = LedgerService(db)
    try:
        return run_unit_of_work(db, lambda: service.get_or_create_account(
            request.owner_type, request.owner_id, request.currency
        ))
    except DomainError as e:
        raise http_error(e)


@router.get("/accounts/{account_id}", response_model=AccountResponse)
def get_account(account_id: int, db: Session = Depends(get_db)):
    try:
        return LedgerService(db).get_account(account_id)
    except DomainError as e:
        raise http_error(e)


@router.post(
    "/accounts/{account_id}/entries",
    response_model=LedgerEntryResponse,
    status_code=201,
)
def add_ledger_entry(
    account_id: int,
    entry: LedgerEntryCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """
    Append a manual entry (adjustments).

    Re-sending the same request_id returns the original entry.
    """
    service = LedgerService(db)
    entry = entry.model_copy(update={"created_by": actor.user_id})

    def work():
        _require_admin(actor)
        return service.add_ledger_entry(account_id, entry)

    try:
        return run_unit_of_work(db, work)
    except DomainError as e:
        raise http_error(e)


@router.get(
    "/accounts/{account_id}/entries",
    response_model=list[LedgerEntryResponse],
)
def list_entries(
    account_id: int,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    types: list[LedgerType] | None = Query(default=None),
    reference_type: ReferenceType | None = None,
    db: Session = Depends(get_db),
):
    """Get the account's ledger entries, newest first."""
    try:
        return LedgerService(db).list_entries(
            account_id, date_from, date_to, types, reference_type
        )
    except DomainError as e:
        raise http_error(e)


@router.get(
    "/accounts/{account_id}/balance",
    response_model=BalanceSummaryResponse,
)
def get_balance_summary(account_id: int, db: Session = Depends(get_db)):
    """
    Cached balance next to an independent re-sum of the entries.

    is_consistent is false only if the two disagree.
    """
    try:
        return LedgerService(db).get_balance_summary(account_id)
    except DomainError as e:
        raise http_error(e)


@router.post(
    "/entries/{entry_id}/reverse",
    response_model=LedgerEntryResponse,
    status_code=201,
)
def reverse_entry(
    entry_id: int,
    request: ReverseEntryRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    service = LedgerService(db)

    def work():
        _require_admin(actor)
        return service.reverse_entry(
            entry_id, actor.user_id, request.request_id, request.note
        )

    try:
        return run_unit_of_work(db, work)
    except DomainError as e:
        raise http_error(e)


@router.post(
    "/accounts/{account_id}/deposits",
    response_model=BankDepositResponse,
    status_code=201,
)
def create_bank_deposit(
    account_id: int,
    request: BankDepositCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    service = LedgerService(db)
    try:
        deposit, _ = run_unit_of_work(
            db, lambda: service.create_bank_deposit(account_id, request, actor.user_id)
        )
        return deposit
    except DomainError as e:
        raise http_error(e)


@router.post(
    "/payment-documents",
    response_model=list[LedgerEntryResponse],
    status_code=201,
)
def create_payment_document(
    request: PaymentDocumentCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Post a balanced transfer between two accounts."""
    service = LedgerService(db)

    def work():
        _require_admin(actor)
        return service.create_payment_document(request, actor.user_id)

    try:
        return run_unit_of_work(db, work)
    except DomainError as e:
        raise http_error(e)


@router.post(
    "/accounts/{account_id}/snapshots",
    response_model=DailySnapshotResponse,
    status_code=201,
)
def create_daily_snapshot(
    account_id: int,
    day: date,
    db: Session = Depends(get_db),
):
    service = LedgerService(db)
    try:
        return run_unit_of_work(
            db, lambda: service.create_daily_snapshot(account_id, day)
        )
    except DomainError as e:
        raise http_error(e)


@router.get(
    "/accounts/{account_id}/snapshots",
    response_model=list[DailySnapshotResponse],
)
def get_daily_snapshots(
    account_id: int,
    date_from: date,
    date_to: date,
    db: Session = Depends(get_db),
):
    return LedgerService(db).get_daily_snapshots(account_id, date_from, date_to)
