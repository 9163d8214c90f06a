"""
Sorteo API endpoints.

Lifecycle transitions and settlement. Evaluate and revert are
long-running admin operations; each runs as a single unit of work.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from banca_ledger.api.deps import get_actor, http_error
from banca_ledger.errors import DomainError
from banca_ledger.models.base import get_db
from banca_ledger.models.enums import SorteoStatus
from banca_ledger.retry import run_unit_of_work
from banca_ledger.schemas.common import Actor
from banca_ledger.schemas.sorteo import (
    EvaluateRequest,
    RevertRequest,
    SorteoCreate,
    SorteoResponse,
)
from banca_ledger.services.sorteo_service import SorteoService

router = APIRouter(prefix="/sorteos", tags=["Sorteos"])


@router.post("", response_model=SorteoResponse, status_code=201)
def create_sorteo(
    request: SorteoCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    service = SorteoService(db)
    try:
        return run_unit_of_work(db, lambda: service.create(request, actor))
    except DomainError as e:
        raise http_error(e)


@router.get("", response_model=list[SorteoResponse])
def list_sorteos(
    loteria_id: int | None = None,
    status: SorteoStatus | None = None,
    db: Session = Depends(get_db),
):
    return SorteoService(db).list_sorteos(loteria_id, status)


@router.get("/{sorteo_id}", response_model=SorteoResponse)
def get_sorteo(sorteo_id: int, db: Session = Depends(get_db)):
    try:
        return SorteoService(db).get(sorteo_id)
    except DomainError as e:
        raise http_error(e)


def _transition(db: Session, action, sorteo_id: int, actor: Actor):
    try:
        return run_unit_of_work(db, lambda: action(sorteo_id, actor))
    except DomainError as e:
        raise http_error(e)


@router.post("/{sorteo_id}/open", response_model=SorteoResponse)
def open_sorteo(
    sorteo_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return _transition(db, SorteoService(db).open, sorteo_id, actor)


@router.post("/{sorteo_id}/close", response_model=SorteoResponse)
def close_sorteo(
    sorteo_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return _transition(db, SorteoService(db).close, sorteo_id, actor)


@router.post("/{sorteo_id}/close-cascade", response_model=SorteoResponse)
def close_sorteo_with_cascade(
    sorteo_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Close the draw and lock all of its tickets."""
    return _transition(db, SorteoService(db).close_with_cascade, sorteo_id, actor)


@router.post("/{sorteo_id}/force-open", response_model=SorteoResponse)
def force_open_sorteo(
    sorteo_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return _transition(db, SorteoService(db).force_open, sorteo_id, actor)


@router.post("/{sorteo_id}/evaluate", response_model=SorteoResponse)
def evaluate_sorteo(
    sorteo_id: int,
    request: EvaluateRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """
    Record the outcome, mark winners and compute payouts.

    Fails with 400 if winning REVENTADO bets exist and no
    extra_multiplier_id was supplied.
    """
    service = SorteoService(db)
    try:
        return run_unit_of_work(
            db, lambda: service.evaluate(sorteo_id, request, actor)
        )
    except DomainError as e:
        raise http_error(e)


@router.post("/{sorteo_id}/revert", response_model=SorteoResponse)
def revert_sorteo_evaluation(
    sorteo_id: int,
    request: RevertRequest | None = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Undo an evaluation and reopen every statement it fed."""
    service = SorteoService(db)
    reason = request.reason if request else None
    try:
        return run_unit_of_work(
            db, lambda: service.revert_evaluation(sorteo_id, actor, reason)
        )
    except DomainError as e:
        raise http_error(e)
