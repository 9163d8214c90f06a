"""
Connection-level retries.

Retries wrap a whole unit of work (service call + commit), never a
step inside a financial transaction. A unit of work that is retried
must be idempotent (ledger appends keyed by request_id) or
re-entrant (payments keyed by idempotency_key).
"""

import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from banca_ledger.config import get_settings
from banca_ledger.errors import Unavailable
from banca_ledger.logging_config import log_event

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (OperationalError, DisconnectionError, PoolTimeoutError)


def _log_retry(retry_state) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    log_event(logger, logging.WARNING, "transaction", "RETRY", {
        "attempt": retry_state.attempt_number,
        "error": str(error),
    })


def run_unit_of_work(db: Session, work: Callable[[], T]) -> T:
    """
    Run work() and commit, retrying transient connection failures.

    Any failure rolls the session back so no partial mutation is
    ever committed. Business errors are not retried.
    """
    settings = get_settings()
    retrying = Retrying(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(settings.DB_RETRY_ATTEMPTS),
        wait=wait_random_exponential(
            multiplier=settings.DB_RETRY_BACKOFF_MIN_MS / 1000,
            max=settings.DB_RETRY_BACKOFF_MAX_MS / 1000,
        ),
        before_sleep=_log_retry,
    )

    def attempt() -> T:
        try:
            result = work()
            db.commit()
            return result
        except Exception:
            db.rollback()
            raise

    try:
        return retrying(attempt)
    except RetryError as e:
        error = e.last_attempt.exception()
        log_event(logger, logging.ERROR, "transaction", "FAIL", {
            "attempts": settings.DB_RETRY_ATTEMPTS,
            "error": str(error),
        })
        raise Unavailable(
            "Database temporarily unavailable, try again later"
        ) from error
