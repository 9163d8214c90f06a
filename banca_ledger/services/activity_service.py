"""
Activity sink: one audit record per state-changing operation.

Fire-and-forget: the record is written inside a savepoint so that a
failed write rolls back only itself. The error is logged and never
reaches the financial operation that emitted it.
"""

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from banca_ledger.logging_config import log_event
from banca_ledger.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)


class ActivityService:

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        user_id: int | None,
        action: str,
        target_type: str,
        target_id: Any,
        details: dict[str, Any] | None = None,
        request_id: str | None = None,
    ) -> None:
        try:
            with self.db.begin_nested():
                self.db.add(ActivityLog(
                    user_id=user_id,
                    action=action,
                    target_type=target_type,
                    target_id=str(target_id),
                    details=_jsonable(details or {}),
                    request_id=request_id,
                ))
        except SQLAlchemyError as e:
            log_event(logger, logging.WARNING, "activity", "AUDIT_WRITE_FAILED", {
                "action": action,
                "target_type": target_type,
                "target_id": target_id,
                "error": str(e),
            })


def _jsonable(value: Any) -> Any:
    """Make Decimals, dates and enums safe for a JSON column."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if hasattr(value, "value") and not callable(value.value):
        return value.value
    return str(value)
