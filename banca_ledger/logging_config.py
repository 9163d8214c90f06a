"""
Logging setup.

Operational logs use the {layer, action, payload} shape so they
can be filtered by component and event. They are observability
only and never part of correctness.
"""

import json
import logging

from banca_ledger.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format=LOG_FORMAT,
    )


def log_event(
    logger: logging.Logger,
    level: int,
    layer: str,
    action: str,
    payload: dict | None = None,
) -> None:
    """Emit one structured log line."""
    if not logger.isEnabledFor(level):
        return
    body = json.dumps(payload or {}, default=str, sort_keys=True)
    logger.log(
        level,
        "[%s] %s %s",
        layer,
        action,
        body,
        extra={"layer": layer, "action": action, "payload": payload or {}},
    )
