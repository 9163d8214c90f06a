"""
Banca Ledger: FastAPI Application.

This is the entry point for the application.
All routers are registered here.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from banca_ledger.config import get_settings
from banca_ledger.errors import DomainError
from banca_ledger.logging_config import configure_logging, log_event
from banca_ledger.api.health import router as health_router
from banca_ledger.api.ledger import router as ledger_router
from banca_ledger.api.statements import router as statements_router
from banca_ledger.api.sorteos import router as sorteos_router
from banca_ledger.api.tickets import router as tickets_router
from banca_ledger.api.commissions import router as commissions_router

settings = get_settings()
configure_logging()

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Ledger and settlement engine for a lottery sales network",
)


@app.exception_handler(DomainError)
def domain_error_handler(request: Request, exc: DomainError):
    """Translate a business-rule error that escaped a router."""
    log_event(logger, logging.WARNING, "api", "DOMAIN_ERROR", {
        "path": request.url.path,
        "code": exc.code,
        "message": exc.message,
    })
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.to_dict()},
    )


# Register routers
app.include_router(health_router)
app.include_router(ledger_router)
app.include_router(statements_router)
app.include_router(sorteos_router)
app.include_router(tickets_router)
app.include_router(commissions_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
