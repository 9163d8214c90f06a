"""Business logic services."""

from banca_ledger.services.ledger_service import LedgerService
from banca_ledger.services.statement_service import StatementService
from banca_ledger.services.sorteo_service import SorteoService
from banca_ledger.services.ticket_service import TicketService
from banca_ledger.services.activity_service import ActivityService

__all__ = [
    "LedgerService",
    "StatementService",
    "SorteoService",
    "TicketService",
    "ActivityService",
]
