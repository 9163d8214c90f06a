"""
Database models package.

All models must be imported here so that Alembic can discover
them through Base.metadata when generating migrations.
"""

from banca_ledger.models.base import Base
from banca_ledger.models.enums import (
    Role,
    OwnerType,
    LedgerType,
    ReferenceType,
    PaymentType,
    PaymentMethod,
    SorteoStatus,
    TicketStatus,
    BetType,
    CommissionOrigin,
)
from banca_ledger.models.activity_log import ActivityLog
from banca_ledger.models.organization import Banca, Ventana, User
from banca_ledger.models.loteria import Loteria, LoteriaMultiplier
from banca_ledger.models.account import Account
from banca_ledger.models.ledger_entry import LedgerEntry
from banca_ledger.models.bank_deposit import BankDeposit, DailyBalanceSnapshot
from banca_ledger.models.account_statement import (
    AccountStatement,
    AccountPayment,
    MonthlyClosingBalance,
)
from banca_ledger.models.sorteo import Sorteo
from banca_ledger.models.ticket import Ticket, Jugada, TicketPayment

__all__ = [
    "Base",
    "Role",
    "OwnerType",
    "LedgerType",
    "ReferenceType",
    "PaymentType",
    "PaymentMethod",
    "SorteoStatus",
    "TicketStatus",
    "BetType",
    "CommissionOrigin",
    "ActivityLog",
    "Banca",
    "Ventana",
    "User",
    "Loteria",
    "LoteriaMultiplier",
    "Account",
    "LedgerEntry",
    "BankDeposit",
    "DailyBalanceSnapshot",
    "AccountStatement",
    "AccountPayment",
    "MonthlyClosingBalance",
    "Sorteo",
    "Ticket",
    "Jugada",
    "TicketPayment",
]
