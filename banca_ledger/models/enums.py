"""
Shared enumerations for database models.

Using Python enums mapped to database enums ensures that
only valid values can be stored.
"""

import enum


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    VENTANA = "VENTANA"
    VENDEDOR = "VENDEDOR"


class OwnerType(str, enum.Enum):
    """Who a ledger account belongs to."""
    BANCA = "BANCA"
    VENTANA = "VENTANA"
    VENDEDOR = "VENDEDOR"


class LedgerType(str, enum.Enum):
    """Business meaning of a ledger movement."""
    SALE = "SALE"
    PAYOUT = "PAYOUT"
    COMMISSION = "COMMISSION"
    DEPOSIT = "DEPOSIT"
    PAYMENT_IN = "PAYMENT_IN"
    PAYMENT_OUT = "PAYMENT_OUT"
    ADJUSTMENT = "ADJUSTMENT"
    REVERSAL = "REVERSAL"


class ReferenceType(str, enum.Enum):
    """Source document a ledger entry points back to."""
    TICKET = "TICKET"
    SORTEO = "SORTEO"
    DEPOSIT_RECEIPT = "DEPOSIT_RECEIPT"
    PAYMENT_DOCUMENT = "PAYMENT_DOCUMENT"
    ADJUSTMENT_DOC = "ADJUSTMENT_DOC"
    LEDGER_ENTRY = "LEDGER_ENTRY"


class PaymentType(str, enum.Enum):
    PAYMENT = "payment"
    COLLECTION = "collection"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    TRANSFER = "transfer"
    CHECK = "check"
    OTHER = "other"


class SorteoStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    OPEN = "OPEN"
    EVALUATED = "EVALUATED"
    CLOSED = "CLOSED"


class TicketStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    EVALUATED = "EVALUATED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class BetType(str, enum.Enum):
    NUMERO = "NUMERO"
    REVENTADO = "REVENTADO"


class CommissionOrigin(str, enum.Enum):
    """Waterfall tier a commission was resolved from."""
    USER = "USER"
    VENTANA = "VENTANA"
    BANCA = "BANCA"
    DEFAULT = "DEFAULT"
