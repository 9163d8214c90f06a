"""
Pydantic schemas for account statements and payments.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from banca_ledger.models.enums import PaymentMethod, PaymentType


class StatementDimension(BaseModel):
    """Which owner a statement describes. At least one id is required."""
    banca_id: int | None = None
    ventana_id: int | None = None
    vendedor_id: int | None = None

    @model_validator(mode="after")
    def at_least_one_owner(self):
        if not (self.banca_id or self.ventana_id or self.vendedor_id):
            raise ValueError(
                "one of banca_id, ventana_id or vendedor_id is required"
            )
        return self


class StatementLookup(StatementDimension):
    date: date


class StatementDeltas(BaseModel):
    """Increments applied to a statement's aggregate figures."""
    total_sales: Decimal = Decimal("0")
    total_payouts: Decimal = Decimal("0")
    listero_commission: Decimal = Decimal("0")
    vendedor_commission: Decimal = Decimal("0")
    ticket_count: int = 0


class PaymentCreate(StatementDimension):
    date: date
    amount: Decimal = Field(gt=0, decimal_places=2)
    type: PaymentType
    method: PaymentMethod = PaymentMethod.CASH
    notes: str | None = Field(default=None, max_length=500)
    is_final: bool = False
    idempotency_key: str | None = Field(default=None, max_length=100)


class PaymentReverse(BaseModel):
    reason: str | None = Field(default=None, max_length=255)


class CloseMonthRequest(BaseModel):
    """Close one owner's month, or every owner with statements when no id is given."""
    month: str = Field(pattern=r"^\d{4}-\d{2}$")
    banca_id: int | None = None
    ventana_id: int | None = None
    vendedor_id: int | None = None


class CloseDayRequest(BaseModel):
    account_id: int
    date: date


class StatementResponse(BaseModel):
    id: int
    date: date
    month: str
    dimension_key: str
    banca_id: int | None
    ventana_id: int | None
    vendedor_id: int | None
    ticket_count: int
    total_sales: Decimal
    total_payouts: Decimal
    listero_commission: Decimal
    vendedor_commission: Decimal
    balance: Decimal
    total_paid: Decimal
    total_collected: Decimal
    remaining_balance: Decimal
    accumulated_balance: Decimal
    is_settled: bool
    can_edit: bool
    closed_at: datetime | None

    model_config = {"from_attributes": True}


class PaymentResponse(BaseModel):
    id: int
    account_statement_id: int
    date: date
    amount: Decimal
    type: PaymentType
    method: PaymentMethod
    notes: str | None
    is_final: bool
    idempotency_key: str | None
    paid_by_id: int
    is_reversed: bool
    reversed_at: datetime | None
    reversed_by: int | None
    created_at: datetime

    model_config = {"from_attributes": True}


class Movement(BaseModel):
    """One row of the interleaved daily activity list."""
    kind: Literal["sorteo", "payment", "collection"]
    reference_id: int
    label: str
    occurred_at: datetime
    amount: Decimal
    accumulated: Decimal = Decimal("0")


class DailySummary(BaseModel):
    statement: StatementResponse
    # Position carried in from earlier days; movements accumulate from it
    opening_balance: Decimal
    movements: list[Movement]


class MonthTotals(BaseModel):
    month: str
    total_sales: Decimal
    total_payouts: Decimal
    total_listero_commission: Decimal
    total_vendedor_commission: Decimal
    total_balance: Decimal
    total_paid: Decimal
    total_collected: Decimal
    total_remaining_balance: Decimal
    settled_days: int
    pending_days: int


class MonthlyClosingResponse(BaseModel):
    id: int
    closing_month: str
    dimension_key: str
    banca_id: int | None
    ventana_id: int | None
    vendedor_id: int | None
    opening_balance: Decimal
    closing_balance: Decimal
    ticket_count: int
    total_sales: Decimal
    total_payouts: Decimal
    total_commission: Decimal
    total_paid: Decimal
    total_collected: Decimal
    closed_at: datetime
    closed_by: int

    model_config = {"from_attributes": True}
