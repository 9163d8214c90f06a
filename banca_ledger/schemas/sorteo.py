"""
Pydantic schemas for draws, tickets and prize payments.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from banca_ledger.models.enums import BetType, SorteoStatus, TicketStatus


# --- Sorteo Schemas ---

class SorteoCreate(BaseModel):
    loteria_id: int
    name: str = Field(min_length=1, max_length=100)
    scheduled_at: datetime


class EvaluateRequest(BaseModel):
    winning_number: str = Field(min_length=1, max_length=10)
    extra_outcome_code: str | None = Field(default=None, max_length=50)
    extra_multiplier_id: int | None = None


class RevertRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=255)


class SorteoResponse(BaseModel):
    id: int
    loteria_id: int
    name: str
    scheduled_at: datetime
    status: SorteoStatus
    winning_number: str | None
    extra_outcome_code: str | None
    extra_multiplier_id: int | None
    extra_multiplier_x: Decimal | None
    has_winner: bool

    model_config = {"from_attributes": True}


# --- Ticket Schemas ---

class JugadaCreate(BaseModel):
    type: BetType = BetType.NUMERO
    number: str = Field(min_length=1, max_length=10)
    reventado_number: str | None = Field(default=None, max_length=10)
    amount: Decimal = Field(gt=0, decimal_places=2)


class TicketSell(BaseModel):
    sorteo_id: int
    vendedor_id: int | None = None
    jugadas: list[JugadaCreate] = Field(min_length=1)


class JugadaResponse(BaseModel):
    id: int
    type: BetType
    number: str
    reventado_number: str | None
    amount: Decimal
    multiplier_id: int | None
    final_multiplier_x: Decimal
    commission_percent: Decimal
    commission_amount: Decimal
    listero_commission_amount: Decimal
    is_winner: bool
    payout: Decimal

    model_config = {"from_attributes": True}


class TicketResponse(BaseModel):
    id: int
    ticket_number: str
    sorteo_id: int
    ventana_id: int
    vendedor_id: int
    business_date: date
    status: TicketStatus
    total_amount: Decimal
    total_payout: Decimal
    total_paid: Decimal
    remaining_amount: Decimal
    is_winner: bool
    is_sorteo_closed: bool
    jugadas: list[JugadaResponse]

    model_config = {"from_attributes": True}


class PrizePaymentCreate(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)
    idempotency_key: str | None = Field(default=None, max_length=100)


class TicketPaymentResponse(BaseModel):
    id: int
    ticket_id: int
    amount: Decimal
    paid_by_id: int
    idempotency_key: str | None
    created_at: datetime

    model_config = {"from_attributes": True}
