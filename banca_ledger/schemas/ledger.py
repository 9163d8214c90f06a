"""
Pydantic schemas for ledger operations.

These define the API contract: what data comes in,
what data goes out. They are separate from the database
models because the API shape and the storage shape
are often different.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from banca_ledger.models.enums import LedgerType, OwnerType, ReferenceType


# --- Request Schemas ---

class AccountGetOrCreate(BaseModel):
    owner_type: OwnerType
    owner_id: int
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class LedgerEntryCreate(BaseModel):
    """
    A single signed movement against an account.

    request_id makes retries of the same external event safe:
    a second append with the same request_id is a replay.
    """
    type: LedgerType
    value_signed: Decimal = Field(decimal_places=4)
    reference_type: ReferenceType | None = None
    reference_id: str | None = Field(default=None, max_length=64)
    note: str | None = Field(default=None, max_length=255)
    request_id: str | None = Field(default=None, max_length=100)
    created_by: int | None = None
    reversal_of_entry_id: int | None = None
    date: datetime | None = None

    @field_validator("value_signed")
    @classmethod
    def value_must_not_be_zero(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("value_signed must not be zero")
        return v


class ReverseEntryRequest(BaseModel):
    note: str | None = Field(default=None, max_length=255)
    request_id: str | None = Field(default=None, max_length=100)


class BankDepositCreate(BaseModel):
    date: datetime
    doc_number: str = Field(min_length=1, max_length=50)
    amount: Decimal = Field(gt=0, decimal_places=4)
    bank_name: str | None = Field(default=None, max_length=100)
    note: str | None = Field(default=None, max_length=255)
    request_id: str | None = Field(default=None, max_length=100)


class PaymentDocumentCreate(BaseModel):
    """A transfer of value between two ledger accounts."""
    from_account_id: int
    to_account_id: int
    amount: Decimal = Field(gt=0, decimal_places=4)
    doc_number: str = Field(min_length=1, max_length=50)
    date: datetime | None = None
    note: str | None = Field(default=None, max_length=255)
    request_id: str | None = Field(default=None, max_length=100)


# --- Response Schemas ---

class AccountResponse(BaseModel):
    id: int
    owner_type: OwnerType
    owner_id: int
    currency: str
    balance: Decimal
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class LedgerEntryResponse(BaseModel):
    id: int
    account_id: int
    type: LedgerType
    value_signed: Decimal
    reference_type: ReferenceType | None
    reference_id: str | None
    note: str | None
    request_id: str | None
    created_by: int
    reversal_of_entry_id: int | None
    date: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class BalanceSummaryResponse(BaseModel):
    account_id: int
    currency: str
    balance: Decimal
    calculated_balance: Decimal
    total_debit: Decimal
    total_credit: Decimal
    entry_count: int
    is_consistent: bool


class BankDepositResponse(BaseModel):
    id: int
    account_id: int
    date: datetime
    doc_number: str
    amount: Decimal
    bank_name: str | None
    note: str | None
    created_by: int
    created_at: datetime

    model_config = {"from_attributes": True}


class DailySnapshotResponse(BaseModel):
    account_id: int
    date: date
    opening: Decimal
    debit: Decimal
    credit: Decimal
    closing: Decimal

    model_config = {"from_attributes": True}
