"""
Pydantic schemas for commission policies.

Policies are stored as flexible JSON documents on bancas, ventanas
and users. At the service boundary they are parsed into these
typed models; anything that fails to parse is treated as absent.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from banca_ledger.models.enums import BetType, CommissionOrigin


class MultiplierRange(BaseModel):
    min: Decimal
    max: Decimal

    @model_validator(mode="after")
    def min_not_above_max(self):
        if self.min > self.max:
            raise ValueError("multiplierRange.min must be <= max")
        return self


class CommissionRule(BaseModel):
    id: str = Field(min_length=1)
    loteria_id: int | None = Field(default=None, alias="loteriaId")
    bet_type: BetType = Field(alias="betType")
    multiplier_range: MultiplierRange | None = Field(
        default=None, alias="multiplierRange"
    )
    percent: Decimal = Field(ge=0, le=100)

    model_config = {"populate_by_name": True}


class CommissionPolicy(BaseModel):
    """An ordered rule list. The first matching rule wins."""
    version: Literal[1] = 1
    rules: list[CommissionRule] = Field(default_factory=list)
    effective_from: datetime | None = Field(default=None, alias="effectiveFrom")
    effective_to: datetime | None = Field(default=None, alias="effectiveTo")

    model_config = {"populate_by_name": True}


class BetContext(BaseModel):
    """What the resolver needs to know about one bet line."""
    loteria_id: int
    bet_type: BetType
    final_multiplier_x: Decimal
    amount: Decimal = Decimal("0")


class CommissionMatch(BaseModel):
    percent: Decimal
    rule_id: str


class CommissionResolution(BaseModel):
    percent: Decimal
    commission_amount: Decimal
    origin: CommissionOrigin
    rule_id: str | None = None


# --- API Schemas ---

class ResolveCommissionRequest(BaseModel):
    vendedor_id: int
    loteria_id: int
    bet_type: BetType
    final_multiplier_x: Decimal = Field(ge=0)
    amount: Decimal = Field(gt=0, decimal_places=2)


class ResolveCommissionResponse(BaseModel):
    vendedor: CommissionResolution
    ventana: CommissionResolution
    listero_commission_amount: Decimal
