"""
Commission resolver: the waterfall that prices a bet's commission.

Pure functions, no persistence. A policy is an ordered rule list;
the FIRST rule that matches wins, so policies must list their most
specific rules first. A policy with no matching rule returns None
("no match", not zero) and the caller escalates to the next tier:

    USER -> VENTANA -> BANCA -> system default

The listero (ventana) commission is resolved from the ventana and
banca tiers only, and the listero's share is the difference between
that and the seller's commission, floored at zero.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable

from pydantic import ValidationError

from banca_ledger.config import get_settings
from banca_ledger.logging_config import log_event
from banca_ledger.models.enums import BetType, CommissionOrigin
from banca_ledger.schemas.commission import (
    BetContext,
    CommissionMatch,
    CommissionPolicy,
    CommissionResolution,
    CommissionRule,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

PolicyInput = CommissionPolicy | dict[str, Any] | None
TierResolver = Callable[[BetContext], CommissionMatch | None]


def round2(value: Decimal) -> Decimal:
    """Round a money amount to 2 decimal places, half up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def commission_amount(amount: Decimal, percent: Decimal) -> Decimal:
    return round2(Decimal(amount) * Decimal(percent) / Decimal(100))


def parse_policy(
    policy: PolicyInput,
    origin: CommissionOrigin,
    now: datetime | None = None,
) -> CommissionPolicy | None:
    """
    Turn a stored policy document into a CommissionPolicy.

    Malformed documents, unsupported versions and policies outside
    their effective window are treated as absent so the waterfall
    moves on to the next tier instead of blocking the sale.
    """
    if policy is None:
        return None

    if isinstance(policy, CommissionPolicy):
        parsed = policy
    else:
        try:
            parsed = CommissionPolicy.model_validate(policy)
        except ValidationError as e:
            log_event(logger, logging.WARNING, "service", "COMMISSION_PARSE_ERROR", {
                "origin": origin.value,
                "errors": e.error_count(),
                "detail": str(e.errors()[0]["msg"]) if e.errors() else None,
            })
            return None

    now = now or datetime.now(timezone.utc).replace(tzinfo=None)
    if parsed.effective_from and _naive(parsed.effective_from) > now:
        log_event(logger, logging.INFO, "service", "COMMISSION_POLICY_NOT_EFFECTIVE", {
            "origin": origin.value,
            "effective_from": parsed.effective_from,
        })
        return None
    if parsed.effective_to and _naive(parsed.effective_to) < now:
        log_event(logger, logging.INFO, "service", "COMMISSION_POLICY_EXPIRED", {
            "origin": origin.value,
            "effective_to": parsed.effective_to,
        })
        return None

    return parsed


def _naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def rule_matches(rule: CommissionRule, ctx: BetContext) -> bool:
    if rule.loteria_id is not None and rule.loteria_id != ctx.loteria_id:
        return False
    if rule.bet_type != ctx.bet_type:
        return False
    # REVENTADO lines are priced before the extra multiplier is drawn,
    # so a range only narrows NUMERO rules.
    if rule.multiplier_range is not None and rule.bet_type == BetType.NUMERO:
        x = Decimal(ctx.final_multiplier_x)
        if not (rule.multiplier_range.min <= x <= rule.multiplier_range.max):
            return False
    return True


def resolve(policy: CommissionPolicy | None, ctx: BetContext) -> CommissionMatch | None:
    """Scan the rules in stored order and return the first match."""
    if policy is None:
        return None
    for rule in policy.rules:
        if rule_matches(rule, ctx):
            return CommissionMatch(percent=rule.percent, rule_id=rule.id)
    return None


def _tier(policy: PolicyInput, origin: CommissionOrigin) -> tuple[CommissionOrigin, TierResolver]:
    parsed = parse_policy(policy, origin)
    return origin, lambda ctx: resolve(parsed, ctx)


def _run_waterfall(
    tiers: list[tuple[CommissionOrigin, TierResolver]],
    ctx: BetContext,
    default_percent: Decimal | None,
) -> CommissionResolution:
    for origin, resolver in tiers:
        match = resolver(ctx)
        if match is not None:
            return CommissionResolution(
                percent=match.percent,
                commission_amount=commission_amount(ctx.amount, match.percent),
                origin=origin,
                rule_id=match.rule_id,
            )

    if default_percent is None:
        default_percent = get_settings().DEFAULT_COMMISSION_PERCENT
    log_event(logger, logging.DEBUG, "service", "COMMISSION_DEFAULT_APPLIED", {
        "loteria_id": ctx.loteria_id,
        "bet_type": ctx.bet_type.value,
        "multiplier_x": ctx.final_multiplier_x,
        "percent": default_percent,
    })
    return CommissionResolution(
        percent=default_percent,
        commission_amount=commission_amount(ctx.amount, default_percent),
        origin=CommissionOrigin.DEFAULT,
    )


def resolve_with_fallback(
    user_policy: PolicyInput,
    ventana_policy: PolicyInput,
    banca_policy: PolicyInput,
    ctx: BetContext,
    default_percent: Decimal | None = None,
) -> CommissionResolution:
    """Seller commission: USER -> VENTANA -> BANCA -> default."""
    tiers = [
        _tier(user_policy, CommissionOrigin.USER),
        _tier(ventana_policy, CommissionOrigin.VENTANA),
        _tier(banca_policy, CommissionOrigin.BANCA),
    ]
    return _run_waterfall(tiers, ctx, default_percent)


def resolve_listero(
    ventana_policy: PolicyInput,
    banca_policy: PolicyInput,
    ctx: BetContext,
    default_percent: Decimal | None = None,
) -> CommissionResolution:
    """Ventana commission for the same bet, bypassing the seller's policy."""
    tiers = [
        _tier(ventana_policy, CommissionOrigin.VENTANA),
        _tier(banca_policy, CommissionOrigin.BANCA),
    ]
    return _run_waterfall(tiers, ctx, default_percent)


def listero_commission_amount(
    ventana: CommissionResolution,
    vendedor: CommissionResolution,
) -> Decimal:
    """The ventana keeps what its commission exceeds the seller's, never less than 0."""
    return max(Decimal("0"), ventana.commission_amount - vendedor.commission_amount)
