"""
Account-statement closure engine.

One AccountStatement per (business date, dimension). A dimension is
the most specific owner given: vendedor, then ventana, then banca.

Sales figures come from the day's tickets; payment figures come
from the statement's non-reversed AccountPayments. Every mutation
ends by re-deriving:

    balance           = total_sales - total_payouts
                        - listero_commission - vendedor_commission
    remaining_balance = balance - total_paid + total_collected
    accumulated       = previous day's accumulated (or the previous
                        month's closing balance) + remaining_balance
    is_settled        = ticket_count > 0
                        and |remaining_balance| < epsilon
                        and (total_paid > 0 or total_collected > 0)

A closed day (closed_at set) rejects payment mutations until an
admin reopens it.
"""

import logging
from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from sqlalchemy import select, func, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from banca_ledger.config import get_settings
from banca_ledger.errors import (
    DuplicateRequest,
    Forbidden,
    InvalidState,
    NotFound,
    ValidationConflict,
)
from banca_ledger.logging_config import log_event
from banca_ledger.models.account_statement import (
    AccountStatement,
    AccountPayment,
    MonthlyClosingBalance,
)
from banca_ledger.models.base import utcnow
from banca_ledger.models.enums import OwnerType, PaymentType, Role, TicketStatus
from banca_ledger.models.organization import User, Ventana
from banca_ledger.models.sorteo import Sorteo
from banca_ledger.models.ticket import Ticket, Jugada
from banca_ledger.schemas.common import Actor
from banca_ledger.schemas.statement import (
    DailySummary,
    Movement,
    MonthTotals,
    PaymentCreate,
    StatementDeltas,
    StatementResponse,
)
from banca_ledger.services.activity_service import ActivityService
from banca_ledger.services.business_dates import (
    business_today,
    month_of,
    next_month,
    previous_month,
)
from banca_ledger.services.commission_resolver import round2
from banca_ledger.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# (business date, level, owner id), e.g. (date(2025, 1, 3), "ventana", 7)
DimensionDay = tuple[date, str, int]

OWNER_LEVELS = {
    OwnerType.BANCA: "banca",
    OwnerType.VENTANA: "ventana",
    OwnerType.VENDEDOR: "vendedor",
}


def dimension_key(level: str, owner_id: int) -> str:
    return f"{level}:{owner_id}"


def touched_dimensions(tickets: Iterable[Ticket]) -> set[DimensionDay]:
    """Every (day, level, id) whose statement a set of tickets feeds."""
    touched: set[DimensionDay] = set()
    for ticket in tickets:
        touched.add((ticket.business_date, "vendedor", ticket.vendedor_id))
        touched.add((ticket.business_date, "ventana", ticket.ventana_id))
        touched.add((ticket.business_date, "banca", ticket.banca_id))
    return touched


class StatementService:

    def __init__(self, db: Session):
        self.db = db
        self.activity = ActivityService(db)

    # --- Lookup ---

    def _resolve_dimension(
        self,
        banca_id: int | None,
        ventana_id: int | None,
        vendedor_id: int | None,
    ) -> tuple[str, int | None, int | None, int | None]:
        """
        Fill in the owners above the most specific id given.

        A vendedor's ventana comes from the vendedor's current
        assignment and the ventana's banca from the ventana row.
        """
        if vendedor_id is not None and ventana_id is None:
            vendedor = self.db.get(User, vendedor_id)
            if not vendedor:
                raise NotFound(
                    f"Vendedor {vendedor_id} not found", code="VENDEDOR_NOT_FOUND"
                )
            ventana_id = vendedor.ventana_id

        if ventana_id is not None and banca_id is None:
            ventana = self.db.get(Ventana, ventana_id)
            if not ventana:
                raise NotFound(
                    f"Ventana {ventana_id} not found", code="VENTANA_NOT_FOUND"
                )
            banca_id = ventana.banca_id

        if vendedor_id is not None:
            key = dimension_key("vendedor", vendedor_id)
        elif ventana_id is not None:
            key = dimension_key("ventana", ventana_id)
        elif banca_id is not None:
            key = dimension_key("banca", banca_id)
        else:
            raise ValidationConflict(
                "one of banca_id, ventana_id or vendedor_id is required",
                code="DIMENSION_REQUIRED",
            )
        return key, banca_id, ventana_id, vendedor_id

    def _find(self, day: date, key: str) -> AccountStatement | None:
        return self.db.execute(
            select(AccountStatement).where(
                AccountStatement.date == day,
                AccountStatement.dimension_key == key,
            )
        ).scalar_one_or_none()

    def find(
        self,
        day: date,
        banca_id: int | None = None,
        ventana_id: int | None = None,
        vendedor_id: int | None = None,
    ) -> AccountStatement | None:
        """Read-only lookup; never creates."""
        key, _, _, _ = self._resolve_dimension(banca_id, ventana_id, vendedor_id)
        return self._find(day, key)

    def find_or_create(
        self,
        day: date,
        banca_id: int | None = None,
        ventana_id: int | None = None,
        vendedor_id: int | None = None,
    ) -> AccountStatement:
        key, banca_id, ventana_id, vendedor_id = self._resolve_dimension(
            banca_id, ventana_id, vendedor_id
        )

        existing = self._find(day, key)
        if existing:
            return self._backfill(existing, banca_id, ventana_id)

        statement = AccountStatement(
            date=day,
            month=month_of(day),
            dimension_key=key,
            banca_id=banca_id,
            ventana_id=ventana_id,
            vendedor_id=vendedor_id,
            ticket_count=0,
            total_sales=ZERO,
            total_payouts=ZERO,
            listero_commission=ZERO,
            vendedor_commission=ZERO,
            balance=ZERO,
            total_paid=ZERO,
            total_collected=ZERO,
            remaining_balance=ZERO,
            accumulated_balance=self._carried_in(day, key),
            is_settled=False,
            can_edit=True,
        )
        try:
            with self.db.begin_nested():
                self.db.add(statement)
        except IntegrityError:
            # Lost a creation race on (date, dimension_key)
            existing = self._find(day, key)
            if existing is None:
                raise
            return existing

        log_event(logger, logging.INFO, "service", "STATEMENT_CREATED", {
            "statement_id": statement.id,
            "date": day,
            "dimension_key": key,
        })
        return statement

    def _backfill(
        self,
        statement: AccountStatement,
        banca_id: int | None,
        ventana_id: int | None,
    ) -> AccountStatement:
        """
        Attach missing parent owners to an existing statement.

        Runs in a savepoint: if the write collides with a uniqueness
        rule the savepoint is discarded and the statement is returned
        as it was stored.
        """
        missing_ventana = statement.ventana_id is None and ventana_id is not None
        missing_banca = statement.banca_id is None and banca_id is not None
        if not (missing_ventana or missing_banca):
            return statement

        try:
            with self.db.begin_nested():
                if missing_ventana:
                    statement.ventana_id = ventana_id
                if missing_banca:
                    statement.banca_id = banca_id
        except IntegrityError:
            log_event(logger, logging.WARNING, "service", "STATEMENT_BACKFILL_SKIPPED", {
                "statement_id": statement.id,
                "ventana_id": ventana_id,
                "banca_id": banca_id,
            })
            self.db.refresh(statement)
            return statement

        log_event(logger, logging.INFO, "service", "STATEMENT_BACKFILLED", {
            "statement_id": statement.id,
            "ventana_id": statement.ventana_id,
            "banca_id": statement.banca_id,
        })
        return statement

    def get(self, statement_id: int) -> AccountStatement:
        statement = self.db.get(AccountStatement, statement_id)
        if not statement:
            raise NotFound(
                f"Statement {statement_id} not found", code="STATEMENT_NOT_FOUND"
            )
        return statement

    def _lock(self, statement_id: int) -> AccountStatement:
        statement = self.db.execute(
            select(AccountStatement)
            .where(AccountStatement.id == statement_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if not statement:
            raise NotFound(
                f"Statement {statement_id} not found", code="STATEMENT_NOT_FOUND"
            )
        return statement

    # --- Aggregates ---

    def _apply_derived(self, statement: AccountStatement) -> None:
        epsilon = get_settings().SETTLEMENT_EPSILON
        statement.balance = round2(
            Decimal(statement.total_sales)
            - Decimal(statement.total_payouts)
            - Decimal(statement.listero_commission)
            - Decimal(statement.vendedor_commission)
        )
        statement.remaining_balance = round2(
            statement.balance
            - Decimal(statement.total_paid)
            + Decimal(statement.total_collected)
        )
        has_movement = statement.total_paid > 0 or statement.total_collected > 0
        statement.is_settled = (
            statement.ticket_count > 0
            and abs(statement.remaining_balance) < epsilon
            and has_movement
        )
        statement.can_edit = not statement.is_settled and not statement.is_closed
        statement.accumulated_balance = round2(
            self._carried_in(statement.date, statement.dimension_key)
            + statement.remaining_balance
        )
        self._carry_forward(statement)

    # --- Running position ---

    def _find_closing(self, month: str, key: str) -> MonthlyClosingBalance | None:
        return self.db.execute(
            select(MonthlyClosingBalance).where(
                MonthlyClosingBalance.closing_month == month,
                MonthlyClosingBalance.dimension_key == key,
            )
        ).scalar_one_or_none()

    def _month_opening(self, month: str, key: str) -> Decimal:
        """The previous month's closing balance, or zero if it was never closed."""
        closing = self._find_closing(previous_month(month), key)
        if closing is None:
            return ZERO
        return Decimal(closing.closing_balance)

    def _carried_in(self, day: date, key: str) -> Decimal:
        """Position an owner enters a day with."""
        previous = self.db.execute(
            select(AccountStatement)
            .where(
                AccountStatement.dimension_key == key,
                AccountStatement.month == month_of(day),
                AccountStatement.date < day,
            )
            .order_by(AccountStatement.date.desc())
            .limit(1)
        ).scalar_one_or_none()
        if previous is not None:
            return Decimal(previous.accumulated_balance)
        return self._month_opening(month_of(day), key)

    def _carry_forward(self, statement: AccountStatement) -> None:
        """Re-chain accumulated_balance over the owner's later days in the month."""
        later = self.db.execute(
            select(AccountStatement)
            .where(
                AccountStatement.dimension_key == statement.dimension_key,
                AccountStatement.month == statement.month,
                AccountStatement.date > statement.date,
            )
            .order_by(AccountStatement.date)
            .with_for_update()
        ).scalars().all()

        running = Decimal(statement.accumulated_balance)
        for following in later:
            running = round2(running + Decimal(following.remaining_balance))
            following.accumulated_balance = running

    def _payment_totals(
        self, statement_id: int, exclude_payment_id: int | None = None
    ) -> tuple[Decimal, Decimal]:
        """(total_paid, total_collected) over non-reversed payments."""
        query = (
            select(AccountPayment.type, func.coalesce(func.sum(AccountPayment.amount), 0))
            .where(
                AccountPayment.account_statement_id == statement_id,
                AccountPayment.is_reversed.is_(False),
            )
            .group_by(AccountPayment.type)
        )
        if exclude_payment_id is not None:
            query = query.where(AccountPayment.id != exclude_payment_id)

        totals = {kind: Decimal(str(total)) for kind, total in self.db.execute(query)}
        return (
            totals.get(PaymentType.PAYMENT, ZERO),
            totals.get(PaymentType.COLLECTION, ZERO),
        )

    def _refresh_payments(self, statement: AccountStatement) -> None:
        statement.total_paid, statement.total_collected = self._payment_totals(
            statement.id
        )
        self._apply_derived(statement)

    def _ticket_filter(self, statement: AccountStatement) -> list:
        level, owner_id = statement.dimension_key.split(":")
        column = {
            "vendedor": Ticket.vendedor_id,
            "ventana": Ticket.ventana_id,
            "banca": Ticket.banca_id,
        }[level]
        return [
            Ticket.business_date == statement.date,
            Ticket.status != TicketStatus.CANCELLED,
            column == int(owner_id),
        ]

    def recompute(self, statement: AccountStatement) -> AccountStatement:
        """
        Rebuild every figure from the day's tickets and payments.

        Cancelled tickets are excluded.
        """
        conditions = self._ticket_filter(statement)

        ticket_count, total_payouts = self.db.execute(
            select(
                func.count(Ticket.id),
                func.coalesce(func.sum(Ticket.total_payout), 0),
            ).where(*conditions)
        ).one()
        total_sales, vendedor_commission, listero_commission = self.db.execute(
            select(
                func.coalesce(func.sum(Jugada.amount), 0),
                func.coalesce(func.sum(Jugada.commission_amount), 0),
                func.coalesce(func.sum(Jugada.listero_commission_amount), 0),
            )
            .join(Ticket, Jugada.ticket_id == Ticket.id)
            .where(*conditions)
        ).one()

        statement.ticket_count = ticket_count
        statement.total_sales = Decimal(str(total_sales))
        statement.total_payouts = Decimal(str(total_payouts))
        statement.vendedor_commission = Decimal(str(vendedor_commission))
        statement.listero_commission = Decimal(str(listero_commission))
        self._refresh_payments(statement)
        self.db.flush()
        return statement

    def update(self, statement_id: int, deltas: StatementDeltas) -> AccountStatement:
        """Add deltas to the sales-side figures and re-derive."""
        statement = self._lock(statement_id)
        if statement.is_closed:
            raise InvalidState(
                f"Statement {statement_id} day is closed", code="DAY_CLOSED"
            )

        statement.ticket_count += deltas.ticket_count
        statement.total_sales = Decimal(statement.total_sales) + deltas.total_sales
        statement.total_payouts = (
            Decimal(statement.total_payouts) + deltas.total_payouts
        )
        statement.listero_commission = (
            Decimal(statement.listero_commission) + deltas.listero_commission
        )
        statement.vendedor_commission = (
            Decimal(statement.vendedor_commission) + deltas.vendedor_commission
        )
        self._apply_derived(statement)
        self.db.flush()
        return statement

    def refresh_days(self, touched: Iterable[DimensionDay]) -> list[AccountStatement]:
        """find_or_create + recompute for every touched dimension day."""
        refreshed = []
        for day, level, owner_id in sorted(touched):
            statement = self.find_or_create(day, **{f"{level}_id": owner_id})
            refreshed.append(self.recompute(self._lock(statement.id)))
        return refreshed

    # --- Payments ---

    def _find_payment_by_key(self, key: str) -> AccountPayment | None:
        return self.db.execute(
            select(AccountPayment).where(AccountPayment.idempotency_key == key)
        ).scalar_one_or_none()

    def _authorize_payment(self, actor: Actor, ventana_id: int | None) -> None:
        if actor.is_admin:
            return
        owns_ventana = ventana_id is not None and actor.ventana_id == ventana_id
        if actor.role == Role.VENTANA and owns_ventana:
            return
        raise Forbidden(
            "Only an admin or the owning ventana may register payments",
            code="PAYMENT_FORBIDDEN",
        )

    def create_payment(self, request: PaymentCreate, actor: Actor) -> AccountPayment:
        """
        Register a payment or collection against a day's statement.

        A request carrying an idempotency key that was already used
        returns the original payment and writes nothing.
        """
        if request.idempotency_key:
            existing = self._find_payment_by_key(request.idempotency_key)
            if existing:
                log_event(logger, logging.INFO, "service", "PAYMENT_REPLAYED", {
                    "payment_id": existing.id,
                    "idempotency_key": request.idempotency_key,
                })
                return existing

        _, banca_id, ventana_id, vendedor_id = self._resolve_dimension(
            request.banca_id, request.ventana_id, request.vendedor_id
        )
        self._authorize_payment(actor, ventana_id)

        if request.date > business_today():
            raise ValidationConflict(
                f"Payment date {request.date} is in the future",
                code="FUTURE_PAYMENT_DATE",
            )

        statement = self.find_or_create(
            request.date, banca_id=banca_id, ventana_id=ventana_id,
            vendedor_id=vendedor_id,
        )
        statement = self._lock(statement.id)
        self._check_editable(statement)

        try:
            payment = self._insert_payment(statement, request, actor)
        except DuplicateRequest as e:
            return e.original

        self._refresh_payments(statement)
        self.db.flush()

        log_event(logger, logging.INFO, "service", "PAYMENT_CREATED", {
            "payment_id": payment.id,
            "statement_id": statement.id,
            "type": payment.type.value,
            "amount": payment.amount,
            "remaining_balance": statement.remaining_balance,
            "is_settled": statement.is_settled,
        })
        self.activity.log(
            actor.user_id, "ACCOUNT_PAYMENT_CREATE", "ACCOUNT_PAYMENT", payment.id,
            {
                "statement_id": statement.id,
                "type": payment.type,
                "amount": payment.amount,
                "method": payment.method,
            },
            request_id=request.idempotency_key,
        )
        return payment

    def _check_editable(self, statement: AccountStatement) -> None:
        if statement.is_closed:
            raise InvalidState(
                f"Day {statement.date} is closed for {statement.dimension_key}",
                code="DAY_CLOSED",
            )
        if not statement.can_edit:
            raise InvalidState(
                f"Statement {statement.id} is settled and cannot be edited",
                code="STATEMENT_LOCKED",
            )

    def _insert_payment(
        self, statement: AccountStatement, request: PaymentCreate, actor: Actor
    ) -> AccountPayment:
        payment = AccountPayment(
            account_statement_id=statement.id,
            date=statement.date,
            month=statement.month,
            banca_id=statement.banca_id,
            ventana_id=statement.ventana_id,
            vendedor_id=statement.vendedor_id,
            amount=request.amount,
            type=request.type,
            method=request.method,
            notes=request.notes,
            is_final=request.is_final,
            idempotency_key=request.idempotency_key,
            paid_by_id=actor.user_id,
            paid_by_name=actor.name,
            is_reversed=False,
        )
        try:
            with self.db.begin_nested():
                self.db.add(payment)
        except IntegrityError:
            existing = self._find_payment_by_key(request.idempotency_key or "")
            if existing is None:
                raise
            raise DuplicateRequest(
                f"Idempotency key {request.idempotency_key} already used",
                original=existing,
            )
        return payment

    def reverse_payment(
        self, payment_id: int, actor: Actor, reason: str | None = None
    ) -> AccountPayment:
        """
        Mark a payment reversed and re-derive its statement.

        The row is kept. The reversal is refused when it would leave
        the day at zero remaining balance in a degenerate way; which
        cases count is set by PAYMENT_REVERSAL_GUARD.
        """
        settings = get_settings()
        if not actor.is_admin:
            raise Forbidden(
                "Only an admin may reverse payments", code="REVERSAL_FORBIDDEN"
            )

        payment = self.db.get(AccountPayment, payment_id)
        if not payment:
            raise NotFound(f"Payment {payment_id} not found", code="PAYMENT_NOT_FOUND")
        if payment.is_reversed:
            raise InvalidState(
                f"Payment {payment_id} is already reversed",
                code="PAYMENT_ALREADY_REVERSED",
            )
        if reason is not None and len(reason.strip()) < settings.MIN_REVERSAL_REASON_LENGTH:
            raise ValidationConflict(
                f"Reversal reason must be at least "
                f"{settings.MIN_REVERSAL_REASON_LENGTH} characters",
                code="REVERSAL_REASON_TOO_SHORT",
            )

        statement = self._lock(payment.account_statement_id)
        if statement.is_closed:
            raise InvalidState(
                f"Day {statement.date} is closed for {statement.dimension_key}",
                code="DAY_CLOSED",
            )

        # Statement first, then payment: the same order create_payment uses
        payment = self.db.execute(
            select(AccountPayment)
            .where(AccountPayment.id == payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        if payment.is_reversed:
            raise InvalidState(
                f"Payment {payment_id} is already reversed",
                code="PAYMENT_ALREADY_REVERSED",
            )

        paid, collected = self._payment_totals(
            statement.id, exclude_payment_id=payment.id
        )
        remaining_after = Decimal(statement.balance) - paid + collected
        self._check_reversal_guard(statement, payment, remaining_after, paid, collected)

        payment.is_reversed = True
        payment.reversed_at = utcnow()
        payment.reversed_by = actor.user_id
        payment.reversal_reason = reason
        self.db.flush()

        self._refresh_payments(statement)
        self.db.flush()

        log_event(logger, logging.INFO, "service", "PAYMENT_REVERSED", {
            "payment_id": payment.id,
            "statement_id": statement.id,
            "remaining_balance": statement.remaining_balance,
        })
        self.activity.log(
            actor.user_id, "ACCOUNT_PAYMENT_REVERSE", "ACCOUNT_PAYMENT", payment.id,
            {"statement_id": statement.id, "amount": payment.amount, "reason": reason},
        )
        return payment

    def _check_reversal_guard(
        self,
        statement: AccountStatement,
        payment: AccountPayment,
        remaining_after: Decimal,
        paid_after: Decimal,
        collected_after: Decimal,
    ) -> None:
        settings = get_settings()
        guard = settings.PAYMENT_REVERSAL_GUARD
        if abs(remaining_after) >= settings.SETTLEMENT_EPSILON:
            return

        has_payments = paid_after > 0 or collected_after > 0
        rejected = (
            (not has_payments and guard in ("strict", "no_movement"))
            or (has_payments and guard in ("strict", "would_settle"))
        )
        if not rejected:
            return

        log_event(logger, logging.WARNING, "service", "PAYMENT_REVERSAL_REJECTED", {
            "payment_id": payment.id,
            "statement_id": statement.id,
            "guard": guard,
            "remaining_after": remaining_after,
            "has_payments": has_payments,
        })
        raise ValidationConflict(
            "Reversing this payment would leave the day at zero balance",
            code="CANNOT_REVERSE_SETTLED_DAY",
            meta={"statement_id": statement.id, "payment_id": payment.id},
        )

    # --- Day lock ---

    def close_day(self, account_id: int, day: date, actor: Actor) -> AccountStatement:
        """
        Lock an owner's day against payment changes.

        Closing snapshots the owner's ledger day. A day that is
        already closed is returned unchanged.
        """
        if not actor.is_admin:
            raise Forbidden("Only an admin may close a day", code="CLOSE_DAY_FORBIDDEN")

        ledger = LedgerService(self.db)
        account = ledger.get_account(account_id)
        level = OWNER_LEVELS[account.owner_type]
        statement = self.find_or_create(day, **{f"{level}_id": account.owner_id})
        statement = self._lock(statement.id)

        if statement.is_closed:
            log_event(logger, logging.INFO, "service", "CLOSE_DAY_NOOP", {
                "statement_id": statement.id,
                "closed_at": statement.closed_at,
            })
            return statement

        snapshot = ledger.create_daily_snapshot(account_id, day)
        statement.closed_at = utcnow()
        statement.closed_by = actor.user_id
        statement.can_edit = False
        self.db.flush()

        log_event(logger, logging.INFO, "service", "DAY_CLOSED", {
            "statement_id": statement.id,
            "account_id": account_id,
            "closing": snapshot.closing,
        })
        self.activity.log(
            actor.user_id, "DAY_CLOSE", "ACCOUNT_STATEMENT", statement.id,
            {"account_id": account_id, "date": day, "closing": snapshot.closing},
        )
        return statement

    def reopen_day(self, statement_id: int, actor: Actor) -> AccountStatement:
        if not actor.is_admin:
            raise Forbidden("Only an admin may reopen a day", code="REOPEN_DAY_FORBIDDEN")

        statement = self._lock(statement_id)
        if not statement.is_closed:
            return statement

        statement.closed_at = None
        statement.closed_by = None
        statement.can_edit = not statement.is_settled
        self.db.flush()

        self.activity.log(
            actor.user_id, "DAY_REOPEN", "ACCOUNT_STATEMENT", statement.id,
            {"date": statement.date},
        )
        return statement

    # --- Reads ---

    def get_daily_summary(
        self,
        day: date,
        banca_id: int | None = None,
        ventana_id: int | None = None,
        vendedor_id: int | None = None,
    ) -> DailySummary:
        """
        Statement figures plus the day's draws and payments as one list.

        Movements are accumulated oldest first, starting from the
        position carried in from earlier days, and returned newest
        first.
        """
        statement = self.find(day, banca_id, ventana_id, vendedor_id)
        if statement is None:
            raise NotFound(
                f"No statement for {day}", code="STATEMENT_NOT_FOUND"
            )

        movements: list[Movement] = []
        rows = self.db.execute(
            select(
                Sorteo.id,
                Sorteo.name,
                Sorteo.scheduled_at,
                func.coalesce(func.sum(Jugada.amount), 0),
                func.coalesce(func.sum(Jugada.payout), 0),
                func.coalesce(func.sum(Jugada.commission_amount), 0),
                func.coalesce(func.sum(Jugada.listero_commission_amount), 0),
            )
            .join(Ticket, Ticket.sorteo_id == Sorteo.id)
            .join(Jugada, Jugada.ticket_id == Ticket.id)
            .where(*self._ticket_filter(statement))
            .group_by(Sorteo.id, Sorteo.name, Sorteo.scheduled_at)
        ).all()
        for sorteo_id, name, scheduled_at, sales, payouts, vendedor_c, listero_c in rows:
            net = (
                Decimal(str(sales)) - Decimal(str(payouts))
                - Decimal(str(vendedor_c)) - Decimal(str(listero_c))
            )
            movements.append(Movement(
                kind="sorteo",
                reference_id=sorteo_id,
                label=name,
                occurred_at=scheduled_at,
                amount=round2(net),
            ))

        payments = self.db.execute(
            select(AccountPayment).where(
                AccountPayment.account_statement_id == statement.id,
                AccountPayment.is_reversed.is_(False),
            )
        ).scalars().all()
        for payment in payments:
            # A payment settles what is owed, a collection adds to it
            signed = -payment.amount if payment.type == PaymentType.PAYMENT else payment.amount
            movements.append(Movement(
                kind=payment.type.value,
                reference_id=payment.id,
                label=payment.notes or payment.method.value,
                occurred_at=payment.created_at,
                amount=signed,
            ))

        movements.sort(key=lambda m: (m.occurred_at, m.kind, m.reference_id))
        opening = round2(
            Decimal(statement.accumulated_balance) - Decimal(statement.remaining_balance)
        )
        accumulated = opening
        for movement in movements:
            accumulated += movement.amount
            movement.accumulated = accumulated
        movements.reverse()

        return DailySummary(
            statement=StatementResponse.model_validate(statement),
            opening_balance=opening,
            movements=movements,
        )

    def get_month_totals(
        self,
        month: str,
        banca_id: int | None = None,
        ventana_id: int | None = None,
        vendedor_id: int | None = None,
    ) -> MonthTotals:
        key, _, _, _ = self._resolve_dimension(banca_id, ventana_id, vendedor_id)
        statements = self.db.execute(
            select(AccountStatement).where(
                AccountStatement.month == month,
                AccountStatement.dimension_key == key,
            )
        ).scalars().all()

        def total(field: str) -> Decimal:
            return sum((Decimal(getattr(s, field)) for s in statements), ZERO)

        settled = sum(1 for s in statements if s.is_settled)
        return MonthTotals(
            month=month,
            total_sales=total("total_sales"),
            total_payouts=total("total_payouts"),
            total_listero_commission=total("listero_commission"),
            total_vendedor_commission=total("vendedor_commission"),
            total_balance=total("balance"),
            total_paid=total("total_paid"),
            total_collected=total("total_collected"),
            total_remaining_balance=total("remaining_balance"),
            settled_days=settled,
            pending_days=len(statements) - settled,
        )

    # --- Month closing ---

    def _month_dimensions(
        self, month: str
    ) -> list[tuple[str, int | None, int | None, int | None]]:
        rows = self.db.execute(
            select(
                AccountStatement.dimension_key,
                AccountStatement.banca_id,
                AccountStatement.ventana_id,
                AccountStatement.vendedor_id,
            )
            .where(AccountStatement.month == month)
            .order_by(AccountStatement.dimension_key, AccountStatement.date)
        ).all()
        # Latest day wins when parents were backfilled mid-month
        by_key = {row[0]: tuple(row) for row in rows}
        return [by_key[key] for key in sorted(by_key)]

    def close_month(
        self,
        month: str,
        actor: Actor,
        banca_id: int | None = None,
        ventana_id: int | None = None,
        vendedor_id: int | None = None,
    ) -> list[MonthlyClosingBalance]:
        """
        Store the month-end position for one owner, or for every owner
        with statements in the month when no id is given.

        closing_balance is the last day's accumulated_balance, so it
        already includes what the owner carried in from earlier
        months. Re-closing overwrites with a fresh computation and
        re-chains the next month's statements from the new figure.
        """
        if not actor.is_admin:
            raise Forbidden("Only an admin may close a month", code="CLOSE_MONTH_FORBIDDEN")
        if month >= month_of(business_today()):
            raise InvalidState(f"Month {month} has not ended", code="MONTH_NOT_ENDED")

        if banca_id or ventana_id or vendedor_id:
            targets = [self._resolve_dimension(banca_id, ventana_id, vendedor_id)]
        else:
            targets = self._month_dimensions(month)

        closings = [self._close_dimension_month(month, target, actor) for target in targets]
        log_event(logger, logging.INFO, "service", "MONTH_CLOSED", {
            "month": month,
            "dimensions": len(closings),
        })
        return closings

    def _close_dimension_month(
        self,
        month: str,
        target: tuple[str, int | None, int | None, int | None],
        actor: Actor,
    ) -> MonthlyClosingBalance:
        key, banca_id, ventana_id, vendedor_id = target
        statements = self.db.execute(
            select(AccountStatement)
            .where(
                AccountStatement.month == month,
                AccountStatement.dimension_key == key,
            )
            .order_by(AccountStatement.date)
        ).scalars().all()

        def total(field: str) -> Decimal:
            return sum((Decimal(getattr(s, field)) for s in statements), ZERO)

        opening = self._month_opening(month, key)
        closing_balance = (
            Decimal(statements[-1].accumulated_balance) if statements else opening
        )

        closing = self._find_closing(month, key)
        if closing is None:
            closing = MonthlyClosingBalance(
                closing_month=month, dimension_key=key, closed_by=actor.user_id
            )
            try:
                with self.db.begin_nested():
                    self.db.add(closing)
            except IntegrityError:
                # Another closer created the row first
                closing = self._find_closing(month, key)
                if closing is None:
                    raise

        closing.banca_id = banca_id
        closing.ventana_id = ventana_id
        closing.vendedor_id = vendedor_id
        closing.opening_balance = opening
        closing.closing_balance = closing_balance
        closing.ticket_count = sum(s.ticket_count for s in statements)
        closing.total_sales = total("total_sales")
        closing.total_payouts = total("total_payouts")
        closing.total_commission = (
            total("listero_commission") + total("vendedor_commission")
        )
        closing.total_paid = total("total_paid")
        closing.total_collected = total("total_collected")
        closing.closed_at = utcnow()
        closing.closed_by = actor.user_id
        self.db.flush()

        self._rechain_month(next_month(month), key, closing_balance)
        self.db.flush()

        log_event(logger, logging.INFO, "service", "MONTHLY_CLOSING_SAVED", {
            "month": month,
            "dimension_key": key,
            "closing_balance": closing_balance,
            "ticket_count": closing.ticket_count,
        })
        self.activity.log(
            actor.user_id, "MONTH_CLOSE", "MONTHLY_CLOSING", closing.id,
            {"month": month, "dimension_key": key, "closing_balance": closing_balance},
        )
        return closing

    def _rechain_month(self, month: str, key: str, opening: Decimal) -> None:
        first = self.db.execute(
            select(AccountStatement)
            .where(
                AccountStatement.month == month,
                AccountStatement.dimension_key == key,
            )
            .order_by(AccountStatement.date)
            .limit(1)
        ).scalar_one_or_none()
        if first is None:
            return
        first.accumulated_balance = round2(opening + Decimal(first.remaining_balance))
        self._carry_forward(first)

    def get_month_closing(
        self,
        month: str,
        banca_id: int | None = None,
        ventana_id: int | None = None,
        vendedor_id: int | None = None,
    ) -> MonthlyClosingBalance:
        key, _, _, _ = self._resolve_dimension(banca_id, ventana_id, vendedor_id)
        closing = self._find_closing(month, key)
        if closing is None:
            raise NotFound(
                f"Month {month} is not closed for {key}", code="MONTH_NOT_CLOSED"
            )
        return closing

    # --- Maintenance ---

    def delete_statement(self, statement_id: int, actor: Actor) -> None:
        """Delete a statement that carries no sales and no payments."""
        if not actor.is_admin:
            raise Forbidden(
                "Only an admin may delete statements", code="DELETE_STATEMENT_FORBIDDEN"
            )
        statement = self._lock(statement_id)
        payment_count = self.db.execute(
            select(func.count(AccountPayment.id)).where(
                AccountPayment.account_statement_id == statement_id
            )
        ).scalar()
        if statement.ticket_count > 0 or payment_count > 0:
            raise InvalidState(
                f"Statement {statement_id} is not empty",
                code="STATEMENT_NOT_EMPTY",
            )
        self.db.delete(statement)
        self.db.flush()

    def reset_for_revert(self, touched: Iterable[DimensionDay]) -> list[AccountStatement]:
        """
        Reopen every statement a reverted draw fed.

        Payments tied to those days are deleted and the day's lock is
        released, so the statement reads remaining_balance = balance,
        unsettled and editable.
        """
        reset = []
        for day, level, owner_id in sorted(touched):
            statement = self._find(day, dimension_key(level, owner_id))
            if statement is None:
                continue
            statement = self._lock(statement.id)

            removed = self.db.execute(
                delete(AccountPayment).where(
                    AccountPayment.account_statement_id == statement.id
                )
            ).rowcount
            statement.closed_at = None
            statement.closed_by = None
            self.recompute(statement)

            log_event(logger, logging.INFO, "service", "STATEMENT_RESET", {
                "statement_id": statement.id,
                "payments_deleted": removed,
                "remaining_balance": statement.remaining_balance,
            })
            reset.append(statement)
        return reset
