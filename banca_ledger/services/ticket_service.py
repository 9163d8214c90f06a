"""
Ticket service: sales, cancellations and prize payments.

A sale snapshots everything settlement needs onto each bet line:
the NUMERO multiplier, the seller's commission (resolved through
the waterfall) and the listero's share. Later changes to the
multiplier catalog or to commission policies never alter a sale
that already happened.

Every sale and cancellation moves the day's vendedor, ventana and
banca statements by the same deltas.
"""

import logging
import uuid
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from banca_ledger.errors import (
    Forbidden,
    InvalidState,
    NotFound,
    ValidationConflict,
)
from banca_ledger.logging_config import log_event
from banca_ledger.models.base import utcnow
from banca_ledger.models.enums import BetType, Role, SorteoStatus, TicketStatus
from banca_ledger.models.loteria import LoteriaMultiplier
from banca_ledger.models.organization import User
from banca_ledger.models.sorteo import Sorteo
from banca_ledger.models.ticket import Ticket, Jugada, TicketPayment
from banca_ledger.schemas.commission import (
    BetContext,
    CommissionResolution,
    ResolveCommissionRequest,
    ResolveCommissionResponse,
)
from banca_ledger.schemas.common import Actor
from banca_ledger.schemas.sorteo import PrizePaymentCreate, TicketSell
from banca_ledger.schemas.statement import StatementDeltas
from banca_ledger.services.activity_service import ActivityService
from banca_ledger.services.business_dates import business_today
from banca_ledger.services.commission_resolver import (
    listero_commission_amount,
    resolve_listero,
    resolve_with_fallback,
)
from banca_ledger.services.statement_service import StatementService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class TicketService:

    def __init__(self, db: Session):
        self.db = db
        self.activity = ActivityService(db)
        self.statements = StatementService(db)

    def get(self, ticket_id: int) -> Ticket:
        ticket = self.db.get(Ticket, ticket_id)
        if not ticket:
            raise NotFound(f"Ticket {ticket_id} not found", code="TICKET_NOT_FOUND")
        return ticket

    def _lock(self, ticket_id: int) -> Ticket:
        ticket = self.db.execute(
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if not ticket:
            raise NotFound(f"Ticket {ticket_id} not found", code="TICKET_NOT_FOUND")
        return ticket

    def _authorize(self, actor: Actor, ventana_id: int, vendedor_id: int) -> None:
        if actor.is_admin:
            return
        if actor.role == Role.VENTANA and actor.ventana_id == ventana_id:
            return
        if actor.role == Role.VENDEDOR and actor.user_id == vendedor_id:
            return
        raise Forbidden(
            "Actor may not operate on this ticket", code="TICKET_FORBIDDEN"
        )

    def _base_multiplier(self, loteria_id: int) -> LoteriaMultiplier | None:
        return self.db.execute(
            select(LoteriaMultiplier)
            .where(
                LoteriaMultiplier.loteria_id == loteria_id,
                LoteriaMultiplier.kind == BetType.NUMERO,
                LoteriaMultiplier.is_active.is_(True),
            )
            .order_by(LoteriaMultiplier.id)
            .limit(1)
        ).scalar_one_or_none()

    def _resolve_commissions(
        self, vendedor: User, ctx: BetContext
    ) -> tuple[CommissionResolution, CommissionResolution]:
        """(seller, ventana) commissions for one bet of this vendedor."""
        ventana = vendedor.ventana
        banca = ventana.banca
        seller = resolve_with_fallback(
            vendedor.commission_policy_json,
            ventana.commission_policy_json,
            banca.commission_policy_json,
            ctx,
        )
        listero = resolve_listero(
            ventana.commission_policy_json,
            banca.commission_policy_json,
            ctx,
        )
        return seller, listero

    def quote_commission(
        self, request: ResolveCommissionRequest
    ) -> ResolveCommissionResponse:
        """Price a hypothetical bet without selling it."""
        vendedor = self.db.get(User, request.vendedor_id)
        if not vendedor:
            raise NotFound(
                f"Vendedor {request.vendedor_id} not found", code="VENDEDOR_NOT_FOUND"
            )
        if vendedor.ventana is None:
            raise ValidationConflict(
                f"Vendedor {request.vendedor_id} is not assigned to a ventana",
                code="VENDEDOR_WITHOUT_VENTANA",
            )
        ctx = BetContext(
            loteria_id=request.loteria_id,
            bet_type=request.bet_type,
            final_multiplier_x=request.final_multiplier_x,
            amount=request.amount,
        )
        seller, listero = self._resolve_commissions(vendedor, ctx)
        return ResolveCommissionResponse(
            vendedor=seller,
            ventana=listero,
            listero_commission_amount=listero_commission_amount(listero, seller),
        )

    def _apply_to_statements(self, ticket: Ticket, sign: int) -> None:
        deltas = StatementDeltas(
            ticket_count=sign,
            total_sales=sign * sum((j.amount for j in ticket.jugadas), ZERO),
            vendedor_commission=sign * sum(
                (j.commission_amount for j in ticket.jugadas), ZERO
            ),
            listero_commission=sign * sum(
                (j.listero_commission_amount for j in ticket.jugadas), ZERO
            ),
        )
        for dimension in (
            {"vendedor_id": ticket.vendedor_id},
            {"ventana_id": ticket.ventana_id},
            {"banca_id": ticket.banca_id},
        ):
            statement = self.statements.find_or_create(ticket.business_date, **dimension)
            self.statements.update(statement.id, deltas)

    # --- Sales ---

    def sell(self, request: TicketSell, actor: Actor) -> Ticket:
        vendedor_id = request.vendedor_id or actor.user_id
        vendedor = self.db.get(User, vendedor_id)
        if not vendedor or not vendedor.is_active:
            raise NotFound(f"Vendedor {vendedor_id} not found", code="VENDEDOR_NOT_FOUND")
        if vendedor.ventana is None:
            raise ValidationConflict(
                f"Vendedor {vendedor_id} is not assigned to a ventana",
                code="VENDEDOR_WITHOUT_VENTANA",
            )
        ventana = vendedor.ventana
        banca = ventana.banca
        self._authorize(actor, ventana.id, vendedor.id)

        sorteo = self.db.execute(
            select(Sorteo)
            .where(Sorteo.id == request.sorteo_id)
            .with_for_update()
        ).scalar_one_or_none()
        if not sorteo:
            raise NotFound(
                f"Sorteo {request.sorteo_id} not found", code="SORTEO_NOT_FOUND"
            )
        if sorteo.status != SorteoStatus.OPEN:
            raise InvalidState(
                f"Sorteo {sorteo.id} is {sorteo.status.value}, not OPEN",
                code="SORTEO_NOT_OPEN",
            )

        base = None
        if any(line.type == BetType.NUMERO for line in request.jugadas):
            base = self._base_multiplier(sorteo.loteria_id)
            if base is None:
                raise ValidationConflict(
                    f"Loteria {sorteo.loteria_id} has no active NUMERO multiplier",
                    code="NO_BASE_MULTIPLIER",
                )

        business_date = business_today()
        ticket = Ticket(
            ticket_number=(
                f"T{business_date:%y%m%d}-{ventana.id:03d}-"
                f"{uuid.uuid4().hex[:8].upper()}"
            ),
            sorteo_id=sorteo.id,
            loteria_id=sorteo.loteria_id,
            banca_id=banca.id,
            ventana_id=ventana.id,
            vendedor_id=vendedor.id,
            business_date=business_date,
            status=TicketStatus.ACTIVE,
            total_payout=ZERO,
            total_paid=ZERO,
            remaining_amount=ZERO,
            is_winner=False,
            is_sorteo_closed=False,
        )

        for line in request.jugadas:
            if line.type == BetType.NUMERO:
                multiplier_id, multiplier_x = base.id, Decimal(base.value_x)
            else:
                # Assigned when the draw is evaluated
                multiplier_id, multiplier_x = None, ZERO

            ctx = BetContext(
                loteria_id=sorteo.loteria_id,
                bet_type=line.type,
                final_multiplier_x=multiplier_x,
                amount=line.amount,
            )
            seller, listero = self._resolve_commissions(vendedor, ctx)
            ticket.jugadas.append(Jugada(
                type=line.type,
                number=line.number,
                reventado_number=line.reventado_number,
                amount=line.amount,
                multiplier_id=multiplier_id,
                final_multiplier_x=multiplier_x,
                commission_percent=seller.percent,
                commission_amount=seller.commission_amount,
                commission_origin=seller.origin,
                commission_rule_id=seller.rule_id,
                listero_commission_amount=listero_commission_amount(listero, seller),
                is_winner=False,
                payout=ZERO,
            ))

        ticket.total_amount = sum((j.amount for j in ticket.jugadas), ZERO)
        self.db.add(ticket)
        self.db.flush()

        self._apply_to_statements(ticket, 1)

        log_event(logger, logging.INFO, "service", "TICKET_SOLD", {
            "ticket_id": ticket.id,
            "ticket_number": ticket.ticket_number,
            "sorteo_id": sorteo.id,
            "total_amount": ticket.total_amount,
            "lines": len(ticket.jugadas),
        })
        self.activity.log(
            actor.user_id, "TICKET_CREATE", "TICKET", ticket.id,
            {"sorteo_id": sorteo.id, "total_amount": ticket.total_amount},
        )
        return ticket

    def cancel(self, ticket_id: int, actor: Actor) -> Ticket:
        ticket = self._lock(ticket_id)
        self._authorize(actor, ticket.ventana_id, ticket.vendedor_id)
        if ticket.status != TicketStatus.ACTIVE:
            raise InvalidState(
                f"Ticket {ticket.id} is {ticket.status.value}, only ACTIVE tickets "
                f"can be cancelled",
                code="TICKET_NOT_CANCELLABLE",
            )
        if ticket.is_sorteo_closed:
            raise InvalidState(
                f"Sorteo {ticket.sorteo_id} is closed", code="SORTEO_CLOSED"
            )

        ticket.status = TicketStatus.CANCELLED
        self.db.flush()
        self._apply_to_statements(ticket, -1)

        self.activity.log(
            actor.user_id, "TICKET_CANCEL", "TICKET", ticket.id,
            {"total_amount": ticket.total_amount},
        )
        return ticket

    # --- Prizes ---

    def _find_payment_by_key(self, key: str) -> TicketPayment | None:
        return self.db.execute(
            select(TicketPayment).where(TicketPayment.idempotency_key == key)
        ).scalar_one_or_none()

    def pay_prize(
        self, ticket_id: int, request: PrizePaymentCreate, actor: Actor
    ) -> TicketPayment:
        """
        Pay all or part of a winning ticket's prize.

        The ticket becomes PAID once nothing remains.
        """
        if request.idempotency_key:
            existing = self._find_payment_by_key(request.idempotency_key)
            if existing:
                return existing

        ticket = self._lock(ticket_id)
        self._authorize(actor, ticket.ventana_id, ticket.vendedor_id)
        payable = ticket.status in (TicketStatus.EVALUATED, TicketStatus.PAID)
        if not (payable and ticket.is_winner):
            raise InvalidState(
                f"Ticket {ticket.id} is not an evaluated winner",
                code="TICKET_NOT_PAYABLE",
            )
        if request.amount > ticket.remaining_amount:
            raise ValidationConflict(
                f"Payment {request.amount} exceeds remaining prize "
                f"{ticket.remaining_amount}",
                code="PRIZE_OVERPAYMENT",
            )

        payment = TicketPayment(
            ticket_id=ticket.id,
            amount=request.amount,
            paid_by_id=actor.user_id,
            idempotency_key=request.idempotency_key,
        )
        try:
            with self.db.begin_nested():
                self.db.add(payment)
        except IntegrityError:
            existing = self._find_payment_by_key(request.idempotency_key or "")
            if existing is None:
                raise
            log_event(logger, logging.INFO, "service", "PRIZE_PAYMENT_REPLAYED", {
                "payment_id": existing.id,
            })
            return existing

        ticket.total_paid = Decimal(ticket.total_paid) + request.amount
        ticket.remaining_amount = Decimal(ticket.remaining_amount) - request.amount
        ticket.last_payment_at = utcnow()
        ticket.paid_by_id = actor.user_id
        if ticket.remaining_amount == 0:
            ticket.status = TicketStatus.PAID
        self.db.flush()

        log_event(logger, logging.INFO, "service", "PRIZE_PAID", {
            "ticket_id": ticket.id,
            "amount": request.amount,
            "remaining_amount": ticket.remaining_amount,
        })
        self.activity.log(
            actor.user_id, "TICKET_PAY", "TICKET", ticket.id,
            {"payment_id": payment.id, "amount": request.amount},
            request_id=request.idempotency_key,
        )
        return payment
