"""
Sorteo service: the draw lifecycle and its settlement.

    SCHEDULED -> OPEN -> EVALUATED -> CLOSED
                 OPEN -> CLOSED

EVALUATED -> OPEN happens only through revert_evaluation.
CLOSED -> OPEN happens only through force_open, and only for a
draw that was closed without an evaluation.

evaluate and revert_evaluation each run as one transaction that
touches every ticket and bet line of the draw and every statement
those tickets feed. Both are admin operations and run under the
long transaction timeout.
"""

import logging
from decimal import Decimal

from sqlalchemy import select, delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from banca_ledger.config import get_settings
from banca_ledger.errors import Forbidden, InvalidState, NotFound, ValidationConflict
from banca_ledger.logging_config import log_event
from banca_ledger.models.base import set_transaction_timeout, utcnow
from banca_ledger.models.enums import BetType, SorteoStatus, TicketStatus
from banca_ledger.models.loteria import Loteria, LoteriaMultiplier
from banca_ledger.models.sorteo import Sorteo
from banca_ledger.models.ticket import Ticket, Jugada, TicketPayment
from banca_ledger.schemas.common import Actor
from banca_ledger.schemas.sorteo import EvaluateRequest, SorteoCreate
from banca_ledger.services.activity_service import ActivityService
from banca_ledger.services.statement_service import StatementService, touched_dimensions

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class SorteoService:

    def __init__(self, db: Session):
        self.db = db
        self.activity = ActivityService(db)
        self.statements = StatementService(db)

    def _require_admin(self, actor: Actor, action: str) -> None:
        if not actor.is_admin:
            raise Forbidden(
                f"Only an admin may {action} a sorteo", code="SORTEO_FORBIDDEN"
            )

    def get(self, sorteo_id: int) -> Sorteo:
        sorteo = self.db.get(Sorteo, sorteo_id)
        if not sorteo:
            raise NotFound(f"Sorteo {sorteo_id} not found", code="SORTEO_NOT_FOUND")
        return sorteo

    def list_sorteos(
        self,
        loteria_id: int | None = None,
        status: SorteoStatus | None = None,
    ) -> list[Sorteo]:
        query = select(Sorteo)
        if loteria_id is not None:
            query = query.where(Sorteo.loteria_id == loteria_id)
        if status is not None:
            query = query.where(Sorteo.status == status)
        return list(
            self.db.execute(query.order_by(Sorteo.scheduled_at.desc())).scalars().all()
        )

    def _lock(self, sorteo_id: int) -> Sorteo:
        sorteo = self.db.execute(
            select(Sorteo)
            .where(Sorteo.id == sorteo_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if not sorteo:
            raise NotFound(f"Sorteo {sorteo_id} not found", code="SORTEO_NOT_FOUND")
        return sorteo

    def _transition(self, sorteo: Sorteo, new_status: SorteoStatus) -> None:
        if not sorteo.can_transition_to(new_status):
            raise InvalidState(
                f"Cannot transition sorteo {sorteo.id} from "
                f"{sorteo.status.value} to {new_status.value}",
                code="INVALID_SORTEO_TRANSITION",
                meta={"from": sorteo.status.value, "to": new_status.value},
            )
        old_status = sorteo.status
        sorteo.status = new_status
        log_event(logger, logging.INFO, "service", "SORTEO_TRANSITION", {
            "sorteo_id": sorteo.id,
            "from": old_status.value,
            "to": new_status.value,
        })

    def _tickets(self, sorteo_id: int, include_cancelled: bool = False) -> list[Ticket]:
        query = select(Ticket).where(Ticket.sorteo_id == sorteo_id)
        if not include_cancelled:
            query = query.where(Ticket.status != TicketStatus.CANCELLED)
        return list(
            self.db.execute(
                query.order_by(Ticket.id).with_for_update()
            ).scalars().all()
        )

    # --- Lifecycle ---

    def create(self, request: SorteoCreate, actor: Actor) -> Sorteo:
        self._require_admin(actor, "create")
        loteria = self.db.get(Loteria, request.loteria_id)
        if not loteria:
            raise NotFound(
                f"Loteria {request.loteria_id} not found", code="LOTERIA_NOT_FOUND"
            )
        if not loteria.is_active:
            raise InvalidState(
                f"Loteria {loteria.id} is not active", code="LOTERIA_INACTIVE"
            )

        sorteo = Sorteo(
            loteria_id=loteria.id,
            name=request.name,
            scheduled_at=request.scheduled_at,
            status=SorteoStatus.SCHEDULED,
            has_winner=False,
        )
        try:
            with self.db.begin_nested():
                self.db.add(sorteo)
        except IntegrityError:
            raise ValidationConflict(
                f"Loteria {loteria.id} already has a sorteo at {request.scheduled_at}",
                code="SORTEO_ALREADY_SCHEDULED",
            )

        self.activity.log(
            actor.user_id, "SORTEO_CREATE", "SORTEO", sorteo.id,
            {"loteria_id": loteria.id, "scheduled_at": request.scheduled_at},
        )
        return sorteo

    def open(self, sorteo_id: int, actor: Actor) -> Sorteo:
        self._require_admin(actor, "open")
        sorteo = self._lock(sorteo_id)
        self._transition(sorteo, SorteoStatus.OPEN)
        self.db.flush()
        self.activity.log(actor.user_id, "SORTEO_OPEN", "SORTEO", sorteo.id)
        return sorteo

    def close(self, sorteo_id: int, actor: Actor) -> Sorteo:
        self._require_admin(actor, "close")
        sorteo = self._lock(sorteo_id)
        self._transition(sorteo, SorteoStatus.CLOSED)
        self.db.flush()
        self.activity.log(actor.user_id, "SORTEO_CLOSE", "SORTEO", sorteo.id)
        return sorteo

    def close_with_cascade(self, sorteo_id: int, actor: Actor) -> Sorteo:
        """Close the draw and lock every one of its tickets."""
        self._require_admin(actor, "close")
        sorteo = self._lock(sorteo_id)
        self._transition(sorteo, SorteoStatus.CLOSED)
        locked = self.db.execute(
            update(Ticket)
            .where(Ticket.sorteo_id == sorteo.id)
            .values(is_sorteo_closed=True)
            .execution_options(synchronize_session="fetch")
        ).rowcount
        self.db.flush()

        self.activity.log(
            actor.user_id, "SORTEO_CLOSE_CASCADE", "SORTEO", sorteo.id,
            {"tickets_locked": locked},
        )
        return sorteo

    def force_open(self, sorteo_id: int, actor: Actor) -> Sorteo:
        """
        Undo a close.

        Refused for a draw that carries an evaluation: the evaluation
        must be reverted first.
        """
        self._require_admin(actor, "force-open")
        sorteo = self._lock(sorteo_id)
        if sorteo.status != SorteoStatus.CLOSED:
            raise InvalidState(
                f"Sorteo {sorteo.id} is {sorteo.status.value}, not CLOSED",
                code="INVALID_SORTEO_TRANSITION",
            )
        if sorteo.winning_number is not None:
            raise InvalidState(
                f"Sorteo {sorteo.id} was evaluated; revert the evaluation first",
                code="SORTEO_EVALUATED",
            )

        sorteo.status = SorteoStatus.OPEN
        unlocked = self.db.execute(
            update(Ticket)
            .where(Ticket.sorteo_id == sorteo.id)
            .values(is_sorteo_closed=False)
            .execution_options(synchronize_session="fetch")
        ).rowcount
        self.db.flush()

        log_event(logger, logging.WARNING, "service", "SORTEO_FORCE_OPEN", {
            "sorteo_id": sorteo.id,
            "actor_id": actor.user_id,
            "tickets_unlocked": unlocked,
        })
        self.activity.log(
            actor.user_id, "SORTEO_FORCE_OPEN", "SORTEO", sorteo.id,
            {"tickets_unlocked": unlocked},
        )
        return sorteo

    # --- Settlement ---

    def evaluate(self, sorteo_id: int, request: EvaluateRequest, actor: Actor) -> Sorteo:
        """
        Mark winners, compute payouts and feed the statements.

        NUMERO lines win on number == winning_number and pay
        amount x the multiplier frozen at sale time. REVENTADO lines
        win on their side number and pay amount x the extra
        multiplier, which is snapshotted onto the draw. Winning
        REVENTADO lines without an extra multiplier abort the
        evaluation before anything is written.
        """
        self._require_admin(actor, "evaluate")
        set_transaction_timeout(self.db, get_settings().LONG_TX_TIMEOUT_MS)

        sorteo = self._lock(sorteo_id)
        if sorteo.status in (SorteoStatus.EVALUATED, SorteoStatus.CLOSED):
            raise InvalidState(
                f"Sorteo {sorteo.id} is already {sorteo.status.value}",
                code="SORTEO_ALREADY_EVALUATED",
            )
        if not sorteo.can_transition_to(SorteoStatus.EVALUATED):
            raise InvalidState(
                f"Sorteo {sorteo.id} must be OPEN to evaluate",
                code="INVALID_SORTEO_TRANSITION",
            )

        winning = request.winning_number
        extra = self._extra_multiplier(sorteo, request.extra_multiplier_id)
        extra_x = Decimal(extra.value_x) if extra else None

        tickets = self._tickets(sorteo.id)
        jugadas = [j for t in tickets for j in t.jugadas]

        side_winners = [
            j for j in jugadas
            if j.type == BetType.REVENTADO and j.side_number == winning
        ]
        if side_winners and extra is None:
            raise ValidationConflict(
                "Winning REVENTADO bets require extra_multiplier_id",
                code="EXTRA_MULTIPLIER_REQUIRED",
                meta={"winning_reventado_lines": len(side_winners)},
            )

        for jugada in jugadas:
            if jugada.type == BetType.NUMERO and jugada.number == winning:
                jugada.is_winner = True
                jugada.payout = Decimal(jugada.amount) * Decimal(jugada.final_multiplier_x)
            elif (
                jugada.type == BetType.REVENTADO
                and extra_x is not None
                and extra_x > 0
                and jugada.side_number == winning
            ):
                jugada.final_multiplier_x = extra_x
                jugada.multiplier_id = extra.id
                jugada.is_winner = True
                jugada.payout = Decimal(jugada.amount) * extra_x
            else:
                jugada.is_winner = False
                jugada.payout = ZERO

        winners = 0
        for ticket in tickets:
            ticket.status = TicketStatus.EVALUATED
            payout = sum((j.payout for j in ticket.jugadas if j.is_winner), ZERO)
            ticket.is_winner = any(j.is_winner for j in ticket.jugadas)
            ticket.total_payout = payout
            ticket.total_paid = ZERO
            ticket.remaining_amount = payout
            if ticket.is_winner:
                winners += 1

        self._transition(sorteo, SorteoStatus.EVALUATED)
        sorteo.winning_number = winning
        sorteo.extra_outcome_code = request.extra_outcome_code
        sorteo.extra_multiplier_id = extra.id if extra else None
        sorteo.extra_multiplier_x = extra_x
        sorteo.has_winner = winners > 0
        sorteo.evaluated_at = utcnow()
        self.db.flush()

        refreshed = self.statements.refresh_days(touched_dimensions(tickets))

        log_event(logger, logging.INFO, "service", "SORTEO_EVALUATED", {
            "sorteo_id": sorteo.id,
            "winning_number": winning,
            "tickets": len(tickets),
            "winning_tickets": winners,
            "statements_refreshed": len(refreshed),
        })
        self.activity.log(
            actor.user_id, "SORTEO_EVALUATE", "SORTEO", sorteo.id,
            {
                "winning_number": winning,
                "extra_outcome_code": request.extra_outcome_code,
                "extra_multiplier_id": sorteo.extra_multiplier_id,
                "extra_multiplier_x": extra_x,
                "winning_tickets": winners,
            },
        )
        return sorteo

    def _extra_multiplier(
        self, sorteo: Sorteo, multiplier_id: int | None
    ) -> LoteriaMultiplier | None:
        if multiplier_id is None:
            return None
        multiplier = self.db.get(LoteriaMultiplier, multiplier_id)
        if not multiplier or multiplier.loteria_id != sorteo.loteria_id:
            raise NotFound(
                f"Multiplier {multiplier_id} not found for loteria {sorteo.loteria_id}",
                code="MULTIPLIER_NOT_FOUND",
            )
        if multiplier.kind != BetType.REVENTADO:
            raise ValidationConflict(
                f"Multiplier {multiplier_id} is not a REVENTADO multiplier",
                code="INVALID_EXTRA_MULTIPLIER",
            )
        if not multiplier.is_active:
            raise InvalidState(
                f"Multiplier {multiplier_id} is not active",
                code="MULTIPLIER_INACTIVE",
            )
        return multiplier

    def revert_evaluation(
        self, sorteo_id: int, actor: Actor, reason: str | None = None
    ) -> Sorteo:
        """
        Undo an evaluation as one compensating sequence.

        1. delete prize payments of the draw's tickets
        2. reset bet lines (REVENTADO lines lose their multiplier)
        3. reset tickets to ACTIVE with zeroed payout fields
        4. reopen every statement the tickets fed
        5. return the draw to OPEN with its outcome cleared
        """
        self._require_admin(actor, "revert")
        set_transaction_timeout(self.db, get_settings().LONG_TX_TIMEOUT_MS)

        sorteo = self._lock(sorteo_id)
        if sorteo.status != SorteoStatus.EVALUATED:
            raise InvalidState(
                f"Sorteo {sorteo.id} is {sorteo.status.value}, not EVALUATED",
                code="SORTEO_NOT_EVALUATED",
            )

        tickets = self._tickets(sorteo.id)
        ticket_ids = [t.id for t in tickets]

        payments_deleted = 0
        if ticket_ids:
            payments_deleted = self.db.execute(
                delete(TicketPayment)
                .where(TicketPayment.ticket_id.in_(ticket_ids))
                .execution_options(synchronize_session="fetch")
            ).rowcount

        for ticket in tickets:
            for jugada in ticket.jugadas:
                jugada.is_winner = False
                jugada.payout = ZERO
                if jugada.type == BetType.REVENTADO:
                    jugada.final_multiplier_x = ZERO
                    jugada.multiplier_id = None
            if ticket.status in (TicketStatus.EVALUATED, TicketStatus.PAID):
                ticket.status = TicketStatus.ACTIVE
            ticket.is_winner = False
            ticket.total_payout = ZERO
            ticket.total_paid = ZERO
            ticket.remaining_amount = ZERO
            ticket.last_payment_at = None
            ticket.paid_by_id = None
        self.db.flush()

        reset = self.statements.reset_for_revert(touched_dimensions(tickets))

        sorteo.status = SorteoStatus.OPEN
        previous_number = sorteo.winning_number
        sorteo.winning_number = None
        sorteo.extra_outcome_code = None
        sorteo.extra_multiplier_id = None
        sorteo.extra_multiplier_x = None
        sorteo.has_winner = False
        sorteo.evaluated_at = None
        self.db.flush()

        log_event(logger, logging.WARNING, "service", "SORTEO_EVALUATION_REVERTED", {
            "sorteo_id": sorteo.id,
            "previous_winning_number": previous_number,
            "tickets": len(tickets),
            "ticket_payments_deleted": payments_deleted,
            "statements_reset": len(reset),
        })
        self.activity.log(
            actor.user_id, "SORTEO_REVERT_EVALUATION", "SORTEO", sorteo.id,
            {
                "previous_winning_number": previous_number,
                "ticket_payments_deleted": payments_deleted,
                "statements_reset": [s.id for s in reset],
                "reason": reason,
            },
        )
        return sorteo
