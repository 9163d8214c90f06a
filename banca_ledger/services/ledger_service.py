"""
Ledger service: the system of record for owner accounts.

This service enforces the fundamental rules:
1. Entries are immutable (append-only); corrections are new entries
2. Account.balance is written only here, in the same transaction
   as the entry that justifies it
3. Accounts must exist and be active
4. A request_id is applied at most once per account, backed by
   a unique index on (account_id, request_id)

No other service writes Account.balance. The caller controls the
transaction boundary and decides when to commit or roll back.
"""

import logging
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from banca_ledger.config import get_settings
from banca_ledger.errors import InvalidState, NotFound, ValidationConflict
from banca_ledger.logging_config import log_event
from banca_ledger.models.account import Account
from banca_ledger.models.base import utcnow
from banca_ledger.models.bank_deposit import BankDeposit, DailyBalanceSnapshot
from banca_ledger.models.enums import LedgerType, OwnerType, ReferenceType
from banca_ledger.models.ledger_entry import LedgerEntry
from banca_ledger.schemas.ledger import (
    BankDepositCreate,
    LedgerEntryCreate,
    PaymentDocumentCreate,
)
from banca_ledger.services.activity_service import ActivityService
from banca_ledger.services.business_dates import day_bounds_utc

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class LedgerService:
    """
    All ledger operations pass through this service.

    The service takes a database session as a constructor
    argument. This means the caller controls the transaction
    boundary; they decide when to commit or rollback.
    """

    def __init__(self, db: Session):
        self.db = db
        self.activity = ActivityService(db)

    # --- Accounts ---

    def get_or_create_account(
        self,
        owner_type: OwnerType,
        owner_id: int,
        currency: str | None = None,
    ) -> Account:
        """
        Return the owner's account, creating it on first use.

        Two requests racing to create the same account collide on
        the (owner_type, owner_id) unique index; the loser re-reads
        the winner's row instead of failing.
        """
        existing = self._find_account(owner_type, owner_id)
        if existing:
            return existing

        account = Account(
            owner_type=owner_type,
            owner_id=owner_id,
            currency=currency or get_settings().DEFAULT_CURRENCY,
            balance=ZERO,
        )
        try:
            with self.db.begin_nested():
                self.db.add(account)
        except IntegrityError:
            existing = self._find_account(owner_type, owner_id)
            if existing is None:
                raise
            return existing

        log_event(logger, logging.INFO, "service", "ACCOUNT_CREATED", {
            "account_id": account.id,
            "owner_type": owner_type.value,
            "owner_id": owner_id,
        })
        return account

    def _find_account(self, owner_type: OwnerType, owner_id: int) -> Account | None:
        return self.db.execute(
            select(Account).where(
                Account.owner_type == owner_type,
                Account.owner_id == owner_id,
            )
        ).scalar_one_or_none()

    def get_account(self, account_id: int) -> Account:
        account = self.db.get(Account, account_id)
        if not account:
            raise NotFound(f"Account {account_id} not found", code="ACCOUNT_NOT_FOUND")
        return account

    def _lock_account(self, account_id: int) -> Account:
        """Re-read the account row under a row lock, bypassing the identity map."""
        account = self.db.execute(
            select(Account)
            .where(Account.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if not account:
            raise NotFound(f"Account {account_id} not found", code="ACCOUNT_NOT_FOUND")
        return account

    # --- Entries ---

    def find_entry_by_request_id(
        self, account_id: int, request_id: str
    ) -> LedgerEntry | None:
        return self.db.execute(
            select(LedgerEntry).where(
                LedgerEntry.account_id == account_id,
                LedgerEntry.request_id == request_id,
            ).limit(1)
        ).scalar_one_or_none()

    def add_ledger_entry(
        self, account_id: int, entry: LedgerEntryCreate
    ) -> LedgerEntry:
        """
        Append one signed entry and move the cached balance with it.

        Steps, all in the caller's transaction:
        1. insert the entry
        2. re-read the account row FOR UPDATE
        3. balance = balance + value_signed

        If request_id was already applied to this account the
        original entry is returned and nothing is written. Two
        concurrent submissions that both miss the lookup collide on
        the unique (account_id, request_id) index; the loser rolls
        back its savepoint and replays the winner's entry.
        """
        account = self.get_account(account_id)

        if entry.request_id:
            existing = self.find_entry_by_request_id(account_id, entry.request_id)
            if existing:
                return self._replayed(account_id, existing)

        if not account.is_active:
            raise InvalidState(
                f"Account {account_id} is not active", code="ACCOUNT_INACTIVE"
            )

        if entry.reversal_of_entry_id is not None:
            self._check_reversible(account_id, entry)

        ledger_entry = LedgerEntry(
            account_id=account_id,
            type=entry.type,
            value_signed=entry.value_signed,
            reference_type=entry.reference_type,
            reference_id=entry.reference_id,
            note=entry.note,
            request_id=entry.request_id,
            created_by=entry.created_by,
            reversal_of_entry_id=entry.reversal_of_entry_id,
            date=entry.date or utcnow(),
        )
        try:
            with self.db.begin_nested():
                self.db.add(ledger_entry)
        except IntegrityError:
            existing = None
            if entry.request_id:
                existing = self.find_entry_by_request_id(account_id, entry.request_id)
            if existing is not None:
                return self._replayed(account_id, existing)
            if entry.reversal_of_entry_id is not None:
                raise InvalidState(
                    f"Entry {entry.reversal_of_entry_id} was already reversed",
                    code="ENTRY_ALREADY_REVERSED",
                )
            raise

        locked = self._lock_account(account_id)
        locked.balance = Decimal(locked.balance) + Decimal(entry.value_signed)
        self.db.flush()

        log_event(logger, logging.INFO, "service", "LEDGER_ENTRY_ADDED", {
            "account_id": account_id,
            "entry_id": ledger_entry.id,
            "type": entry.type.value,
            "value_signed": entry.value_signed,
            "balance": locked.balance,
        })
        return ledger_entry

    def _replayed(self, account_id: int, existing: LedgerEntry) -> LedgerEntry:
        log_event(logger, logging.INFO, "service", "LEDGER_ENTRY_REPLAYED", {
            "account_id": account_id,
            "request_id": existing.request_id,
            "entry_id": existing.id,
        })
        return existing

    def _check_reversible(self, account_id: int, entry: LedgerEntryCreate) -> None:
        original = self.db.get(LedgerEntry, entry.reversal_of_entry_id)
        if not original or original.account_id != account_id:
            raise NotFound(
                f"Entry {entry.reversal_of_entry_id} not found on account {account_id}",
                code="ENTRY_NOT_FOUND",
            )
        if original.reversal_of_entry_id is not None:
            raise InvalidState(
                f"Entry {original.id} is itself a reversal",
                code="ENTRY_IS_REVERSAL",
            )
        already = self.db.execute(
            select(LedgerEntry.id).where(
                LedgerEntry.reversal_of_entry_id == original.id
            )
        ).scalar_one_or_none()
        if already is not None:
            raise InvalidState(
                f"Entry {original.id} was already reversed by entry {already}",
                code="ENTRY_ALREADY_REVERSED",
            )
        if Decimal(entry.value_signed) != -Decimal(original.value_signed):
            raise ValidationConflict(
                "A reversal must carry the negated value of the original entry",
                code="REVERSAL_VALUE_MISMATCH",
            )

    def reverse_entry(
        self,
        entry_id: int,
        created_by: int,
        request_id: str | None = None,
        note: str | None = None,
    ) -> LedgerEntry:
        """
        Append the compensating entry for entry_id.

        The original row is not touched; the pair nets to zero.
        """
        original = self.db.get(LedgerEntry, entry_id)
        if not original:
            raise NotFound(f"Entry {entry_id} not found", code="ENTRY_NOT_FOUND")

        reversal = self.add_ledger_entry(original.account_id, LedgerEntryCreate(
            type=LedgerType.REVERSAL,
            value_signed=-Decimal(original.value_signed),
            reference_type=ReferenceType.LEDGER_ENTRY,
            reference_id=str(original.id),
            note=note or f"Reversal of entry {original.id}",
            request_id=request_id,
            created_by=created_by,
            reversal_of_entry_id=original.id,
        ))
        self.activity.log(
            created_by, "LEDGER_ENTRY_REVERSE", "LEDGER_ENTRY", original.id,
            {"reversal_entry_id": reversal.id, "value": reversal.value_signed},
            request_id=request_id,
        )
        return reversal

    def list_entries(
        self,
        account_id: int,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        types: list[LedgerType] | None = None,
        reference_type: ReferenceType | None = None,
    ) -> list[LedgerEntry]:
        """Return entries for an account, newest first."""
        self.get_account(account_id)
        query = select(LedgerEntry).where(LedgerEntry.account_id == account_id)
        if date_from:
            query = query.where(LedgerEntry.date >= date_from)
        if date_to:
            query = query.where(LedgerEntry.date <= date_to)
        if types:
            query = query.where(LedgerEntry.type.in_(types))
        if reference_type:
            query = query.where(LedgerEntry.reference_type == reference_type)
        entries = self.db.execute(
            query.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
        ).scalars().all()
        return list(entries)

    # --- Balances ---

    def calculate_balance(self, account_id: int) -> Decimal:
        """
        Recompute the balance from entries, ignoring the cached column.

        This is the audit path: it must always agree with
        Account.balance.
        """
        self.get_account(account_id)
        total = self.db.execute(
            select(func.coalesce(func.sum(LedgerEntry.value_signed), 0)).where(
                LedgerEntry.account_id == account_id
            )
        ).scalar()
        return Decimal(str(total))

    def get_balance_summary(self, account_id: int) -> dict:
        account = self.get_account(account_id)

        def signed_sum(*conditions) -> Decimal:
            total = self.db.execute(
                select(func.coalesce(func.sum(LedgerEntry.value_signed), 0)).where(
                    LedgerEntry.account_id == account_id, *conditions
                )
            ).scalar()
            return Decimal(str(total))

        total_debit = signed_sum(LedgerEntry.value_signed < 0)
        total_credit = signed_sum(LedgerEntry.value_signed > 0)
        entry_count = self.db.execute(
            select(func.count(LedgerEntry.id)).where(
                LedgerEntry.account_id == account_id
            )
        ).scalar()

        calculated = total_credit + total_debit
        return {
            "account_id": account.id,
            "currency": account.currency,
            "balance": Decimal(account.balance),
            "calculated_balance": calculated,
            "total_debit": total_debit,
            "total_credit": total_credit,
            "entry_count": entry_count,
            "is_consistent": Decimal(account.balance) == calculated,
        }

    # --- Documents ---

    def create_bank_deposit(
        self, account_id: int, request: BankDepositCreate, created_by: int
    ) -> tuple[BankDeposit, LedgerEntry]:
        """
        Record a bank deposit made by the account owner.

        The deposit reduces what the owner holds, so it posts a
        negative DEPOSIT entry.
        """
        if request.request_id:
            existing = self.find_entry_by_request_id(account_id, request.request_id)
            if existing:
                if existing.reference_type != ReferenceType.DEPOSIT_RECEIPT:
                    raise ValidationConflict(
                        f"Request id {request.request_id} was already used by "
                        f"a {existing.type.value} entry on account {account_id}",
                        code="REQUEST_ID_CONFLICT",
                    )
                deposit = self.db.get(BankDeposit, int(existing.reference_id))
                return deposit, existing

        self.get_account(account_id)
        deposit = BankDeposit(
            account_id=account_id,
            date=request.date,
            doc_number=request.doc_number,
            amount=request.amount,
            bank_name=request.bank_name,
            note=request.note,
            created_by=created_by,
        )
        self.db.add(deposit)
        self.db.flush()

        entry = self.add_ledger_entry(account_id, LedgerEntryCreate(
            type=LedgerType.DEPOSIT,
            value_signed=-request.amount,
            reference_type=ReferenceType.DEPOSIT_RECEIPT,
            reference_id=str(deposit.id),
            note=f"Bank deposit: {request.doc_number}",
            request_id=request.request_id,
            created_by=created_by,
            date=request.date,
        ))
        self.activity.log(
            created_by, "BANK_DEPOSIT_CREATE", "ACCOUNT", account_id,
            {"deposit_id": deposit.id, "amount": request.amount},
            request_id=request.request_id,
        )
        return deposit, entry

    def create_payment_document(
        self, request: PaymentDocumentCreate, created_by: int
    ) -> list[LedgerEntry]:
        """
        Move value between two accounts as one balanced posting.

        The two legs share the document number as reference and
        always net to zero.
        """
        if request.from_account_id == request.to_account_id:
            raise ValidationConflict(
                "Cannot post a payment document to the same account",
                code="SAME_ACCOUNT",
            )

        source = self.get_account(request.from_account_id)
        destination = self.get_account(request.to_account_id)
        if source.currency != destination.currency:
            raise ValidationConflict(
                f"Account {source.id} currency is {source.currency}, "
                f"account {destination.id} currency is {destination.currency}",
                code="CURRENCY_MISMATCH",
            )

        out_request = f"{request.request_id}:out" if request.request_id else None
        in_request = f"{request.request_id}:in" if request.request_id else None
        if out_request:
            out_leg = self.find_entry_by_request_id(source.id, out_request)
            in_leg = self.find_entry_by_request_id(destination.id, in_request)
            if out_leg and in_leg:
                return [out_leg, in_leg]

        when = request.date or utcnow()
        legs = [
            self.add_ledger_entry(source.id, LedgerEntryCreate(
                type=LedgerType.PAYMENT_OUT,
                value_signed=-request.amount,
                reference_type=ReferenceType.PAYMENT_DOCUMENT,
                reference_id=request.doc_number,
                note=request.note,
                request_id=out_request,
                created_by=created_by,
                date=when,
            )),
            self.add_ledger_entry(destination.id, LedgerEntryCreate(
                type=LedgerType.PAYMENT_IN,
                value_signed=request.amount,
                reference_type=ReferenceType.PAYMENT_DOCUMENT,
                reference_id=request.doc_number,
                note=request.note,
                request_id=in_request,
                created_by=created_by,
                date=when,
            )),
        ]
        self.activity.log(
            created_by, "PAYMENT_DOCUMENT_CREATE", "ACCOUNT", source.id,
            {
                "to_account_id": destination.id,
                "doc_number": request.doc_number,
                "amount": request.amount,
            },
            request_id=request.request_id,
        )
        return legs

    # --- Daily snapshots ---

    def create_daily_snapshot(self, account_id: int, day: date) -> DailyBalanceSnapshot:
        """
        Compute and store opening/debit/credit/closing for one business day.

        Re-running for the same day overwrites the figures with a
        fresh computation, so the operation is idempotent.
        """
        self.get_account(account_id)
        start, end = day_bounds_utc(day)

        def signed_sum(*conditions) -> Decimal:
            total = self.db.execute(
                select(func.coalesce(func.sum(LedgerEntry.value_signed), 0)).where(
                    LedgerEntry.account_id == account_id, *conditions
                )
            ).scalar()
            return Decimal(str(total))

        opening = signed_sum(LedgerEntry.date < start)
        debit = signed_sum(
            LedgerEntry.date >= start, LedgerEntry.date < end,
            LedgerEntry.value_signed < 0,
        )
        credit = signed_sum(
            LedgerEntry.date >= start, LedgerEntry.date < end,
            LedgerEntry.value_signed > 0,
        )

        snapshot = self.db.execute(
            select(DailyBalanceSnapshot).where(
                DailyBalanceSnapshot.account_id == account_id,
                DailyBalanceSnapshot.date == day,
            )
        ).scalar_one_or_none()
        if snapshot is None:
            snapshot = DailyBalanceSnapshot(account_id=account_id, date=day)
            self.db.add(snapshot)

        snapshot.opening = opening
        snapshot.debit = debit
        snapshot.credit = credit
        snapshot.closing = opening + debit + credit
        self.db.flush()
        return snapshot

    def get_daily_snapshots(
        self, account_id: int, date_from: date, date_to: date
    ) -> list[DailyBalanceSnapshot]:
        snapshots = self.db.execute(
            select(DailyBalanceSnapshot)
            .where(
                DailyBalanceSnapshot.account_id == account_id,
                DailyBalanceSnapshot.date >= date_from,
                DailyBalanceSnapshot.date <= date_to,
            )
            .order_by(DailyBalanceSnapshot.date.asc())
        ).scalars().all()
        return list(snapshots)
