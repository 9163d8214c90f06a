"""
Tests for the LedgerService.

Tests cover:
- Lazy, unique account creation
- Cached balance always equal to the sum of entries
- Replay of a request_id
- Reversal as a new entry, never an edit
- Bank deposits and two-leg payment documents
- Daily snapshots
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from banca_ledger.errors import InvalidState, NotFound, ValidationConflict
from banca_ledger.models.enums import LedgerType, OwnerType, ReferenceType
from banca_ledger.models.ledger_entry import LedgerEntry
from banca_ledger.schemas.ledger import (
    BankDepositCreate,
    LedgerEntryCreate,
    PaymentDocumentCreate,
)
from banca_ledger.services.ledger_service import LedgerService


# --- Helpers to reduce repetition ---

def make_entry(value, request_id=None, type=LedgerType.ADJUSTMENT, when=None):
    return LedgerEntryCreate(
        type=type,
        value_signed=Decimal(value),
        reference_type=ReferenceType.ADJUSTMENT_DOC,
        reference_id="ADJ-1",
        request_id=request_id,
        created_by=1,
        date=when,
    )


# --- Account Tests ---

class TestGetOrCreateAccount:

    def test_creates_account_with_zero_balance(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.VENTANA, 7)
        db_session.commit()

        assert account.id is not None
        assert account.balance == Decimal("0")
        assert account.currency == "CRC"
        assert account.is_active is True

    def test_second_call_returns_same_account(self, db_session):
        service = LedgerService(db_session)
        first = service.get_or_create_account(OwnerType.VENTANA, 7)
        db_session.commit()
        second = service.get_or_create_account(OwnerType.VENTANA, 7, "USD")

        assert second.id == first.id
        assert second.currency == "CRC"

    def test_different_owner_types_get_different_accounts(self, db_session):
        service = LedgerService(db_session)
        ventana = service.get_or_create_account(OwnerType.VENTANA, 7)
        banca = service.get_or_create_account(OwnerType.BANCA, 7)

        assert ventana.id != banca.id


# --- Entry Tests ---

class TestAddLedgerEntry:

    def test_balance_moves_with_entry(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.BANCA, 1)

        service.add_ledger_entry(account.id, make_entry("150.00"))
        service.add_ledger_entry(account.id, make_entry("-40.00"))
        db_session.commit()

        db_session.refresh(account)
        assert account.balance == Decimal("110.00")

    def test_balance_equals_sum_of_entries(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.BANCA, 1)
        for value in ("100", "-25.50", "300", "-74.50"):
            service.add_ledger_entry(account.id, make_entry(value))
        db_session.commit()

        db_session.refresh(account)
        assert service.calculate_balance(account.id) == account.balance
        assert account.balance == Decimal("300")

    def test_unknown_account_rejected(self, db_session):
        service = LedgerService(db_session)
        with pytest.raises(NotFound, match="not found"):
            service.add_ledger_entry(999, make_entry("10"))

    def test_inactive_account_rejected(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.BANCA, 1)
        account.is_active = False
        db_session.commit()

        with pytest.raises(InvalidState, match="not active"):
            service.add_ledger_entry(account.id, make_entry("10"))

    def test_zero_value_rejected_by_schema(self):
        with pytest.raises(ValueError, match="must not be zero"):
            make_entry("0")

    def test_request_id_replay_returns_original(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.BANCA, 1)

        first = service.add_ledger_entry(account.id, make_entry("50", "req-1"))
        db_session.commit()
        second = service.add_ledger_entry(account.id, make_entry("50", "req-1"))
        db_session.commit()

        db_session.refresh(account)
        assert second.id == first.id
        assert account.balance == Decimal("50")
        assert service.find_entry_by_request_id(account.id, "req-1").id == first.id

    def test_concurrent_request_id_collides_on_unique_index(self, db_session, monkeypatch):
        """
        A second writer that missed the lookup (its read ran before
        the first writer committed) must still apply the request once.
        """
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.BANCA, 1)
        first = service.add_ledger_entry(account.id, make_entry("100", "req-1"))
        db_session.commit()

        real_lookup = service.find_entry_by_request_id
        calls = []

        def stale_then_real(account_id, request_id):
            calls.append(request_id)
            if len(calls) == 1:
                return None
            return real_lookup(account_id, request_id)

        monkeypatch.setattr(service, "find_entry_by_request_id", stale_then_real)
        second = service.add_ledger_entry(account.id, make_entry("100", "req-1"))
        db_session.commit()

        db_session.refresh(account)
        assert second.id == first.id
        assert len(calls) == 2
        assert account.balance == Decimal("100")
        assert db_session.query(LedgerEntry).filter_by(request_id="req-1").count() == 1

    def test_same_request_id_on_another_account_is_independent(self, db_session):
        service = LedgerService(db_session)
        a = service.get_or_create_account(OwnerType.BANCA, 1)
        b = service.get_or_create_account(OwnerType.BANCA, 2)

        first = service.add_ledger_entry(a.id, make_entry("50", "req-1"))
        second = service.add_ledger_entry(b.id, make_entry("50", "req-1"))

        assert first.id != second.id


# --- Reversal Tests ---

class TestReverseEntry:

    def test_reversal_creates_new_entry_and_leaves_original(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.BANCA, 1)
        original = service.add_ledger_entry(account.id, make_entry("80"))
        db_session.commit()

        reversal = service.reverse_entry(original.id, created_by=1)
        db_session.commit()

        db_session.refresh(original)
        db_session.refresh(account)
        assert reversal.id != original.id
        assert reversal.reversal_of_entry_id == original.id
        assert reversal.type == LedgerType.REVERSAL
        assert reversal.value_signed == Decimal("-80")
        assert original.value_signed == Decimal("80")
        assert original.reversal_of_entry_id is None
        assert account.balance == Decimal("0")

    def test_entry_cannot_be_reversed_twice(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.BANCA, 1)
        original = service.add_ledger_entry(account.id, make_entry("80"))
        service.reverse_entry(original.id, created_by=1)
        db_session.commit()

        with pytest.raises(InvalidState, match="already reversed"):
            service.reverse_entry(original.id, created_by=1)

    def test_reversal_cannot_be_reversed(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.BANCA, 1)
        original = service.add_ledger_entry(account.id, make_entry("80"))
        reversal = service.reverse_entry(original.id, created_by=1)
        db_session.commit()

        with pytest.raises(InvalidState, match="itself a reversal"):
            service.reverse_entry(reversal.id, created_by=1)

    def test_manual_reversal_must_negate_value(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.BANCA, 1)
        original = service.add_ledger_entry(account.id, make_entry("80"))
        db_session.commit()

        bad = make_entry("-50").model_copy(
            update={"reversal_of_entry_id": original.id}
        )
        with pytest.raises(ValidationConflict, match="negated value"):
            service.add_ledger_entry(account.id, bad)

    def test_reverse_unknown_entry(self, db_session):
        service = LedgerService(db_session)
        with pytest.raises(NotFound):
            service.reverse_entry(12345, created_by=1)


# --- Balance Summary Tests ---

class TestBalanceSummary:

    def test_summary_splits_debits_and_credits(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.VENTANA, 3)
        service.add_ledger_entry(account.id, make_entry("200"))
        service.add_ledger_entry(account.id, make_entry("-60"))
        service.add_ledger_entry(account.id, make_entry("-15"))
        db_session.commit()

        summary = service.get_balance_summary(account.id)

        assert summary["total_credit"] == Decimal("200")
        assert summary["total_debit"] == Decimal("-75")
        assert summary["calculated_balance"] == Decimal("125")
        assert summary["entry_count"] == 3
        assert summary["is_consistent"] is True

    def test_list_entries_newest_first_and_filtered(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.VENTANA, 3)
        first = service.add_ledger_entry(account.id, make_entry("10"))
        second = service.add_ledger_entry(
            account.id, make_entry("20", type=LedgerType.COMMISSION)
        )
        db_session.commit()

        entries = service.list_entries(account.id)
        assert [e.id for e in entries] == [second.id, first.id]

        only_commission = service.list_entries(
            account.id, types=[LedgerType.COMMISSION]
        )
        assert [e.id for e in only_commission] == [second.id]


# --- Document Tests ---

class TestDocuments:

    def test_bank_deposit_posts_negative_entry(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.VENTANA, 3)
        deposit, entry = service.create_bank_deposit(
            account.id,
            BankDepositCreate(
                date=datetime(2025, 3, 10, 15, 0),
                doc_number="DEP-77",
                amount=Decimal("500"),
                bank_name="BNCR",
                request_id="dep-77",
            ),
            created_by=1,
        )
        db_session.commit()

        db_session.refresh(account)
        assert entry.type == LedgerType.DEPOSIT
        assert entry.value_signed == Decimal("-500")
        assert entry.reference_type == ReferenceType.DEPOSIT_RECEIPT
        assert entry.reference_id == str(deposit.id)
        assert account.balance == Decimal("-500")

    def test_bank_deposit_replay_returns_same_deposit(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.VENTANA, 3)
        request = BankDepositCreate(
            date=datetime(2025, 3, 10, 15, 0),
            doc_number="DEP-77",
            amount=Decimal("500"),
            request_id="dep-77",
        )
        first, _ = service.create_bank_deposit(account.id, request, created_by=1)
        db_session.commit()
        second, _ = service.create_bank_deposit(account.id, request, created_by=1)
        db_session.commit()

        db_session.refresh(account)
        assert second.id == first.id
        assert account.balance == Decimal("-500")

    def test_bank_deposit_reusing_adjustment_request_id_rejected(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.VENTANA, 3)
        service.add_ledger_entry(account.id, make_entry("20", "shared-1"))
        db_session.commit()

        with pytest.raises(ValidationConflict) as exc_info:
            service.create_bank_deposit(account.id, BankDepositCreate(
                date=datetime(2025, 3, 10, 15, 0),
                doc_number="DEP-78",
                amount=Decimal("500"),
                request_id="shared-1",
            ), created_by=1)

        assert exc_info.value.code == "REQUEST_ID_CONFLICT"
        db_session.refresh(account)
        assert account.balance == Decimal("20")

    def test_payment_document_legs_net_to_zero(self, db_session):
        service = LedgerService(db_session)
        ventana = service.get_or_create_account(OwnerType.VENTANA, 3)
        banca = service.get_or_create_account(OwnerType.BANCA, 1)

        legs = service.create_payment_document(
            PaymentDocumentCreate(
                from_account_id=ventana.id,
                to_account_id=banca.id,
                amount=Decimal("250"),
                doc_number="PD-1",
                request_id="pd-1",
            ),
            created_by=1,
        )
        db_session.commit()

        assert [leg.type for leg in legs] == [
            LedgerType.PAYMENT_OUT, LedgerType.PAYMENT_IN,
        ]
        assert sum(leg.value_signed for leg in legs) == Decimal("0")
        assert {leg.reference_id for leg in legs} == {"PD-1"}
        db_session.refresh(ventana)
        db_session.refresh(banca)
        assert ventana.balance == Decimal("-250")
        assert banca.balance == Decimal("250")

    def test_payment_document_to_same_account_rejected(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.VENTANA, 3)

        with pytest.raises(ValidationConflict, match="same account"):
            service.create_payment_document(
                PaymentDocumentCreate(
                    from_account_id=account.id,
                    to_account_id=account.id,
                    amount=Decimal("10"),
                    doc_number="PD-2",
                ),
                created_by=1,
            )

    def test_payment_document_currency_mismatch_rejected(self, db_session):
        service = LedgerService(db_session)
        crc = service.get_or_create_account(OwnerType.VENTANA, 3)
        usd = service.get_or_create_account(OwnerType.BANCA, 1, "USD")

        with pytest.raises(ValidationConflict, match="currency"):
            service.create_payment_document(
                PaymentDocumentCreate(
                    from_account_id=crc.id,
                    to_account_id=usd.id,
                    amount=Decimal("10"),
                    doc_number="PD-3",
                ),
                created_by=1,
            )


# --- Snapshot Tests ---

class TestDailySnapshot:

    def test_snapshot_splits_opening_debit_credit(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.VENTANA, 3)
        # Business day 2025-03-10 runs 06:00 UTC -> 06:00 UTC next day
        service.add_ledger_entry(
            account.id, make_entry("100", when=datetime(2025, 3, 9, 12, 0))
        )
        service.add_ledger_entry(
            account.id, make_entry("40", when=datetime(2025, 3, 10, 12, 0))
        )
        service.add_ledger_entry(
            account.id, make_entry("-15", when=datetime(2025, 3, 11, 3, 0))
        )
        service.add_ledger_entry(
            account.id, make_entry("-99", when=datetime(2025, 3, 11, 7, 0))
        )

        snapshot = service.create_daily_snapshot(account.id, date(2025, 3, 10))
        db_session.commit()

        assert snapshot.opening == Decimal("100")
        assert snapshot.credit == Decimal("40")
        assert snapshot.debit == Decimal("-15")
        assert snapshot.closing == Decimal("125")

    def test_snapshot_is_idempotent(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.VENTANA, 3)
        first = service.create_daily_snapshot(account.id, date(2025, 3, 10))
        db_session.commit()
        second = service.create_daily_snapshot(account.id, date(2025, 3, 10))
        db_session.commit()

        assert second.id == first.id
        snapshots = service.get_daily_snapshots(
            account.id, date(2025, 3, 1), date(2025, 3, 31)
        )
        assert len(snapshots) == 1

    def test_entries_are_never_updated_by_snapshot(self, db_session):
        service = LedgerService(db_session)
        account = service.get_or_create_account(OwnerType.VENTANA, 3)
        service.add_ledger_entry(account.id, make_entry("10"))
        service.create_daily_snapshot(account.id, date.today())
        db_session.commit()

        assert db_session.query(LedgerEntry).count() == 1
