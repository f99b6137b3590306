# tests/test_ledger.py
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from sqlalchemy import select, func, update
from sqlalchemy.exc import OperationalError

from campus_billing.models import Invoice, Payment, UserLog
from campus_billing.services.cache import PageCacheInvalidator, PAYMENTS_PATH, INVOICES_PATH
from campus_billing.services.errors import (
    NotFoundError,
    PermissionDeniedError,
    InvalidAmountError,
    InvalidPaymentMethodError,
    OverpaymentError,
    IntegrityMismatchError,
    TransactionError,
    DuplicateReferenceError,
)
from campus_billing.services.ledger import LedgerService, derive_status, to_money, validate_amount


def assert_totals(db, invoice, paid, balance, status):
    db.refresh(invoice)
    assert invoice.amount_paid == Decimal(paid)
    assert invoice.balance == Decimal(balance)
    assert invoice.status == status


def payment_sum(db, invoice):
    total = db.execute(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.invoice_id == invoice.id)
    ).scalar_one()
    return to_money(total)


@pytest.fixture
def ledger(db, cache):
    return LedgerService(db, cache=cache)


@pytest.fixture
def first_payment(ledger, accountant, invoice):
    """Scenario 1: 400.00 against a 1000.00 invoice"""
    return ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("400.00"), "cash")


class TestDeriveStatus:
    @pytest.mark.parametrize("due,paid,expected", [
        ("1000.00", "0.00", "unpaid"),
        ("1000.00", "400.00", "partial"),
        ("1000.00", "1000.00", "paid"),
        ("0.00", "0.00", "paid"),
    ])
    def test_status_follows_balance(self, due, paid, expected):
        assert derive_status(Decimal(due), Decimal(paid)).value == expected

    def test_to_money_rounds_float_noise(self):
        assert to_money(0.1 + 0.2) == Decimal("0.30")
        assert to_money("12.345") == Decimal("12.35")


class TestRecordPayment:
    def test_partial_payment(self, db, first_payment, invoice):
        assert first_payment.amount == Decimal("400.00")
        assert_totals(db, invoice, "400.00", "600.00", "partial")

    def test_payment_settles_invoice(self, db, ledger, accountant, first_payment, invoice):
        ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("600.00"), "mobile_money")
        assert_totals(db, invoice, "1000.00", "0.00", "paid")

    def test_overpayment_leaves_invoice_unchanged(self, db, ledger, accountant, first_payment, invoice):
        ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("600.00"), "cash")

        with pytest.raises(OverpaymentError) as exc:
            ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("50.00"), "cash")

        assert "Outstanding balance: 0.00" in exc.value.message
        assert_totals(db, invoice, "1000.00", "0.00", "paid")
        assert db.execute(
            select(func.count(Payment.id)).where(Payment.invoice_id == invoice.id)
        ).scalar_one() == 2

    def test_overpayment_message_reports_outstanding(self, ledger, accountant, first_payment, invoice):
        with pytest.raises(OverpaymentError) as exc:
            ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("700.00"), "cash")
        assert exc.value.outstanding == Decimal("600.00")
        assert exc.value.resulting_paid == Decimal("1100.00")

    @pytest.mark.parametrize("amount", [
        0, Decimal("-5.00"), "NaN", "Infinity", None, "abc", True, "1e30", "10000000000.00",
    ])
    def test_invalid_amounts_rejected(self, db, ledger, accountant, invoice, amount):
        with pytest.raises(InvalidAmountError):
            ledger.record_payment(accountant, invoice.id, invoice.student_id, amount, "cash")
        assert_totals(db, invoice, "0.00", "1000.00", "unpaid")

    def test_unknown_method_rejected(self, ledger, accountant, invoice):
        with pytest.raises(InvalidPaymentMethodError):
            ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("10.00"), "bitcoin")

    def test_method_is_normalised(self, ledger, accountant, invoice):
        payment = ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("10.00"), " Bank_Transfer ")
        assert payment.payment_method == "bank_transfer"

    def test_student_must_own_invoice(self, db, ledger, accountant, invoice, make_student):
        other = make_student()
        with pytest.raises(IntegrityMismatchError):
            ledger.record_payment(accountant, invoice.id, other.id, Decimal("100.00"), "cash")
        assert_totals(db, invoice, "0.00", "1000.00", "unpaid")

    def test_missing_invoice(self, ledger, accountant, student):
        with pytest.raises(NotFoundError):
            ledger.record_payment(accountant, uuid.uuid4(), student.id, Decimal("100.00"), "cash")

    def test_duplicate_reference_rejected(self, db, ledger, accountant, invoice):
        ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("100.00"), "mobile_money",
                              reference_number="QJK29XY1")

        with pytest.raises(DuplicateReferenceError) as exc:
            ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("100.00"), "mobile_money",
                                  reference_number=" QJK29XY1 ")

        assert isinstance(exc.value, TransactionError)
        assert_totals(db, invoice, "100.00", "900.00", "partial")

    def test_roles_without_capability_are_denied(self, ledger, invoice, student_user, registrar, make_user):
        inactive = make_user("ACCOUNTANT", is_active=False)
        for user in (student_user, registrar, inactive):
            with pytest.raises(PermissionDeniedError):
                ledger.record_payment(user, invoice.id, invoice.student_id, Decimal("100.00"), "cash")

    def test_persistence_failure_rolls_back(self, db, ledger, accountant, invoice, monkeypatch):
        def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db, "commit", failing_commit)
        with pytest.raises(TransactionError) as exc:
            ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("100.00"), "cash")
        monkeypatch.undo()

        assert isinstance(exc.value.original, OperationalError)
        assert payment_sum(db, invoice) == Decimal("0.00")
        assert_totals(db, invoice, "0.00", "1000.00", "unpaid")


class TestUpdatePayment:
    def test_amount_change_reconciles(self, db, ledger, accountant, first_payment, invoice):
        payment = ledger.update_payment(accountant, first_payment.id, amount=Decimal("250.00"))
        assert payment.amount == Decimal("250.00")
        assert_totals(db, invoice, "250.00", "750.00", "partial")

    def test_update_cannot_overpay(self, db, ledger, accountant, first_payment, invoice):
        ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("500.00"), "cash")

        with pytest.raises(OverpaymentError) as exc:
            ledger.update_payment(accountant, first_payment.id, amount=Decimal("600.00"))

        assert exc.value.outstanding == Decimal("500.00")
        assert_totals(db, invoice, "900.00", "100.00", "partial")
        db.refresh(first_payment)
        assert first_payment.amount == Decimal("400.00")

    def test_update_to_exact_balance_settles(self, db, ledger, accountant, first_payment, invoice):
        ledger.update_payment(accountant, first_payment.id, amount=Decimal("1000.00"))
        assert_totals(db, invoice, "1000.00", "0.00", "paid")

    def test_metadata_only_leaves_invoice_untouched(self, db, ledger, accountant, first_payment, invoice):
        db.refresh(invoice)
        before = (invoice.amount_paid, invoice.balance, invoice.status, invoice.updated_at)

        payment = ledger.update_payment(accountant, first_payment.id, amount=Decimal("400.00"),
                                        method="card", reference_number="RCPT-0042")

        assert payment.payment_method == "card"
        assert payment.reference_number == "RCPT-0042"
        db.refresh(invoice)
        assert (invoice.amount_paid, invoice.balance, invoice.status, invoice.updated_at) == before

    def test_invalid_amount(self, ledger, accountant, first_payment):
        with pytest.raises(InvalidAmountError):
            ledger.update_payment(accountant, first_payment.id, amount=Decimal("-1.00"))

    def test_amount_beyond_column_range(self, db, ledger, accountant, first_payment, invoice):
        with pytest.raises(InvalidAmountError):
            ledger.update_payment(accountant, first_payment.id, amount="1e30")
        assert_totals(db, invoice, "400.00", "600.00", "partial")

    def test_blank_reference_clears_it(self, db, ledger, accountant, first_payment, invoice):
        ledger.update_payment(accountant, first_payment.id, reference_number="RCPT-0042")
        db.refresh(invoice)
        before = (invoice.amount_paid, invoice.balance, invoice.status)

        payment = ledger.update_payment(accountant, first_payment.id, reference_number="  ")

        assert payment.reference_number is None
        db.refresh(invoice)
        assert (invoice.amount_paid, invoice.balance, invoice.status) == before

    def test_omitted_reference_is_kept(self, ledger, accountant, first_payment):
        ledger.update_payment(accountant, first_payment.id, reference_number="RCPT-0042")
        payment = ledger.update_payment(accountant, first_payment.id, method="card")
        assert payment.reference_number == "RCPT-0042"

    def test_reference_taken_by_another_payment(self, ledger, accountant, first_payment, invoice):
        ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("10.00"), "cash",
                              reference_number="RCPT-1")
        with pytest.raises(DuplicateReferenceError):
            ledger.update_payment(accountant, first_payment.id, reference_number="RCPT-1")

    def test_missing_payment(self, ledger, accountant):
        with pytest.raises(NotFoundError):
            ledger.update_payment(accountant, uuid.uuid4(), amount=Decimal("10.00"))

    def test_registrar_cannot_update(self, ledger, registrar, first_payment):
        with pytest.raises(PermissionDeniedError):
            ledger.update_payment(registrar, first_payment.id, amount=Decimal("10.00"))


class TestDeletePayment:
    def test_delete_restores_balance(self, db, ledger, accountant, first_payment, invoice):
        ledger.delete_payment(accountant, first_payment.id)
        assert_totals(db, invoice, "0.00", "1000.00", "unpaid")
        assert db.get(Payment, first_payment.id) is None

    def test_delete_one_of_two(self, db, ledger, accountant, first_payment, invoice):
        ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("600.00"), "cash")
        ledger.delete_payment(accountant, first_payment.id)
        assert_totals(db, invoice, "600.00", "400.00", "partial")

    def test_create_then_delete_round_trip(self, db, ledger, accountant, invoice):
        db.refresh(invoice)
        before = (invoice.amount_paid, invoice.balance, invoice.status)

        payment = ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("321.45"), "cheque")
        ledger.delete_payment(accountant, payment.id)

        db.refresh(invoice)
        assert (invoice.amount_paid, invoice.balance, invoice.status) == before

    def test_missing_payment(self, ledger, accountant):
        with pytest.raises(NotFoundError):
            ledger.delete_payment(accountant, uuid.uuid4())


class TestReconcile:
    def test_repairs_drift(self, db, ledger, accountant, first_payment, invoice):
        db.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id)
            .values(amount_paid=Decimal("0.00"), balance=Decimal("1000.00"), status="unpaid")
        )
        db.commit()

        ledger.reconcile_invoice_from_payments(accountant, invoice.id)

        assert_totals(db, invoice, "400.00", "600.00", "partial")
        logged = db.execute(
            select(UserLog).where(UserLog.target_id == invoice.id, UserLog.action == "reconcile")
        ).scalars().all()
        assert len(logged) == 1

    def test_consistent_invoice_is_left_alone(self, db, ledger, accountant, first_payment, invoice):
        ledger.reconcile_invoice_from_payments(accountant, invoice.id)
        assert_totals(db, invoice, "400.00", "600.00", "partial")
        assert db.execute(
            select(func.count(UserLog.id)).where(UserLog.action == "reconcile")
        ).scalar_one() == 0

    def test_student_cannot_reconcile(self, ledger, student_user, invoice):
        with pytest.raises(PermissionDeniedError):
            ledger.reconcile_invoice_from_payments(student_user, invoice.id)


class TestSideEffects:
    def test_pages_invalidated_after_commit(self, cache, first_payment, invoice):
        assert cache.seen == [
            PAYMENTS_PATH,
            INVOICES_PATH,
            f"/dashboard/finance/invoices/{invoice.id}",
            f"/dashboard/students/{invoice.student_id}",
        ]

    def test_failed_mutation_invalidates_nothing(self, cache, ledger, accountant, invoice):
        with pytest.raises(OverpaymentError):
            ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("2000.00"), "cash")
        assert cache.seen == []

    def test_failing_listener_does_not_fail_mutation(self, db, cache, ledger, accountant, invoice):
        def broken(path):
            raise RuntimeError("cache node unreachable")

        cache._listeners.insert(0, broken)
        ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("100.00"), "cash")

        assert_totals(db, invoice, "100.00", "900.00", "partial")
        assert len(cache.seen) == 4

    def test_audit_rows_written(self, db, ledger, accountant, first_payment):
        ledger.update_payment(accountant, first_payment.id, amount=Decimal("300.00"))
        ledger.delete_payment(accountant, first_payment.id)

        actions = db.execute(
            select(UserLog.action)
            .where(UserLog.target_table == "payments", UserLog.target_id == first_payment.id)
        ).scalars().all()
        assert sorted(actions) == ["create", "delete", "update"]

    def test_audit_failure_is_swallowed(self, db, ledger, accountant, invoice, monkeypatch):
        real_commit = db.commit
        calls = {"n": 0}

        def flaky_commit():
            calls["n"] += 1
            if calls["n"] == 2:
                raise OperationalError("INSERT INTO user_logs", {}, Exception("database is locked"))
            real_commit()

        monkeypatch.setattr(db, "commit", flaky_commit)
        payment = ledger.record_payment(accountant, invoice.id, invoice.student_id, Decimal("100.00"), "cash")
        monkeypatch.undo()

        assert db.get(Payment, payment.id) is not None
        assert_totals(db, invoice, "100.00", "900.00", "partial")
        assert db.execute(
            select(func.count(UserLog.id)).where(UserLog.target_id == payment.id)
        ).scalar_one() == 0


def record_concurrently(session_factory, user, invoice, amounts):
    """Fire record_payment from one thread per amount, all released together"""
    barrier = threading.Barrier(len(amounts))

    def worker(amount):
        session = session_factory()
        try:
            barrier.wait()
            try:
                LedgerService(session, cache=PageCacheInvalidator()).record_payment(
                    user, invoice.id, invoice.student_id, Decimal(amount), "cash"
                )
                return "ok"
            except OverpaymentError:
                return "overpaid"
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=len(amounts)) as pool:
        futures = [pool.submit(worker, amount) for amount in amounts]
        return [f.result() for f in futures]


class TestConcurrency:
    def test_two_halves_settle_invoice(self, db, session_factory, accountant, invoice):
        outcomes = record_concurrently(session_factory, accountant, invoice, ["500.00", "500.00"])

        assert outcomes == ["ok", "ok"]
        assert_totals(db, invoice, "1000.00", "0.00", "paid")
        assert payment_sum(db, invoice) == Decimal("1000.00")

    def test_only_one_of_two_overlapping_payments_lands(self, db, session_factory, accountant, invoice):
        outcomes = record_concurrently(session_factory, accountant, invoice, ["600.00", "600.00"])

        assert sorted(outcomes) == ["ok", "overpaid"]
        assert_totals(db, invoice, "600.00", "400.00", "partial")
        assert payment_sum(db, invoice) == Decimal("600.00")

    def test_paid_amount_matches_committed_payments(self, db, session_factory, accountant, invoice):
        outcomes = record_concurrently(session_factory, accountant, invoice, ["150.00"] * 8)

        # 6 x 150 fits under 1000; a 7th would not
        assert outcomes.count("ok") == 6
        db.refresh(invoice)
        assert invoice.amount_paid == payment_sum(db, invoice) == Decimal("900.00")
        assert invoice.status == "partial"


def test_validate_amount_quantizes():
    assert validate_amount("10.005") == Decimal("10.01")
    assert validate_amount(12) == Decimal("12.00")


def test_validate_amount_bounds():
    assert validate_amount("9999999999.99") == Decimal("9999999999.99")
    for value in ("10000000000.00", "1e30", "1e-30"):
        with pytest.raises(InvalidAmountError):
            validate_amount(value)
