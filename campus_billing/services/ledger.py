# campus_billing/services/ledger.py - Billing ledger reconciliation
"""
Keeps each invoice's amount_paid, balance and status consistent with the
payments posted against it.

Every mutation runs in one database transaction. The invoice row is locked
first (SELECT ... FOR UPDATE), the payment change is flushed, and then
amount_paid is recomputed as the SUM of the invoice's payments inside that
same transaction. Nothing is derived from incremental arithmetic on the
stored amount_paid, so concurrent or partially failed writes cannot leave
the invoice drifting from its payments.
"""
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union
from uuid import UUID
import logging

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from campus_billing.core.config import settings
from campus_billing.core.permissions import authorize
from campus_billing.models.billing import Invoice, InvoiceStatus, Payment
from campus_billing.models.user import User
from campus_billing.services.audit import record_action
from campus_billing.services.cache import PageCacheInvalidator, page_cache, ledger_paths
from campus_billing.services.errors import (
    LedgerError,
    NotFoundError,
    PermissionDeniedError,
    InvalidAmountError,
    InvalidPaymentMethodError,
    OverpaymentError,
    IntegrityMismatchError,
    TransactionError,
    DuplicateReferenceError,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# Largest value a Numeric(12, 2) column holds
MAX_AMOUNT = Decimal("9999999999.99")

AmountLike = Union[Decimal, int, float, str]


def to_money(value: AmountLike) -> Decimal:
    """Convert a stored or user-supplied amount to a 2dp Decimal."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_money(value: Optional[AmountLike], label: str = "Amount") -> Decimal:
    """
    Convert user input to a 2dp Decimal that fits a Numeric(12, 2) column.

    Raises InvalidAmountError for missing, non-numeric, non-finite or
    out-of-range input. Sign checks are left to the caller.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmountError(f"{label} is required")
    try:
        amount = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
        if not amount.is_finite():
            raise InvalidAmountError(f"{label} must be a finite number")
        amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmountError(f"{label} '{value}' is not a valid amount")
    if abs(amount) > MAX_AMOUNT:
        raise InvalidAmountError(f"{label} cannot exceed {MAX_AMOUNT}")
    return amount


def validate_amount(value: Optional[AmountLike]) -> Decimal:
    """Return the payment amount as money, or raise InvalidAmountError unless it is positive."""
    amount = parse_money(value, "Payment amount")
    if amount <= ZERO:
        raise InvalidAmountError("Payment amount must be greater than zero")
    return amount


def derive_status(amount_due: Decimal, amount_paid: Decimal) -> InvoiceStatus:
    balance = amount_due - amount_paid
    if balance <= ZERO:
        return InvoiceStatus.PAID
    if amount_paid <= ZERO:
        return InvoiceStatus.UNPAID
    return InvoiceStatus.PARTIAL


def apply_totals(invoice: Invoice, amount_paid: Decimal) -> Invoice:
    """Set amount_paid and the fields derived from it."""
    amount_due = to_money(invoice.amount_due)
    amount_paid = max(to_money(amount_paid), ZERO)
    invoice.amount_paid = amount_paid
    invoice.balance = amount_due - amount_paid
    invoice.status = derive_status(amount_due, amount_paid).value
    return invoice


def normalize_method(method: Optional[str]) -> str:
    cleaned = (method or "").strip().lower()
    if cleaned not in settings.PAYMENT_METHODS:
        raise InvalidPaymentMethodError(method or "", settings.PAYMENT_METHODS)
    return cleaned


def clean_reference(reference: Optional[str]) -> Optional[str]:
    if reference is None:
        return None
    reference = reference.strip()
    return reference or None


class LedgerService:
    """Payment mutations and invoice reconciliation for one database session"""

    def __init__(self, db: Session, cache: Optional[PageCacheInvalidator] = None):
        self.db = db
        self.cache = cache or page_cache

    # ------------------------------------------------------------------
    # Plumbing shared with the invoice and fee-structure services
    # ------------------------------------------------------------------

    def _authorize(self, user: User, action: str) -> None:
        if not authorize(user, action):
            logger.info(f"Denied {action} for user {getattr(user, 'id', None)}")
            raise PermissionDeniedError(action)

    @contextmanager
    def _unit_of_work(self, reference_number: Optional[str] = None):
        """Commit on success; roll back and translate persistence errors on failure."""
        try:
            yield
            self.db.commit()
        except LedgerError:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            if reference_number and "reference_number" in str(e.orig):
                raise DuplicateReferenceError(reference_number, e) from e
            logger.error(f"Ledger integrity error: {e.orig}")
            raise TransactionError("The ledger update violated a database constraint and was rolled back", e) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Ledger transaction failed: {e}")
            raise TransactionError("The ledger update could not be saved and was rolled back", e) from e

    def _lock_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self.db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    def _get_payment(self, payment_id: UUID, for_update: bool = False) -> Payment:
        query = select(Payment).where(Payment.id == payment_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        payment = self.db.execute(query).scalar_one_or_none()
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        return payment

    def _sum_payments(self, invoice_id: UUID) -> Decimal:
        total = self.db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.invoice_id == invoice_id)
        ).scalar_one()
        return to_money(total)

    def _ensure_reference_free(self, reference_number: Optional[str], exclude_payment_id: Optional[UUID] = None) -> None:
        if not reference_number:
            return
        query = select(Payment.id).where(Payment.reference_number == reference_number)
        if exclude_payment_id is not None:
            query = query.where(Payment.id != exclude_payment_id)
        if self.db.execute(query).first() is not None:
            raise DuplicateReferenceError(reference_number)

    def _reconcile_locked(self, invoice: Invoice) -> Invoice:
        """Recompute totals from payments. The caller holds the invoice lock."""
        self.db.flush()
        amount_paid = self._sum_payments(invoice.id)
        if amount_paid > to_money(invoice.amount_due):
            raise OverpaymentError(to_money(invoice.amount_due), amount_paid, to_money(invoice.amount_due) - amount_paid)
        return apply_totals(invoice, amount_paid)

    def _after_commit(self, user: User, action: str, target_table: str, target_id: UUID,
                      description: str, invoice: Invoice) -> None:
        self.cache.invalidate_many(ledger_paths(invoice.id, invoice.student_id))
        record_action(self.db, user, action, target_table, target_id, description)

    # ------------------------------------------------------------------
    # Ledger operations
    # ------------------------------------------------------------------

    def record_payment(
        self,
        user: User,
        invoice_id: UUID,
        student_id: UUID,
        amount: AmountLike,
        method: str,
        reference_number: Optional[str] = None,
    ) -> Payment:
        """
        Post a payment against an invoice and reconcile the invoice.

        Raises:
            PermissionDeniedError, InvalidAmountError, InvalidPaymentMethodError,
            NotFoundError, IntegrityMismatchError, OverpaymentError,
            DuplicateReferenceError, TransactionError
        """
        self._authorize(user, "record_payment")
        amount = validate_amount(amount)
        method = normalize_method(method)
        reference_number = clean_reference(reference_number)

        with self._unit_of_work(reference_number):
            invoice = self._lock_invoice(invoice_id)
            if invoice.student_id != student_id:
                raise IntegrityMismatchError(invoice.id, invoice.student_id, student_id)

            self._ensure_reference_free(reference_number)

            already_paid = self._sum_payments(invoice.id)
            amount_due = to_money(invoice.amount_due)
            if already_paid + amount > amount_due:
                raise OverpaymentError(amount_due, already_paid + amount, amount_due - already_paid)

            payment = Payment(
                invoice_id=invoice.id,
                student_id=student_id,
                amount=amount,
                payment_method=method,
                reference_number=reference_number,
            )
            self.db.add(payment)
            self._reconcile_locked(invoice)

        logger.info(f"Recorded payment {payment.id} of {amount} on invoice {invoice.id} -> {invoice.status}")
        self._after_commit(
            user, "create", "payments", payment.id,
            f"Recorded payment of {amount} for invoice {invoice.id}", invoice,
        )
        return payment

    def update_payment(
        self,
        user: User,
        payment_id: UUID,
        amount: Optional[AmountLike] = None,
        method: Optional[str] = None,
        reference_number: Optional[str] = None,
    ) -> Payment:
        """
        Amend a payment. When the amount changes the invoice is reconciled in
        the same transaction; metadata-only changes leave the invoice alone.

        reference_number=None keeps the current reference; an empty or blank
        string clears it.
        """
        self._authorize(user, "update_payment")
        new_amount = validate_amount(amount) if amount is not None else None
        new_method = normalize_method(method) if method is not None else None
        new_reference = clean_reference(reference_number)

        invoice = None
        with self._unit_of_work(new_reference):
            payment = self._get_payment(payment_id)
            amount_changed = new_amount is not None and new_amount != to_money(payment.amount)

            if amount_changed:
                invoice = self._lock_invoice(payment.invoice_id)
                payment = self._get_payment(payment_id, for_update=True)
                amount_due = to_money(invoice.amount_due)
                resulting = self._sum_payments(invoice.id) - to_money(payment.amount) + new_amount
                if resulting < ZERO:
                    raise InvalidAmountError(f"Amount paid on invoice {invoice.id} cannot become negative")
                if resulting > amount_due:
                    raise OverpaymentError(amount_due, resulting, amount_due - (resulting - new_amount))
                payment.amount = new_amount
            else:
                payment = self._get_payment(payment_id, for_update=True)

            if new_method is not None:
                payment.payment_method = new_method
            if reference_number is not None and new_reference != payment.reference_number:
                self._ensure_reference_free(new_reference, exclude_payment_id=payment.id)
                payment.reference_number = new_reference

            if invoice is not None:
                self._reconcile_locked(invoice)

        if invoice is not None:
            logger.info(f"Payment {payment.id} amount changed to {new_amount}; invoice {invoice.id} -> {invoice.status}")
            self._after_commit(
                user, "update", "payments", payment.id,
                f"Changed payment amount to {new_amount} on invoice {invoice.id}", invoice,
            )
        else:
            self.cache.invalidate_many(ledger_paths(payment.invoice_id, payment.student_id))
            record_action(self.db, user, "update", "payments", payment.id, "Updated payment record details")
        return payment

    def delete_payment(self, user: User, payment_id: UUID) -> None:
        """Remove a payment and reconcile its invoice in the same transaction."""
        self._authorize(user, "delete_payment")

        with self._unit_of_work():
            payment = self._get_payment(payment_id)
            invoice = self._lock_invoice(payment.invoice_id)
            payment = self._get_payment(payment_id, for_update=True)
            amount = to_money(payment.amount)
            self.db.delete(payment)
            self._reconcile_locked(invoice)

        logger.info(f"Deleted payment {payment_id} ({amount}); invoice {invoice.id} -> {invoice.status}")
        self._after_commit(
            user, "delete", "payments", payment_id,
            f"Deleted payment of {amount} from invoice {invoice.id}", invoice,
        )

    def reconcile_invoice_from_payments(self, user: User, invoice_id: UUID) -> Invoice:
        """Repair an invoice by recomputing its totals from the payments table."""
        self._authorize(user, "reconcile_invoice")

        with self._unit_of_work():
            invoice = self._lock_invoice(invoice_id)
            before = (to_money(invoice.amount_paid), to_money(invoice.balance), invoice.status)
            self._reconcile_locked(invoice)
            after = (invoice.amount_paid, invoice.balance, invoice.status)

        if before != after:
            logger.warning(f"Invoice {invoice.id} drifted from its payments: {before} -> {after}")
            self._after_commit(
                user, "reconcile", "invoices", invoice.id,
                f"Reconciled invoice totals from payments: paid {before[0]} -> {after[0]}", invoice,
            )
        return invoice


__all__ = [
    "LedgerService",
    "to_money",
    "parse_money",
    "validate_amount",
    "derive_status",
    "apply_totals",
    "normalize_method",
    "clean_reference",
]
