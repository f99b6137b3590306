# campus_billing/services/invoices.py - Invoice administration
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID
import logging

from sqlalchemy import select, func

from campus_billing.models.academic import Semester
from campus_billing.models.billing import Invoice, Payment
from campus_billing.models.fee import FeeStructure
from campus_billing.models.student import Student
from campus_billing.models.user import User
from campus_billing.services.audit import record_action
from campus_billing.services.cache import invoice_path, student_path, INVOICES_PATH
from campus_billing.services.errors import (
    NotFoundError,
    InvalidAmountError,
    DuplicateInvoiceError,
    InvoiceHasPaymentsError,
    OverpaymentError,
)
from campus_billing.services.ledger import LedgerService, AmountLike, apply_totals, parse_money, ZERO

logger = logging.getLogger(__name__)


def validate_amount_due(value: AmountLike) -> Decimal:
    amount_due = parse_money(value, "Amount due")
    if amount_due < ZERO:
        raise InvalidAmountError("Amount due must be a non-negative number")
    return amount_due


class InvoiceService(LedgerService):
    """Create, edit and remove invoices. Paid/balance/status are always derived."""

    def _ensure_exists(self, model, entity: str, entity_id: UUID):
        if self.db.get(model, entity_id) is None:
            raise NotFoundError(entity, entity_id)

    def create_invoice(
        self,
        user: User,
        student_id: UUID,
        semester_id: UUID,
        due_date: date,
        amount_due: Optional[AmountLike] = None,
        fee_structure_id: Optional[UUID] = None,
    ) -> Invoice:
        """
        Raise an invoice for a student's semester.

        When amount_due is omitted the fee structure's total is billed.
        """
        self._authorize(user, "create_invoice")

        with self._unit_of_work():
            self._ensure_exists(Student, "Student", student_id)
            self._ensure_exists(Semester, "Semester", semester_id)

            fee_structure = None
            if fee_structure_id is not None:
                fee_structure = self.db.get(FeeStructure, fee_structure_id)
                if fee_structure is None:
                    raise NotFoundError("Fee structure", fee_structure_id)

            if amount_due is None:
                if fee_structure is None:
                    raise InvalidAmountError("Amount due is required when no fee structure is given")
                amount_due = fee_structure.total_amount
            amount_due = validate_amount_due(amount_due)

            existing = self.db.execute(
                select(Invoice.id).where(
                    Invoice.student_id == student_id,
                    Invoice.semester_id == semester_id,
                )
            ).first()
            if existing is not None:
                raise DuplicateInvoiceError(student_id, semester_id)

            invoice = Invoice(
                student_id=student_id,
                semester_id=semester_id,
                fee_structure_id=fee_structure_id,
                amount_due=amount_due,
                due_date=due_date,
            )
            apply_totals(invoice, ZERO)
            self.db.add(invoice)

        logger.info(f"Created invoice {invoice.id} for student {student_id}: {amount_due}")
        self.cache.invalidate_many([INVOICES_PATH, invoice_path(invoice.id), student_path(student_id)])
        record_action(self.db, user, "create", "invoices", invoice.id,
                      f"Issued invoice of {amount_due} for semester {semester_id}")
        return invoice

    def update_invoice(
        self,
        user: User,
        invoice_id: UUID,
        amount_due: Optional[AmountLike] = None,
        due_date: Optional[date] = None,
        fee_structure_id: Optional[UUID] = None,
    ) -> Invoice:
        """
        Edit an invoice. A new amount_due is checked against what has already
        been paid and the totals are reconciled from payments.
        """
        self._authorize(user, "update_invoice")
        new_amount_due = validate_amount_due(amount_due) if amount_due is not None else None

        with self._unit_of_work():
            invoice = self._lock_invoice(invoice_id)
            if fee_structure_id is not None:
                self._ensure_exists(FeeStructure, "Fee structure", fee_structure_id)
                invoice.fee_structure_id = fee_structure_id
            if due_date is not None:
                invoice.due_date = due_date
            if new_amount_due is not None:
                # Checked before flush so the amount_paid <= amount_due constraint never fires
                amount_paid = self._sum_payments(invoice.id)
                if amount_paid > new_amount_due:
                    raise OverpaymentError(new_amount_due, amount_paid, new_amount_due - amount_paid)
                invoice.amount_due = new_amount_due
                apply_totals(invoice, amount_paid)
            self._reconcile_locked(invoice)

        logger.info(f"Updated invoice {invoice.id}: due {invoice.amount_due}, status {invoice.status}")
        self.cache.invalidate_many([INVOICES_PATH, invoice_path(invoice.id), student_path(invoice.student_id)])
        record_action(self.db, user, "update", "invoices", invoice.id, "Updated invoice details")
        return invoice

    def delete_invoice(self, user: User, invoice_id: UUID) -> None:
        """Delete an invoice that has no payments."""
        self._authorize(user, "delete_invoice")

        with self._unit_of_work():
            invoice = self._lock_invoice(invoice_id)
            payment_count = self.db.execute(
                select(func.count(Payment.id)).where(Payment.invoice_id == invoice.id)
            ).scalar_one()
            if payment_count:
                raise InvoiceHasPaymentsError(invoice.id, payment_count)
            student_id = invoice.student_id
            self.db.delete(invoice)

        logger.info(f"Deleted invoice {invoice_id}")
        self.cache.invalidate_many([INVOICES_PATH, invoice_path(invoice_id), student_path(student_id)])
        record_action(self.db, user, "delete", "invoices", invoice_id, "Deleted invoice")


__all__ = ["InvoiceService", "validate_amount_due"]
