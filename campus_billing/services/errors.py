# campus_billing/services/errors.py - Errors raised by the billing ledger
from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID


class LedgerError(Exception):
    """Base class for every billing ledger failure"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LedgerError):
    def __init__(self, entity: str, entity_id: UUID):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class PermissionDeniedError(LedgerError):
    def __init__(self, action: str):
        super().__init__(f"You do not have permission to {action.replace('_', ' ')}")
        self.action = action


class InvalidAmountError(LedgerError):
    pass


class OverpaymentError(LedgerError):
    def __init__(self, amount_due: Decimal, resulting_paid: Decimal, outstanding: Decimal):
        super().__init__(
            f"This would bring the total paid to {resulting_paid}, exceeding the amount due of {amount_due}. "
            f"Outstanding balance: {max(outstanding, Decimal('0.00'))}"
        )
        self.amount_due = amount_due
        self.resulting_paid = resulting_paid
        self.outstanding = outstanding


class IntegrityMismatchError(LedgerError):
    def __init__(self, invoice_id: UUID, expected_student_id: UUID, supplied_student_id: UUID):
        super().__init__(
            f"Invoice {invoice_id} belongs to student {expected_student_id}, "
            f"not {supplied_student_id}"
        )
        self.invoice_id = invoice_id
        self.expected_student_id = expected_student_id
        self.supplied_student_id = supplied_student_id


class InvalidPaymentMethodError(LedgerError):
    def __init__(self, method: str, allowed: List[str]):
        super().__init__(f"Unknown payment method '{method}'. Use one of: {', '.join(allowed)}")
        self.method = method
        self.allowed = allowed


class DuplicateInvoiceError(LedgerError):
    def __init__(self, student_id: UUID, semester_id: UUID):
        super().__init__(f"An invoice for student {student_id} in semester {semester_id} already exists")
        self.student_id = student_id
        self.semester_id = semester_id


class InvoiceHasPaymentsError(LedgerError):
    def __init__(self, invoice_id: UUID, payment_count: int):
        super().__init__(
            f"Invoice {invoice_id} has {payment_count} payment(s); delete them before deleting the invoice"
        )
        self.invoice_id = invoice_id
        self.payment_count = payment_count


class DuplicateFeeStructureError(LedgerError):
    def __init__(self, program: str, semester_id: UUID):
        super().__init__(f"A fee structure for {program} in semester {semester_id} already exists")
        self.program = program
        self.semester_id = semester_id


class FeeStructureInUseError(LedgerError):
    def __init__(self, fee_structure_id: UUID, invoice_count: int):
        super().__init__(
            f"Fee structure {fee_structure_id} is referenced by {invoice_count} invoice(s) and cannot be deleted"
        )
        self.fee_structure_id = fee_structure_id
        self.invoice_count = invoice_count


class InvalidDateRangeError(LedgerError):
    def __init__(self, start: date, end: date):
        super().__init__(f"Report start date {start} is after end date {end}")
        self.start = start
        self.end = end


class TransactionError(LedgerError):
    """A persistence failure; the transaction was rolled back and nothing was written"""

    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.original = original


class DuplicateReferenceError(TransactionError):
    def __init__(self, reference_number: str, original: Optional[BaseException] = None):
        super().__init__(f"A payment with reference number '{reference_number}' already exists", original)
        self.reference_number = reference_number


__all__ = [
    "LedgerError",
    "NotFoundError",
    "PermissionDeniedError",
    "InvalidAmountError",
    "OverpaymentError",
    "IntegrityMismatchError",
    "InvalidPaymentMethodError",
    "DuplicateInvoiceError",
    "InvoiceHasPaymentsError",
    "DuplicateFeeStructureError",
    "FeeStructureInUseError",
    "InvalidDateRangeError",
    "TransactionError",
    "DuplicateReferenceError",
]
