# campus_billing/services/reports.py - Read-side billing queries
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, func, or_, cast, String
from sqlalchemy.orm import Session, joinedload, selectinload

from campus_billing.core.config import settings
from campus_billing.models.billing import Invoice, Payment
from campus_billing.models.fee import FeeStructure
from campus_billing.models.student import Student
from campus_billing.services.errors import NotFoundError, InvalidDateRangeError
from campus_billing.services.ledger import to_money, ZERO


def get_invoice(db: Session, invoice_id: UUID) -> Invoice:
    """Invoice with its payments loaded"""
    invoice = db.execute(
        select(Invoice)
        .options(selectinload(Invoice.payments))
        .where(Invoice.id == invoice_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if invoice is None:
        raise NotFoundError("Invoice", invoice_id)
    return invoice


def list_invoices(
    db: Session,
    student_id: Optional[UUID] = None,
    semester_id: Optional[UUID] = None,
    status: Optional[str] = None,
) -> List[Invoice]:
    query = select(Invoice)
    if student_id:
        query = query.where(Invoice.student_id == student_id)
    if semester_id:
        query = query.where(Invoice.semester_id == semester_id)
    if status:
        query = query.where(Invoice.status == status)
    return list(db.execute(query.order_by(Invoice.issued_date.desc())).scalars().all())


def list_overdue_invoices(db: Session, today: Optional[date] = None) -> List[Invoice]:
    """Invoices past their due date that still carry a balance"""
    today = today or date.today()
    return list(db.execute(
        select(Invoice)
        .options(selectinload(Invoice.payments))
        .where(Invoice.due_date < today, Invoice.balance > 0)
        .order_by(Invoice.due_date)
    ).scalars().all())


def _with_details(query):
    """Load the invoice and student a payment listing shows alongside each row"""
    return query.options(joinedload(Payment.invoice), joinedload(Payment.student))


def get_payment(db: Session, payment_id: UUID) -> Payment:
    payment = db.execute(
        _with_details(select(Payment)).where(Payment.id == payment_id)
    ).scalar_one_or_none()
    if payment is None:
        raise NotFoundError("Payment", payment_id)
    return payment


def list_payments(
    db: Session,
    student_id: Optional[UUID] = None,
    invoice_id: Optional[UUID] = None,
    limit: Optional[int] = None,
) -> List[Payment]:
    query = _with_details(select(Payment))
    if student_id:
        query = query.where(Payment.student_id == student_id)
    if invoice_id:
        query = query.where(Payment.invoice_id == invoice_id)
    query = query.order_by(Payment.transaction_date.desc())
    if limit:
        query = query.limit(limit)
    return list(db.execute(query).scalars().all())


def recent_payments(db: Session) -> List[Payment]:
    return list_payments(db, limit=settings.RECENT_PAYMENTS_LIMIT)


def search_payments(db: Session, query: Optional[str]) -> List[Payment]:
    """
    Payments whose student name, registration number, reference or amount
    contains the query. A blank query lists every payment.
    """
    query = (query or "").strip()
    if not query:
        return list_payments(db)

    full_name = Student.first_name + " " + Student.last_name
    stmt = (
        _with_details(select(Payment))
        .join(Student, Student.id == Payment.student_id)
        .where(or_(
            Student.first_name.icontains(query, autoescape=True),
            Student.last_name.icontains(query, autoescape=True),
            full_name.icontains(query, autoescape=True),
            Student.registration_number.icontains(query, autoescape=True),
            Payment.reference_number.icontains(query, autoescape=True),
            cast(Payment.amount, String).contains(query, autoescape=True),
        ))
        .order_by(Payment.transaction_date.desc())
    )
    return list(db.execute(stmt).scalars().all())


def payment_summary(db: Session) -> dict:
    """Count, revenue and per-method breakdown of all payments"""
    total_payments, total_revenue = db.execute(
        select(func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0))
    ).one()

    methods = db.execute(
        select(
            Payment.payment_method,
            func.count(Payment.id),
            func.coalesce(func.sum(Payment.amount), 0),
        )
        .group_by(Payment.payment_method)
        .order_by(Payment.payment_method)
    ).all()

    return {
        "total_payments": total_payments,
        "total_revenue": to_money(total_revenue),
        "payment_methods": [
            {"method": method, "count": count, "total": to_money(total)}
            for method, count, total in methods
        ],
    }


def financial_summary(db: Session) -> dict:
    """Revenue collected against what is still outstanding"""
    revenue = db.execute(select(func.coalesce(func.sum(Payment.amount), 0))).scalar_one()
    outstanding, paid, billed = db.execute(
        select(
            func.coalesce(func.sum(Invoice.balance), 0),
            func.coalesce(func.sum(Invoice.amount_paid), 0),
            func.coalesce(func.sum(Invoice.amount_due), 0),
        )
    ).one()

    billed = to_money(billed)
    paid = to_money(paid)
    collection_rate = float(paid / billed * 100) if billed > 0 else 0.0
    return {
        "currency": settings.BILLING_CURRENCY,
        "total_revenue": to_money(revenue),
        "outstanding_balance": to_money(outstanding),
        "paid_amount": paid,
        "total_billed": billed,
        "collection_rate": round(collection_rate, 2),
    }


def financial_report(db: Session, start: date, end: date) -> dict:
    """
    Payments received between start and end (both days included), their
    total, and the balance still outstanding across all invoices.
    """
    if start > end:
        raise InvalidDateRangeError(start, end)

    range_start = datetime.combine(start, time.min, tzinfo=timezone.utc)
    range_end = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
    payments = list(db.execute(
        _with_details(select(Payment))
        .where(Payment.transaction_date >= range_start, Payment.transaction_date < range_end)
        .order_by(Payment.transaction_date.desc())
    ).scalars().all())

    outstanding = db.execute(
        select(func.coalesce(func.sum(Invoice.balance), 0)).where(Invoice.balance > 0)
    ).scalar_one()

    return {
        "currency": settings.BILLING_CURRENCY,
        "start_date": start,
        "end_date": end,
        "total_revenue": to_money(sum((p.amount for p in payments), ZERO)),
        "payment_count": len(payments),
        "total_outstanding": to_money(outstanding),
        "payments": payments,
    }


def get_fee_structure(db: Session, fee_structure_id: UUID) -> FeeStructure:
    fee_structure = db.get(FeeStructure, fee_structure_id)
    if fee_structure is None:
        raise NotFoundError("Fee structure", fee_structure_id)
    return fee_structure


def list_fee_structures(
    db: Session,
    semester_id: Optional[UUID] = None,
    program: Optional[str] = None,
) -> List[FeeStructure]:
    query = select(FeeStructure)
    if semester_id:
        query = query.where(FeeStructure.semester_id == semester_id)
    if program:
        query = query.where(FeeStructure.program == program.strip())
    return list(db.execute(
        query.order_by(FeeStructure.program, FeeStructure.semester_id)
    ).scalars().all())


__all__ = [
    "get_invoice",
    "list_invoices",
    "list_overdue_invoices",
    "get_payment",
    "list_payments",
    "recent_payments",
    "search_payments",
    "payment_summary",
    "financial_summary",
    "financial_report",
    "get_fee_structure",
    "list_fee_structures",
]
