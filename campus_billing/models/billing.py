# campus_billing/models/billing.py - Invoices and the payments posted against them
from __future__ import annotations
import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from sqlalchemy import (
    String, Numeric, Date, DateTime, ForeignKey, CheckConstraint, Index, UniqueConstraint, Uuid
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from campus_billing.models.base import Base, utcnow


class InvoiceStatus(str, enum.Enum):
    """Derived from amount_due/amount_paid, never set by hand"""
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    semester_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("semesters.id", ondelete="RESTRICT"), nullable=False)
    fee_structure_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("fee_structures.id", ondelete="SET NULL"))
    amount_due: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=InvoiceStatus.UNPAID.value)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    issued_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    student: Mapped["Student"] = relationship("Student", back_populates="invoices")
    payments: Mapped[list["Payment"]] = relationship(
        "Payment",
        back_populates="invoice",
        order_by="Payment.transaction_date",
        passive_deletes="all",
    )

    __table_args__ = (
        CheckConstraint("status IN ('unpaid','partial','paid')", name="ck_invoice_status"),
        CheckConstraint("amount_due >= 0", name="ck_invoice_amount_due_positive"),
        CheckConstraint("amount_paid >= 0", name="ck_invoice_amount_paid_positive"),
        CheckConstraint("amount_paid <= amount_due", name="ck_invoice_not_overpaid"),
        UniqueConstraint("student_id", "semester_id", name="uix_invoice_student_semester"),
        Index("ix_invoices_status_due_date", "status", "due_date"),
    )

    def __repr__(self):
        return f"<Invoice(id={self.id}, due={self.amount_due}, paid={self.amount_paid}, status='{self.status}')>"


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    invoice_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("invoices.id", ondelete="RESTRICT"), nullable=False)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("students.id", ondelete="RESTRICT"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    transaction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    reference_number: Mapped[str | None] = mapped_column(String(255))

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="payments")
    student: Mapped["Student"] = relationship("Student")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        UniqueConstraint("reference_number", name="uix_payment_reference_number"),
        Index("ix_payments_invoice", "invoice_id"),
        Index("ix_payments_student", "student_id"),
    )

    def __repr__(self):
        return f"<Payment(id={self.id}, invoice_id={self.invoice_id}, amount={self.amount})>"
