# campus_billing/schemas/billing.py
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Literal
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

InvoiceStatusLiteral = Literal["unpaid", "partial", "paid"]


# Payment Schemas
class PaymentCreate(BaseModel):
    invoice_id: UUID
    student_id: UUID
    amount: Decimal = Field(..., gt=0)
    payment_method: str = Field(..., min_length=1, max_length=50)
    reference_number: Optional[str] = Field(None, max_length=255)

    @field_validator('payment_method')
    @classmethod
    def normalize_method(cls, v: str) -> str:
        """Methods are stored lower-case"""
        if not v.strip():
            raise ValueError('Payment method cannot be empty or whitespace')
        return v.strip().lower()


class PaymentUpdate(BaseModel):
    """Only the fields that are sent are changed"""
    amount: Optional[Decimal] = Field(None, gt=0)
    payment_method: Optional[str] = Field(None, min_length=1, max_length=50)
    reference_number: Optional[str] = Field(None, max_length=255)


class PaymentOut(BaseModel):
    id: UUID
    invoice_id: UUID
    student_id: UUID
    amount: Decimal
    payment_method: str
    transaction_date: datetime
    reference_number: Optional[str]

    class Config:
        from_attributes = True


class PaymentInvoiceBrief(BaseModel):
    id: UUID
    amount_due: Decimal
    amount_paid: Decimal
    balance: Decimal
    status: InvoiceStatusLiteral

    class Config:
        from_attributes = True


class PaymentStudentBrief(BaseModel):
    id: UUID
    first_name: str
    last_name: str
    registration_number: str

    class Config:
        from_attributes = True


class PaymentDetail(PaymentOut):
    """Payment with its invoice totals and the paying student"""
    invoice: PaymentInvoiceBrief
    student: PaymentStudentBrief


# Invoice Schemas
class InvoiceCreate(BaseModel):
    student_id: UUID
    semester_id: UUID
    due_date: date
    amount_due: Optional[Decimal] = Field(None, ge=0)
    fee_structure_id: Optional[UUID] = None


class InvoiceUpdate(BaseModel):
    amount_due: Optional[Decimal] = Field(None, ge=0)
    due_date: Optional[date] = None
    fee_structure_id: Optional[UUID] = None


class InvoiceOut(BaseModel):
    id: UUID
    student_id: UUID
    semester_id: UUID
    fee_structure_id: Optional[UUID]
    amount_due: Decimal
    amount_paid: Decimal
    balance: Decimal
    status: InvoiceStatusLiteral
    due_date: date
    issued_date: datetime

    class Config:
        from_attributes = True


class InvoiceDetail(InvoiceOut):
    """Invoice with its payment history"""
    payments: List[PaymentOut] = []


# Report Schemas
class PaymentMethodTotal(BaseModel):
    method: str
    count: int
    total: Decimal


class PaymentSummary(BaseModel):
    total_payments: int
    total_revenue: Decimal
    payment_methods: List[PaymentMethodTotal]


class FinancialSummary(BaseModel):
    currency: str
    total_revenue: Decimal
    outstanding_balance: Decimal
    paid_amount: Decimal
    total_billed: Decimal
    collection_rate: float  # Percentage


class FinancialReport(BaseModel):
    """Payments received in a date range"""
    currency: str
    start_date: date
    end_date: date
    total_revenue: Decimal
    payment_count: int
    total_outstanding: Decimal
    payments: List[PaymentDetail]


# Fee Structure Schemas
class FeeStructureCreate(BaseModel):
    program: str = Field(..., min_length=1, max_length=128)
    semester_id: UUID
    total_amount: Decimal = Field(..., gt=0)
    description: Optional[str] = None


class FeeStructureUpdate(BaseModel):
    program: Optional[str] = Field(None, min_length=1, max_length=128)
    semester_id: Optional[UUID] = None
    total_amount: Optional[Decimal] = Field(None, gt=0)
    description: Optional[str] = None


class FeeStructureOut(BaseModel):
    id: UUID
    program: str
    semester_id: UUID
    total_amount: Decimal
    description: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
