# campus_billing/api/routers/payments.py
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from campus_billing.core.db import get_db
from campus_billing.api.deps.auth import get_current_user, require_capability, check_student_access
from campus_billing.api.errors import to_http_exception
from campus_billing.schemas.billing import PaymentCreate, PaymentUpdate, PaymentOut, PaymentDetail
from campus_billing.services import reports
from campus_billing.services.errors import LedgerError
from campus_billing.services.ledger import LedgerService

router = APIRouter()


@router.post("/", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
async def record_payment(
    data: PaymentCreate,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Record payment against an invoice"""
    try:
        payment = LedgerService(db).record_payment(
            ctx["user"],
            invoice_id=data.invoice_id,
            student_id=data.student_id,
            amount=data.amount,
            method=data.payment_method,
            reference_number=data.reference_number,
        )
    except LedgerError as e:
        raise to_http_exception(e)
    return PaymentOut.model_validate(payment)


@router.patch("/{payment_id}", response_model=PaymentOut)
async def update_payment(
    payment_id: UUID,
    data: PaymentUpdate,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Amend a payment's amount, method or reference"""
    if data.amount is None and data.payment_method is None and data.reference_number is None:
        raise HTTPException(status_code=400, detail="No fields to update")
    try:
        payment = LedgerService(db).update_payment(
            ctx["user"],
            payment_id,
            amount=data.amount,
            method=data.payment_method,
            reference_number=data.reference_number,
        )
    except LedgerError as e:
        raise to_http_exception(e)
    return PaymentOut.model_validate(payment)


@router.delete("/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_payment(
    payment_id: UUID,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a payment and restore the invoice balance"""
    try:
        LedgerService(db).delete_payment(ctx["user"], payment_id)
    except LedgerError as e:
        raise to_http_exception(e)


@router.get("/", response_model=List[PaymentDetail])
async def list_payments(
    ctx: dict = Depends(require_capability("view_billing")),
    db: Session = Depends(get_db)
):
    """List all payments, newest first"""
    return [PaymentDetail.model_validate(p) for p in reports.list_payments(db)]


@router.get("/recent", response_model=List[PaymentDetail])
async def recent_payments(
    ctx: dict = Depends(require_capability("view_billing")),
    db: Session = Depends(get_db)
):
    return [PaymentDetail.model_validate(p) for p in reports.recent_payments(db)]


@router.get("/search", response_model=List[PaymentDetail])
async def search_payments(
    q: Optional[str] = Query(None, description="Student name, registration number, reference or amount"),
    ctx: dict = Depends(require_capability("view_billing")),
    db: Session = Depends(get_db)
):
    """Search payments; an empty query lists them all"""
    return [PaymentDetail.model_validate(p) for p in reports.search_payments(db, q)]


@router.get("/student/{student_id}", response_model=List[PaymentDetail])
async def get_student_payments(
    student_id: UUID,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List all payments for a student"""
    check_student_access(db, ctx["user"], student_id)
    return [PaymentDetail.model_validate(p) for p in reports.list_payments(db, student_id=student_id)]


@router.get("/invoice/{invoice_id}", response_model=List[PaymentDetail])
async def get_invoice_payments(
    invoice_id: UUID,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List the payments posted against an invoice"""
    try:
        invoice = reports.get_invoice(db, invoice_id)
    except LedgerError as e:
        raise to_http_exception(e)
    check_student_access(db, ctx["user"], invoice.student_id)
    return [PaymentDetail.model_validate(p) for p in reports.list_payments(db, invoice_id=invoice_id)]


@router.get("/{payment_id}", response_model=PaymentDetail)
async def get_payment(
    payment_id: UUID,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        payment = reports.get_payment(db, payment_id)
    except LedgerError as e:
        raise to_http_exception(e)
    check_student_access(db, ctx["user"], payment.student_id)
    return PaymentDetail.model_validate(payment)
