# campus_billing/api/routers/invoices.py
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from campus_billing.core.db import get_db
from campus_billing.core.permissions import authorize
from campus_billing.api.deps.auth import get_current_user, require_capability, check_student_access
from campus_billing.api.errors import to_http_exception
from campus_billing.schemas.billing import (
    InvoiceCreate, InvoiceUpdate, InvoiceOut, InvoiceDetail, InvoiceStatusLiteral
)
from campus_billing.services import reports
from campus_billing.services.errors import LedgerError
from campus_billing.services.invoices import InvoiceService

router = APIRouter()


@router.post("/", response_model=InvoiceOut, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    data: InvoiceCreate,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Issue an invoice for a student's semester"""
    try:
        invoice = InvoiceService(db).create_invoice(
            ctx["user"],
            student_id=data.student_id,
            semester_id=data.semester_id,
            due_date=data.due_date,
            amount_due=data.amount_due,
            fee_structure_id=data.fee_structure_id,
        )
    except LedgerError as e:
        raise to_http_exception(e)
    return InvoiceOut.model_validate(invoice)


@router.get("/", response_model=List[InvoiceOut])
async def list_invoices(
    student_id: Optional[UUID] = Query(None),
    semester_id: Optional[UUID] = Query(None),
    status_filter: Optional[InvoiceStatusLiteral] = Query(None, alias="status"),
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    List invoices. Billing staff see everything; students must filter
    by their own student_id.
    """
    user = ctx["user"]
    if not authorize(user, "view_billing"):
        if student_id is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied for view billing"
            )
        check_student_access(db, user, student_id)

    invoices = reports.list_invoices(db, student_id=student_id, semester_id=semester_id, status=status_filter)
    return [InvoiceOut.model_validate(i) for i in invoices]


@router.get("/overdue", response_model=List[InvoiceDetail])
async def list_overdue_invoices(
    ctx: dict = Depends(require_capability("view_billing")),
    db: Session = Depends(get_db)
):
    """Invoices past their due date with a balance outstanding"""
    return [InvoiceDetail.model_validate(i) for i in reports.list_overdue_invoices(db)]


@router.get("/{invoice_id}", response_model=InvoiceDetail)
async def get_invoice(
    invoice_id: UUID,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        invoice = reports.get_invoice(db, invoice_id)
    except LedgerError as e:
        raise to_http_exception(e)
    check_student_access(db, ctx["user"], invoice.student_id)
    return InvoiceDetail.model_validate(invoice)


@router.patch("/{invoice_id}", response_model=InvoiceOut)
async def update_invoice(
    invoice_id: UUID,
    data: InvoiceUpdate,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if data.amount_due is None and data.due_date is None and data.fee_structure_id is None:
        raise HTTPException(status_code=400, detail="No fields to update")
    try:
        invoice = InvoiceService(db).update_invoice(
            ctx["user"],
            invoice_id,
            amount_due=data.amount_due,
            due_date=data.due_date,
            fee_structure_id=data.fee_structure_id,
        )
    except LedgerError as e:
        raise to_http_exception(e)
    return InvoiceOut.model_validate(invoice)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_invoice(
    invoice_id: UUID,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete an invoice. Refused while payments are posted against it."""
    try:
        InvoiceService(db).delete_invoice(ctx["user"], invoice_id)
    except LedgerError as e:
        raise to_http_exception(e)


@router.post("/{invoice_id}/reconcile", response_model=InvoiceOut)
async def reconcile_invoice(
    invoice_id: UUID,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Recompute paid, balance and status from the invoice's payments"""
    try:
        invoice = InvoiceService(db).reconcile_invoice_from_payments(ctx["user"], invoice_id)
    except LedgerError as e:
        raise to_http_exception(e)
    return InvoiceOut.model_validate(invoice)
