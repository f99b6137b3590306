# campus_billing/api/routers/reports.py
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from campus_billing.core.db import get_db
from campus_billing.api.deps.auth import require_capability
from campus_billing.api.errors import to_http_exception
from campus_billing.schemas.billing import PaymentSummary, FinancialSummary, FinancialReport, PaymentDetail
from campus_billing.services import reports
from campus_billing.services.errors import LedgerError

router = APIRouter()


@router.get("/payments-summary", response_model=PaymentSummary)
async def get_payments_summary(
    ctx: dict = Depends(require_capability("view_billing")),
    db: Session = Depends(get_db)
):
    """Payment count, revenue and breakdown by method"""
    return PaymentSummary(**reports.payment_summary(db))


@router.get("/financial-summary", response_model=FinancialSummary)
async def get_financial_summary(
    ctx: dict = Depends(require_capability("view_billing")),
    db: Session = Depends(get_db)
):
    return FinancialSummary(**reports.financial_summary(db))


@router.get("/financial-report", response_model=FinancialReport)
async def get_financial_report(
    start: date = Query(..., description="First day of the report"),
    end: date = Query(..., description="Last day of the report"),
    ctx: dict = Depends(require_capability("view_billing")),
    db: Session = Depends(get_db)
):
    """Payments received between two dates with revenue and outstanding totals"""
    try:
        report = reports.financial_report(db, start, end)
    except LedgerError as e:
        raise to_http_exception(e)
    report["payments"] = [PaymentDetail.model_validate(p) for p in report["payments"]]
    return FinancialReport(**report)
