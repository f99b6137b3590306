# campus_billing/api/routers/fee_structures.py
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from campus_billing.core.db import get_db
from campus_billing.api.deps.auth import get_current_user, require_capability
from campus_billing.api.errors import to_http_exception
from campus_billing.schemas.billing import FeeStructureCreate, FeeStructureUpdate, FeeStructureOut
from campus_billing.services import reports
from campus_billing.services.errors import LedgerError
from campus_billing.services.fee_structures import FeeStructureService

router = APIRouter()


@router.post("/", response_model=FeeStructureOut, status_code=status.HTTP_201_CREATED)
async def create_fee_structure(
    data: FeeStructureCreate,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a fee structure for a program and semester"""
    try:
        fee_structure = FeeStructureService(db).create_fee_structure(
            ctx["user"],
            program=data.program,
            semester_id=data.semester_id,
            total_amount=data.total_amount,
            description=data.description,
        )
    except LedgerError as e:
        raise to_http_exception(e)
    return FeeStructureOut.model_validate(fee_structure)


@router.get("/", response_model=List[FeeStructureOut])
async def list_fee_structures(
    semester_id: Optional[UUID] = Query(None),
    program: Optional[str] = Query(None),
    ctx: dict = Depends(require_capability("view_billing")),
    db: Session = Depends(get_db)
):
    """List fee structures, optionally for one semester or program"""
    fee_structures = reports.list_fee_structures(db, semester_id=semester_id, program=program)
    return [FeeStructureOut.model_validate(f) for f in fee_structures]


@router.get("/{fee_structure_id}", response_model=FeeStructureOut)
async def get_fee_structure(
    fee_structure_id: UUID,
    ctx: dict = Depends(require_capability("view_billing")),
    db: Session = Depends(get_db)
):
    try:
        fee_structure = reports.get_fee_structure(db, fee_structure_id)
    except LedgerError as e:
        raise to_http_exception(e)
    return FeeStructureOut.model_validate(fee_structure)


@router.patch("/{fee_structure_id}", response_model=FeeStructureOut)
async def update_fee_structure(
    fee_structure_id: UUID,
    data: FeeStructureUpdate,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Edit a fee structure. Invoices already issued keep their amount."""
    if data.model_dump(exclude_none=True) == {}:
        raise HTTPException(status_code=400, detail="No fields to update")
    try:
        fee_structure = FeeStructureService(db).update_fee_structure(
            ctx["user"],
            fee_structure_id,
            program=data.program,
            semester_id=data.semester_id,
            total_amount=data.total_amount,
            description=data.description,
        )
    except LedgerError as e:
        raise to_http_exception(e)
    return FeeStructureOut.model_validate(fee_structure)


@router.delete("/{fee_structure_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_fee_structure(
    fee_structure_id: UUID,
    ctx: dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a fee structure that no invoice references"""
    try:
        FeeStructureService(db).delete_fee_structure(ctx["user"], fee_structure_id)
    except LedgerError as e:
        raise to_http_exception(e)
