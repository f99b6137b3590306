# campus_billing/services/fee_structures.py - Fee structure administration
from decimal import Decimal
from typing import Optional
from uuid import UUID
import logging

from sqlalchemy import select, func

from campus_billing.models.academic import Semester
from campus_billing.models.billing import Invoice
from campus_billing.models.fee import FeeStructure
from campus_billing.models.user import User
from campus_billing.services.audit import record_action
from campus_billing.services.cache import fee_structure_path, FEE_STRUCTURES_PATH
from campus_billing.services.errors import (
    LedgerError,
    NotFoundError,
    InvalidAmountError,
    DuplicateFeeStructureError,
    FeeStructureInUseError,
)
from campus_billing.services.ledger import LedgerService, AmountLike, parse_money, ZERO

logger = logging.getLogger(__name__)


def validate_fee_total(value: AmountLike) -> Decimal:
    total = parse_money(value, "Fee total")
    if total <= ZERO:
        raise InvalidAmountError("Fee total must be greater than zero")
    return total


def clean_program(program: Optional[str]) -> str:
    program = (program or "").strip()
    if not program:
        raise LedgerError("Program is required")
    return program


class FeeStructureService(LedgerService):
    """
    Create, edit and remove the per-program semester fees invoices are billed from.

    Invoices copy the fee total when they are issued, so editing a fee
    structure never changes an existing invoice.
    """

    def _get_fee_structure(self, fee_structure_id: UUID) -> FeeStructure:
        fee_structure = self.db.execute(
            select(FeeStructure)
            .where(FeeStructure.id == fee_structure_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if fee_structure is None:
            raise NotFoundError("Fee structure", fee_structure_id)
        return fee_structure

    def _ensure_unique(self, program: str, semester_id: UUID, exclude_id: Optional[UUID] = None) -> None:
        query = select(FeeStructure.id).where(
            FeeStructure.program == program,
            FeeStructure.semester_id == semester_id,
        )
        if exclude_id is not None:
            query = query.where(FeeStructure.id != exclude_id)
        if self.db.execute(query).first() is not None:
            raise DuplicateFeeStructureError(program, semester_id)

    def _invalidate(self, fee_structure_id: UUID) -> None:
        self.cache.invalidate_many([FEE_STRUCTURES_PATH, fee_structure_path(fee_structure_id)])

    def create_fee_structure(
        self,
        user: User,
        program: str,
        semester_id: UUID,
        total_amount: AmountLike,
        description: Optional[str] = None,
    ) -> FeeStructure:
        self._authorize(user, "manage_fee_structures")
        program = clean_program(program)
        total_amount = validate_fee_total(total_amount)

        with self._unit_of_work():
            if self.db.get(Semester, semester_id) is None:
                raise NotFoundError("Semester", semester_id)
            self._ensure_unique(program, semester_id)

            fee_structure = FeeStructure(
                program=program,
                semester_id=semester_id,
                total_amount=total_amount,
                description=description,
            )
            self.db.add(fee_structure)

        logger.info(f"Created fee structure {fee_structure.id}: {program} {total_amount}")
        self._invalidate(fee_structure.id)
        record_action(self.db, user, "create", "fee_structures", fee_structure.id,
                      f"Created fee structure for {program}: {total_amount}")
        return fee_structure

    def update_fee_structure(
        self,
        user: User,
        fee_structure_id: UUID,
        program: Optional[str] = None,
        semester_id: Optional[UUID] = None,
        total_amount: Optional[AmountLike] = None,
        description: Optional[str] = None,
    ) -> FeeStructure:
        """Only the arguments that are given change. Program and semester stay unique together."""
        self._authorize(user, "manage_fee_structures")
        new_program = clean_program(program) if program is not None else None
        new_total = validate_fee_total(total_amount) if total_amount is not None else None

        with self._unit_of_work():
            fee_structure = self._get_fee_structure(fee_structure_id)
            if semester_id is not None and self.db.get(Semester, semester_id) is None:
                raise NotFoundError("Semester", semester_id)

            target_program = new_program or fee_structure.program
            target_semester = semester_id or fee_structure.semester_id
            if (target_program, target_semester) != (fee_structure.program, fee_structure.semester_id):
                self._ensure_unique(target_program, target_semester, exclude_id=fee_structure.id)

            fee_structure.program = target_program
            fee_structure.semester_id = target_semester
            if new_total is not None:
                fee_structure.total_amount = new_total
            if description is not None:
                fee_structure.description = description

        logger.info(f"Updated fee structure {fee_structure.id}")
        self._invalidate(fee_structure.id)
        record_action(self.db, user, "update", "fee_structures", fee_structure.id,
                      f"Updated fee structure for {fee_structure.program}")
        return fee_structure

    def delete_fee_structure(self, user: User, fee_structure_id: UUID) -> None:
        """Delete a fee structure no invoice was issued from."""
        self._authorize(user, "manage_fee_structures")

        with self._unit_of_work():
            fee_structure = self._get_fee_structure(fee_structure_id)
            invoice_count = self.db.execute(
                select(func.count(Invoice.id)).where(Invoice.fee_structure_id == fee_structure.id)
            ).scalar_one()
            if invoice_count:
                raise FeeStructureInUseError(fee_structure.id, invoice_count)
            program = fee_structure.program
            self.db.delete(fee_structure)

        logger.info(f"Deleted fee structure {fee_structure_id}")
        self._invalidate(fee_structure_id)
        record_action(self.db, user, "delete", "fee_structures", fee_structure_id,
                      f"Deleted fee structure for {program}")


__all__ = ["FeeStructureService", "validate_fee_total", "clean_program"]
