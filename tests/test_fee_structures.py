# tests/test_fee_structures.py
import uuid
from datetime import date
from decimal import Decimal

import pytest
from fastapi import status

from campus_billing.models import FeeStructure, Semester, UserLog
from campus_billing.services import reports
from campus_billing.services.errors import (
    LedgerError,
    NotFoundError,
    PermissionDeniedError,
    InvalidAmountError,
    DuplicateFeeStructureError,
    FeeStructureInUseError,
)
from campus_billing.services.fee_structures import FeeStructureService
from campus_billing.services.invoices import InvoiceService

PROGRAM = "BSc Computer Science"


@pytest.fixture
def fees(db, cache):
    return FeeStructureService(db, cache=cache)


@pytest.fixture
def spring(db):
    semester = Semester(name="Spring 2027", start_date=date(2027, 1, 10), end_date=date(2027, 4, 30))
    db.add(semester)
    db.commit()
    return semester


class TestCreateFeeStructure:
    def test_create(self, db, cache, fees, admin, semester):
        fee = fees.create_fee_structure(admin, "  BSc Nursing ", semester.id, "2100.50", description="Clinical year")

        assert fee.program == "BSc Nursing"
        assert fee.total_amount == Decimal("2100.50")
        assert f"/dashboard/finance/fee-structures/{fee.id}" in cache.seen
        entry = db.query(UserLog).filter(UserLog.target_id == fee.id).one()
        assert entry.action == "create"
        assert entry.target_table == "fee_structures"

    def test_one_per_program_and_semester(self, fees, admin, fee_structure, semester, spring):
        with pytest.raises(DuplicateFeeStructureError):
            fees.create_fee_structure(admin, PROGRAM, semester.id, "1600.00")

        # Same program in another semester is a separate fee
        assert fees.create_fee_structure(admin, PROGRAM, spring.id, "1600.00").semester_id == spring.id

    @pytest.mark.parametrize("amount", [0, "-10.00", "abc", "1e30"])
    def test_total_must_be_positive_and_in_range(self, db, fees, admin, semester, amount):
        with pytest.raises(InvalidAmountError):
            fees.create_fee_structure(admin, "BSc Nursing", semester.id, amount)
        assert db.query(FeeStructure).count() == 0

    def test_program_required(self, fees, admin, semester):
        with pytest.raises(LedgerError):
            fees.create_fee_structure(admin, "   ", semester.id, "100.00")

    def test_unknown_semester(self, fees, admin):
        with pytest.raises(NotFoundError):
            fees.create_fee_structure(admin, "BSc Nursing", uuid.uuid4(), "100.00")

    def test_registrar_cannot_manage(self, fees, registrar, semester):
        with pytest.raises(PermissionDeniedError):
            fees.create_fee_structure(registrar, "BSc Nursing", semester.id, "100.00")


class TestUpdateFeeStructure:
    def test_update_total(self, fees, accountant, fee_structure):
        fee = fees.update_fee_structure(accountant, fee_structure.id, total_amount="1750.00")
        assert fee.total_amount == Decimal("1750.00")
        assert fee.program == PROGRAM

    def test_issued_invoices_keep_their_amount(self, db, cache, fees, admin, fee_structure, student, semester):
        invoice = InvoiceService(db, cache=cache).create_invoice(
            admin, student.id, semester.id, date(2026, 10, 31), fee_structure_id=fee_structure.id
        )

        fees.update_fee_structure(admin, fee_structure.id, total_amount="2000.00")

        db.refresh(invoice)
        assert invoice.amount_due == Decimal("1500.00")

    def test_rename_into_existing_pair_conflicts(self, fees, admin, fee_structure, semester):
        other = fees.create_fee_structure(admin, "BSc Nursing", semester.id, "900.00")

        with pytest.raises(DuplicateFeeStructureError):
            fees.update_fee_structure(admin, other.id, program=PROGRAM)

    def test_keeping_own_pair_is_allowed(self, fees, admin, fee_structure, semester):
        fee = fees.update_fee_structure(admin, fee_structure.id, program=PROGRAM, semester_id=semester.id,
                                        description="Updated")
        assert fee.description == "Updated"

    def test_missing(self, fees, admin):
        with pytest.raises(NotFoundError):
            fees.update_fee_structure(admin, uuid.uuid4(), total_amount="10.00")


class TestDeleteFeeStructure:
    def test_delete_unused(self, db, fees, admin, fee_structure):
        fees.delete_fee_structure(admin, fee_structure.id)
        assert db.get(FeeStructure, fee_structure.id) is None

    def test_blocked_while_invoices_reference_it(self, db, cache, fees, admin, fee_structure, student, semester):
        InvoiceService(db, cache=cache).create_invoice(
            admin, student.id, semester.id, date(2026, 10, 31), fee_structure_id=fee_structure.id
        )

        with pytest.raises(FeeStructureInUseError) as exc:
            fees.delete_fee_structure(admin, fee_structure.id)

        assert exc.value.invoice_count == 1
        assert db.get(FeeStructure, fee_structure.id) is not None

    def test_student_cannot_delete(self, fees, student_user, fee_structure):
        with pytest.raises(PermissionDeniedError):
            fees.delete_fee_structure(student_user, fee_structure.id)


def test_listing_is_ordered_by_program(db, fees, admin, semester, spring):
    fees.create_fee_structure(admin, "MSc Data Science", semester.id, "3000.00")
    fees.create_fee_structure(admin, "BSc Nursing", semester.id, "2000.00")
    fees.create_fee_structure(admin, "BSc Nursing", spring.id, "2000.00")

    assert [f.program for f in reports.list_fee_structures(db)] == ["BSc Nursing", "BSc Nursing", "MSc Data Science"]
    assert len(reports.list_fee_structures(db, semester_id=spring.id)) == 1
    assert len(reports.list_fee_structures(db, program="MSc Data Science")) == 1


class TestFeeStructureEndpoints:
    def test_crud(self, client, auth_headers, admin, semester):
        headers = auth_headers(admin)
        body = {"program": "BSc Nursing", "semester_id": str(semester.id), "total_amount": "2100.00"}

        response = client.post("/api/fee-structures/", json=body, headers=headers)
        assert response.status_code == status.HTTP_201_CREATED
        fee_id = response.json()["id"]

        assert client.post("/api/fee-structures/", json=body, headers=headers).status_code == 409

        response = client.patch(f"/api/fee-structures/{fee_id}", json={"total_amount": "2200.00"}, headers=headers)
        assert response.status_code == 200
        assert Decimal(response.json()["total_amount"]) == Decimal("2200.00")

        assert len(client.get("/api/fee-structures/", headers=headers).json()) == 1
        assert client.get(f"/api/fee-structures/{fee_id}", headers=headers).status_code == 200

        assert client.delete(f"/api/fee-structures/{fee_id}", headers=headers).status_code == 204
        assert client.get(f"/api/fee-structures/{fee_id}", headers=headers).status_code == 404

    def test_delete_in_use_conflicts(self, client, auth_headers, admin, fee_structure, student, semester):
        headers = auth_headers(admin)
        client.post("/api/invoices/", json={
            "student_id": str(student.id),
            "semester_id": str(semester.id),
            "due_date": "2026-11-30",
            "fee_structure_id": str(fee_structure.id),
        }, headers=headers)

        response = client.delete(f"/api/fee-structures/{fee_structure.id}", headers=headers)
        assert response.status_code == status.HTTP_409_CONFLICT

    def test_empty_update_rejected(self, client, auth_headers, admin, fee_structure):
        response = client.patch(f"/api/fee-structures/{fee_structure.id}", json={}, headers=auth_headers(admin))
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_amount_beyond_column_range(self, client, auth_headers, admin, semester):
        body = {"program": "BSc Nursing", "semester_id": str(semester.id), "total_amount": "1e30"}
        response = client.post("/api/fee-structures/", json=body, headers=auth_headers(admin))
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_registrar_reads_but_cannot_write(self, client, auth_headers, registrar, fee_structure, semester):
        headers = auth_headers(registrar)
        assert client.get("/api/fee-structures/", headers=headers).status_code == 200

        body = {"program": "BSc Nursing", "semester_id": str(semester.id), "total_amount": "100.00"}
        assert client.post("/api/fee-structures/", json=body, headers=headers).status_code == 403

    def test_students_cannot_list(self, client, auth_headers, student_user):
        assert client.get("/api/fee-structures/", headers=auth_headers(student_user)).status_code == 403
