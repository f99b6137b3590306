# tests/conftest.py
import os

# Settings are read at import time, so the environment has to be in place first
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_billing.db")
os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("LOG_REQUESTS", "false")

from datetime import date, timedelta
from decimal import Decimal

import pytest
from faker import Faker
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from campus_billing.core.db import configure_sqlite_engine, get_db
from campus_billing.core.security import create_access_token
from campus_billing.main import app
from campus_billing.models import Base, User, Student, Semester, FeeStructure, Invoice
from campus_billing.services.cache import PageCacheInvalidator
from campus_billing.services.ledger import apply_totals, ZERO

fake = Faker()


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so that several threads can share one database"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    configure_sqlite_engine(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make_user(*roles, is_active=True):
        user = User(email=fake.unique.email(), full_name=fake.name(), is_active=is_active)
        user.set_roles(list(roles) or ["STUDENT"])
        db.add(user)
        db.commit()
        return user
    return _make_user


@pytest.fixture
def admin(make_user):
    return make_user("ADMIN")


@pytest.fixture
def accountant(make_user):
    return make_user("ACCOUNTANT")


@pytest.fixture
def registrar(make_user):
    return make_user("REGISTRAR")


@pytest.fixture
def student_user(make_user):
    return make_user("STUDENT")


@pytest.fixture
def semester(db):
    semester = Semester(
        name=f"Semester {fake.unique.random_int(min=1, max=99999)}",
        start_date=date(2026, 9, 1),
        end_date=date(2026, 12, 20),
    )
    db.add(semester)
    db.commit()
    return semester


@pytest.fixture
def make_student(db):
    def _make_student(user=None):
        student = Student(
            user_id=user.id if user else None,
            registration_number=f"REG/{fake.unique.random_int(min=10000, max=99999)}",
            first_name=fake.first_name(),
            last_name=fake.last_name(),
        )
        db.add(student)
        db.commit()
        return student
    return _make_student


@pytest.fixture
def student(make_student, student_user):
    return make_student(student_user)


@pytest.fixture
def fee_structure(db, semester):
    fee = FeeStructure(program="BSc Computer Science", semester_id=semester.id, total_amount=Decimal("1500.00"))
    db.add(fee)
    db.commit()
    return fee


@pytest.fixture
def make_invoice(db, semester):
    def _make_invoice(student, amount_due="1000.00", due_date=None, invoice_semester=None):
        invoice = Invoice(
            student_id=student.id,
            semester_id=(invoice_semester or semester).id,
            amount_due=Decimal(amount_due),
            due_date=due_date or date.today() + timedelta(days=30),
        )
        apply_totals(invoice, ZERO)
        db.add(invoice)
        db.commit()
        return invoice
    return _make_invoice


@pytest.fixture
def invoice(make_invoice, student):
    """amount_due=1000.00, nothing paid"""
    return make_invoice(student)


@pytest.fixture
def cache():
    """A private invalidator that remembers every path it was asked to drop"""
    invalidator = PageCacheInvalidator()
    invalidator.seen = []
    invalidator.register(invalidator.seen.append)
    return invalidator


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _auth_headers(user):
        token = create_access_token({"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}
    return _auth_headers
