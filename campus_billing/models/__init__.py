# campus_billing/models/__init__.py - Import all models so SQLAlchemy can discover them

from campus_billing.models.base import Base
from campus_billing.models.user import User, UserRole
from campus_billing.models.student import Student
from campus_billing.models.academic import Semester
from campus_billing.models.fee import FeeStructure
from campus_billing.models.billing import Invoice, InvoiceStatus, Payment
from campus_billing.models.audit import UserLog

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Student",
    "Semester",
    "FeeStructure",
    "Invoice",
    "InvoiceStatus",
    "Payment",
    "UserLog",
]
