# campus_billing/models/user.py - Application users and their roles
from __future__ import annotations
import enum
import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, Boolean, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from campus_billing.models.base import Base, utcnow


class UserRole(str, enum.Enum):
    """College roles"""
    ADMIN = "ADMIN"            # Full access
    ACCOUNTANT = "ACCOUNTANT"  # Finance office: invoices and payments
    REGISTRAR = "REGISTRAR"    # Student records, may raise invoices
    HOD = "HOD"                # Head of department
    LECTURER = "LECTURER"
    STAFF = "STAFF"
    STUDENT = "STUDENT"        # May view own invoices and payments


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Role system - store as CSV for multiple roles
    roles_csv: Mapped[str] = mapped_column(String(255), default="STUDENT", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def roles(self) -> list[str]:
        """Get list of user roles"""
        if not self.roles_csv:
            return []
        return [role.strip() for role in self.roles_csv.split(",") if role.strip()]

    def set_roles(self, roles: list[str]) -> None:
        """Set user roles from list, dropping unknown role names"""
        valid_roles = {r.value for r in UserRole}
        cleaned = sorted({role.upper() for role in roles if role.upper() in valid_roles})
        if not cleaned:
            raise ValueError(f"At least one valid role is required: {sorted(valid_roles)}")
        self.roles_csv = ",".join(cleaned)

    def has_role(self, role: str) -> bool:
        """Check if user has a specific role"""
        return role in self.roles

    def has_any_role(self, roles: list[str]) -> bool:
        """Check if user has any of the specified roles"""
        return any(role in self.roles for role in roles)

    def is_admin(self) -> bool:
        return self.has_role(UserRole.ADMIN.value)

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', roles={self.roles})>"
