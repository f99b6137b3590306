# campus_billing/models/academic.py
from __future__ import annotations
import uuid
from datetime import date

from sqlalchemy import String, Date, Uuid, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from campus_billing.models.base import Base


class Semester(Base):
    __tablename__ = "semesters"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_semester_dates"),
    )
