from __future__ import annotations

import uuid
from decimal import Decimal
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Numeric, ForeignKey, DateTime, CheckConstraint, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from campus_billing.models.base import Base, utcnow


class FeeStructure(Base):
    __tablename__ = "fee_structures"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    program: Mapped[str] = mapped_column(String(128), nullable=False)
    semester_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("semesters.id", ondelete="RESTRICT"),
        index=True,
        nullable=False,
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_fee_structures_total_positive"),
        UniqueConstraint("program", "semester_id", name="uix_fee_structure_program_semester"),
    )
