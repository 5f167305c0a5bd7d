"""Fee structure: expected charge for a course per category. Immutable; rate changes add a new row."""

import uuid
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Numeric, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class FeeStructure(Base):
    """Charge for a course and category, effective from a date until superseded by a later row."""

    __tablename__ = "fee_structures"
    __table_args__ = (
        UniqueConstraint(
            "course_id",
            "category",
            "effective_from",
            name="uq_fee_structure_course_category_effective",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    course_id = Column(String(64), nullable=False, index=True)
    category = Column(String(50), nullable=False, default="Tuition Fee")
    semester = Column(String(50), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    effective_from = Column(Date, nullable=False)
    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
