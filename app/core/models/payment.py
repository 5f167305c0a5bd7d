"""Payment: append-only record of confirmed money received. Never updated or deleted."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_payment_amount_positive"),
        CheckConstraint(
            "method IN ('MOBILE_MONEY','BANK_TRANSFER','CASH','CHEQUE')",
            name="chk_payment_method",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(String(64), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(String(20), nullable=False)
    # Idempotency key: unique across all payments.
    transaction_ref = Column(String(100), nullable=False, unique=True)
    recorded_by = Column(String(255), nullable=False)
    remarks = Column(Text, nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
