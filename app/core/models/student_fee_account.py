"""Student fee account: derived per-student summary of what is due and what has been paid."""

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, Numeric, String

from app.core.enums import FeeAccountStatus
from app.db.session import Base


class StudentFeeAccount(Base):
    """
    One row per student. total_paid, balance and status are written only by
    the ledger recompute; total_due only by fee assignment.
    """

    __tablename__ = "student_fee_accounts"
    __table_args__ = (
        CheckConstraint(
            "status IN ('Unpaid','Partial','Paid')",
            name="chk_student_fee_account_status",
        ),
    )

    student_id = Column(String(64), primary_key=True)
    course_id = Column(String(64), nullable=True, index=True)
    total_due = Column(Numeric(12, 2), nullable=False, default=0)
    total_paid = Column(Numeric(12, 2), nullable=False, default=0)
    # Unfloored: negative means the student has paid more than is due.
    balance = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default=FeeAccountStatus.PAID.value)
    last_payment_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
