"""Push payment request: one STK push attempt, from initiation until the provider callback."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import PushPaymentStatus
from app.db.session import Base


class PushPaymentRequest(Base):
    __tablename__ = "push_payment_requests"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Null when the provider never answered (timeout) or rejected before issuing one.
    checkout_request_id = Column(String(100), nullable=True, unique=True)
    merchant_request_id = Column(String(100), nullable=True)
    student_id = Column(String(64), nullable=False, index=True)
    phone = Column(String(20), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default=PushPaymentStatus.PENDING.value)
    result_code = Column(String(20), nullable=True)
    result_description = Column(String(255), nullable=True)
    payment_id = Column(UUID(as_uuid=True), ForeignKey("payments.id", ondelete="RESTRICT"), nullable=True)
    initiated_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    payment = relationship("Payment")
