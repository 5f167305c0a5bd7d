"""Provider callbacks that could not be reconciled automatically; kept for manual review."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class CallbackDiscrepancy(Base):
    __tablename__ = "callback_discrepancies"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    checkout_request_id = Column(String(100), nullable=True, index=True)
    reason = Column(String(50), nullable=False)  # MALFORMED, UNKNOWN_CHECKOUT, AMOUNT_MISMATCH, UNRECORDABLE
    detail = Column(String(500), nullable=True)
    payload = Column(JSON, nullable=True)
    is_resolved = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
