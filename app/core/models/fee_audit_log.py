"""Fee audit log: immutable financial change tracking for audit safety."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class FeeAuditLog(Base):
    """Immutable audit trail for ledger changes, duplicate replays and push outcomes."""

    __tablename__ = "fee_audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    reference_table = Column(String(50), nullable=False)
    reference_id = Column(String(100), nullable=False, index=True)
    action_type = Column(String(30), nullable=False)  # CREATE, UPDATE, DUPLICATE_IGNORED
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    changed_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
