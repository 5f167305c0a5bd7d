"""M-Pesa schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import PushPaymentStatus


class StkPushCreate(BaseModel):
    student_id: str = Field(..., min_length=1, max_length=64)
    phone: str = Field(..., min_length=1, max_length=32)
    amount: Decimal = Field(..., gt=0)


class PushPaymentRequestResponse(BaseModel):
    id: UUID
    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None
    student_id: str
    phone: str
    amount: Decimal
    status: PushPaymentStatus
    result_code: Optional[str] = None
    result_description: Optional[str] = None
    payment_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StkPushResponse(PushPaymentRequestResponse):
    customer_message: Optional[str] = None


class CallbackAck(BaseModel):
    """Acknowledgement shape the provider expects; anything else makes it retry."""

    ResultCode: int = 0
    ResultDesc: str = "Accepted"


class CallbackDiscrepancyResponse(BaseModel):
    id: UUID
    checkout_request_id: Optional[str] = None
    reason: str
    detail: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    is_resolved: bool
    created_at: datetime

    class Config:
        from_attributes = True
