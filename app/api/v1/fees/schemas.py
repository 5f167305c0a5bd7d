"""Fees schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.core.enums import FeeAccountStatus, PaymentMethod


# --- Fee Structure ---
class FeeStructureCreate(BaseModel):
    course_id: str = Field(..., min_length=1, max_length=64)
    category: str = Field("Tuition Fee", min_length=1, max_length=50)
    semester: Optional[str] = Field(None, max_length=50)
    amount: Decimal = Field(..., ge=0)
    effective_from: Optional[date] = Field(None, description="Defaults to today")


class FeeStructureResponse(BaseModel):
    id: UUID
    course_id: str
    category: str
    semester: Optional[str] = None
    amount: Decimal
    effective_from: date
    created_by: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


# --- Student Fee Account ---
class AssignFeeRequest(BaseModel):
    course_id: str = Field(..., min_length=1, max_length=64)


class StudentFeeAccountResponse(BaseModel):
    student_id: str
    course_id: Optional[str] = None
    total_due: Decimal
    total_paid: Decimal
    balance: Decimal
    overpaid_amount: Decimal = Decimal("0")
    status: FeeAccountStatus
    last_payment_date: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SyncAccountsResponse(BaseModel):
    updated: int
    skipped: List[str] = Field(default_factory=list, description="Students whose course has no fee structure")


# --- Payment ---
class PaymentCreate(BaseModel):
    student_id: str = Field(..., min_length=1, max_length=64)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    method: PaymentMethod
    transaction_ref: str = Field(..., min_length=1, max_length=100)
    remarks: Optional[str] = None
    payment_date: Optional[datetime] = None

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, value):
        # Accept "mobile-money", "Bank Transfer", "cash" etc.
        if isinstance(value, str):
            return value.strip().upper().replace("-", "_").replace(" ", "_")
        return value

    @field_validator("student_id", "transaction_ref")
    @classmethod
    def strip_value(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class PaymentResponse(BaseModel):
    id: UUID
    student_id: str
    amount: Decimal
    method: PaymentMethod
    transaction_ref: str
    recorded_by: str
    remarks: Optional[str] = None
    payment_date: datetime
    created_at: datetime

    class Config:
        from_attributes = True


# --- Analytics ---
class FeeSummary(BaseModel):
    total_expected: Decimal
    total_collected: Decimal
    total_outstanding: Decimal
    pending_account_count: int


class FinanceAnalyticsResponse(BaseModel):
    summary: FeeSummary
    recent_payments: List[PaymentResponse]
