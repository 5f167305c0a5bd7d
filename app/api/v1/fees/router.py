"""Fees router: fee structures, student accounts, payments, analytics."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import FINANCE_ROLES, ensure_student_scope, require_roles
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    AssignFeeRequest,
    FeeStructureCreate,
    FeeStructureResponse,
    FinanceAnalyticsResponse,
    PaymentCreate,
    PaymentResponse,
    StudentFeeAccountResponse,
    SyncAccountsResponse,
)
from . import ledger, service

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])


# --- Fee Structure ---
@router.post(
    "/structures",
    response_model=FeeStructureResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_fee_structure(
    payload: FeeStructureCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*FINANCE_ROLES)),
) -> FeeStructureResponse:
    try:
        return await service.create_fee_structure(db, payload, created_by=current_user.actor)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/structures",
    response_model=List[FeeStructureResponse],
    dependencies=[Depends(require_roles(*FINANCE_ROLES))],
)
async def list_fee_structures(
    course_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[FeeStructureResponse]:
    return await service.list_fee_structures(db, course_id=course_id)


# --- Student Fee Accounts ---
@router.post(
    "/accounts/sync",
    response_model=SyncAccountsResponse,
)
async def sync_accounts(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*FINANCE_ROLES)),
) -> SyncAccountsResponse:
    return await service.sync_all_accounts(db, changed_by=current_user.actor)


@router.post(
    "/accounts/{student_id}/assign",
    response_model=StudentFeeAccountResponse,
)
async def assign_fee(
    student_id: str,
    payload: AssignFeeRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*FINANCE_ROLES)),
) -> StudentFeeAccountResponse:
    try:
        return await service.assign_fee(
            db, student_id, payload.course_id, changed_by=current_user.actor
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/accounts",
    response_model=List[StudentFeeAccountResponse],
    dependencies=[Depends(require_roles(*FINANCE_ROLES))],
)
async def list_accounts(
    db: AsyncSession = Depends(get_db),
) -> List[StudentFeeAccountResponse]:
    return await ledger.list_accounts(db)


@router.get(
    "/accounts/{student_id}",
    response_model=StudentFeeAccountResponse,
)
async def get_account(
    student_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentFeeAccountResponse:
    ensure_student_scope(current_user, student_id)
    return await ledger.get_account(db, student_id)


# --- Payments ---
@router.post(
    "/payments",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={200: {"description": "Transaction reference already recorded; existing payment returned"}},
)
async def record_payment(
    payload: PaymentCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*FINANCE_ROLES)),
) -> PaymentResponse:
    try:
        payment, created = await service.record_payment(db, payload, recorded_by=current_user.actor)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not created:
        response.status_code = status.HTTP_200_OK
    return payment


@router.get(
    "/payments",
    response_model=List[PaymentResponse],
)
async def list_payments(
    student_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[PaymentResponse]:
    if current_user.role not in FINANCE_ROLES:
        student_id = student_id or current_user.student_id
        ensure_student_scope(current_user, student_id)
    return await service.get_payment_history(db, student_id=student_id)


# --- Analytics ---
@router.get(
    "/summary",
    response_model=FinanceAnalyticsResponse,
    dependencies=[Depends(require_roles(*FINANCE_ROLES))],
)
async def get_summary(
    db: AsyncSession = Depends(get_db),
) -> FinanceAnalyticsResponse:
    return await service.get_finance_analytics(db)
