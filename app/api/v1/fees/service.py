"""Fees service: fee structures, assignment, payment recording and analytics. Financial logic with audit."""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from fastapi import status
from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import FeeAccountStatus
from app.core.exceptions import InvalidPayment, ServiceError
from app.core.models import FeeAuditLog, FeeStructure, Payment, StudentFeeAccount
from app.core.utils import clean_transaction_ref, to_decimal, to_money

from . import ledger
from .schemas import (
    FeeStructureCreate,
    FeeStructureResponse,
    FeeSummary,
    FinanceAnalyticsResponse,
    PaymentCreate,
    PaymentResponse,
    StudentFeeAccountResponse,
    SyncAccountsResponse,
)

logger = logging.getLogger(__name__)

RECENT_PAYMENTS_LIMIT = 5


# --- Audit helper ---
async def _log_fee_audit(
    db: AsyncSession,
    reference_table: str,
    reference_id: str,
    action_type: str,
    old_value: Optional[dict],
    new_value: Optional[dict],
    changed_by: Optional[str],
) -> None:
    log = FeeAuditLog(
        reference_table=reference_table,
        reference_id=str(reference_id),
        action_type=action_type,
        old_value=old_value,
        new_value=new_value,
        changed_by=changed_by,
    )
    db.add(log)


def _account_snapshot(account: StudentFeeAccount) -> dict:
    return {
        "course_id": account.course_id,
        "total_due": str(to_money(account.total_due)),
        "total_paid": str(to_money(account.total_paid)),
        "status": account.status,
    }


# --- Fee Structure ---
async def create_fee_structure(
    db: AsyncSession,
    payload: FeeStructureCreate,
    created_by: Optional[str],
) -> FeeStructureResponse:
    fs = FeeStructure(
        course_id=payload.course_id.strip(),
        category=payload.category.strip(),
        semester=(payload.semester or "").strip() or None,
        amount=to_money(payload.amount),
        effective_from=payload.effective_from or date.today(),
        created_by=created_by,
    )
    db.add(fs)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ServiceError(
            "A fee structure for this course and category already starts on that date",
            status.HTTP_409_CONFLICT,
        )
    await _log_fee_audit(
        db, "fee_structures", fs.id,
        "CREATE",
        None,
        {"course_id": fs.course_id, "category": fs.category, "amount": str(fs.amount), "effective_from": fs.effective_from.isoformat()},
        created_by,
    )
    await db.commit()
    await db.refresh(fs)
    return FeeStructureResponse.model_validate(fs)


async def list_fee_structures(
    db: AsyncSession,
    course_id: Optional[str] = None,
) -> List[FeeStructureResponse]:
    stmt = select(FeeStructure)
    if course_id:
        stmt = stmt.where(FeeStructure.course_id == course_id)
    stmt = stmt.order_by(FeeStructure.course_id, FeeStructure.category, FeeStructure.effective_from.desc())
    result = await db.execute(stmt)
    return [FeeStructureResponse.model_validate(fs) for fs in result.scalars().all()]


async def resolve_total_due(
    db: AsyncSession,
    course_id: str,
    as_of: Optional[date] = None,
) -> Optional[Decimal]:
    """Sum of the current structure per category for a course, or None if the course has none."""
    as_of = as_of or date.today()
    result = await db.execute(
        select(FeeStructure)
        .where(FeeStructure.course_id == course_id, FeeStructure.effective_from <= as_of)
        .order_by(FeeStructure.category, FeeStructure.effective_from.desc())
    )
    current: Dict[str, FeeStructure] = {}
    for fs in result.scalars().all():
        # Rows are newest first within a category; keep the first seen.
        current.setdefault(fs.category, fs)
    if not current:
        return None
    return to_money(sum((to_decimal(fs.amount) for fs in current.values()), Decimal("0")))


# --- Fee Assignment ---
async def _apply_total_due(
    db: AsyncSession,
    student_id: str,
    course_id: str,
    total_due: Decimal,
    changed_by: Optional[str],
) -> StudentFeeAccount:
    account = await ledger.lock_account(db, student_id)
    old = _account_snapshot(account)
    account.course_id = course_id
    account.total_due = total_due
    await ledger.recompute(db, account)
    await _log_fee_audit(
        db, "student_fee_accounts", student_id,
        "UPDATE",
        old,
        _account_snapshot(account),
        changed_by,
    )
    return account


async def assign_fee(
    db: AsyncSession,
    student_id: str,
    course_id: str,
    changed_by: Optional[str],
) -> StudentFeeAccountResponse:
    course_id = course_id.strip()
    total_due = await resolve_total_due(db, course_id)
    if total_due is None:
        raise ServiceError("No fee structure found for this course", status.HTTP_404_NOT_FOUND)
    async with ledger.student_locks.hold(student_id):
        account = await _apply_total_due(db, student_id, course_id, total_due, changed_by)
        await db.commit()
    return ledger.account_to_response(account)


async def sync_all_accounts(
    db: AsyncSession,
    changed_by: Optional[str],
) -> SyncAccountsResponse:
    """Re-price every account from its course's current fee structures."""
    rows = (
        await db.execute(
            select(StudentFeeAccount.student_id, StudentFeeAccount.course_id)
            .where(StudentFeeAccount.course_id.is_not(None))
            .order_by(StudentFeeAccount.student_id)
        )
    ).all()
    due_by_course: Dict[str, Optional[Decimal]] = {}
    updated = 0
    skipped: List[str] = []
    for student_id, course_id in rows:
        if course_id not in due_by_course:
            due_by_course[course_id] = await resolve_total_due(db, course_id)
        total_due = due_by_course[course_id]
        if total_due is None:
            skipped.append(student_id)
            continue
        async with ledger.student_locks.hold(student_id):
            await _apply_total_due(db, student_id, course_id, total_due, changed_by)
            await db.commit()
        updated += 1
    logger.info("Fee sync updated %s accounts, skipped %s", updated, len(skipped))
    return SyncAccountsResponse(updated=updated, skipped=skipped)


# --- Payment ---
async def _find_payment(db: AsyncSession, transaction_ref: str) -> Optional[Payment]:
    return (
        await db.execute(select(Payment).where(Payment.transaction_ref == transaction_ref))
    ).scalar_one_or_none()


async def _ignore_duplicate(
    db: AsyncSession,
    existing: Payment,
    payload: PaymentCreate,
    recorded_by: str,
) -> PaymentResponse:
    logger.info(
        "Duplicate payment reference %s for student %s ignored",
        existing.transaction_ref, existing.student_id,
    )
    await _log_fee_audit(
        db, "payments", existing.id,
        "DUPLICATE_IGNORED",
        None,
        {"transaction_ref": existing.transaction_ref, "student_id": payload.student_id, "amount": str(payload.amount)},
        recorded_by,
    )
    await db.commit()
    return PaymentResponse.model_validate(existing)


async def record_payment(
    db: AsyncSession,
    payload: PaymentCreate,
    recorded_by: str,
) -> Tuple[PaymentResponse, bool]:
    """
    Append a payment and recompute the student's account.

    Idempotent on transaction_ref: a replay returns the original payment and
    (False) without touching the ledger. Returns (payment, created).
    """
    amount = to_money(payload.amount)
    if amount <= 0:
        raise InvalidPayment("Amount must be greater than zero")
    transaction_ref = clean_transaction_ref(payload.transaction_ref)
    student_id = (payload.student_id or "").strip()
    if not student_id:
        raise InvalidPayment("Student ID is required")

    # Second attempt covers a concurrent insert from another process winning the unique key.
    for attempt in range(2):
        async with ledger.student_locks.hold(student_id):
            existing = await _find_payment(db, transaction_ref)
            if existing is not None:
                return await _ignore_duplicate(db, existing, payload, recorded_by), False

            account = await ledger.lock_account(db, student_id)
            old = _account_snapshot(account)
            payment = Payment(
                student_id=student_id,
                amount=amount,
                method=payload.method.value,
                transaction_ref=transaction_ref,
                recorded_by=recorded_by,
                remarks=(payload.remarks or "").strip() or None,
                payment_date=payload.payment_date or datetime.now(timezone.utc),
            )
            db.add(payment)
            try:
                await db.flush()
            except IntegrityError:
                await db.rollback()
                if attempt:
                    raise
                continue

            await ledger.recompute(db, account)
            await _log_fee_audit(
                db, "payments", payment.id,
                "CREATE",
                None,
                {"amount": str(amount), "method": payment.method, "transaction_ref": transaction_ref, "student_id": student_id},
                recorded_by,
            )
            await _log_fee_audit(
                db, "student_fee_accounts", student_id,
                "UPDATE",
                old,
                _account_snapshot(account),
                recorded_by,
            )
            await db.commit()
            await db.refresh(payment)
            logger.info(
                "Recorded %s payment %s of %s for %s",
                payment.method, transaction_ref, amount, student_id,
            )
            return PaymentResponse.model_validate(payment), True
    raise ServiceError("Payment could not be recorded", status.HTTP_409_CONFLICT)


async def get_payment_history(
    db: AsyncSession,
    student_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[PaymentResponse]:
    stmt = select(Payment)
    if student_id:
        stmt = stmt.where(Payment.student_id == student_id)
    stmt = stmt.order_by(Payment.payment_date.desc(), Payment.created_at.desc())
    if limit:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return [PaymentResponse.model_validate(p) for p in result.scalars().all()]


# --- Analytics ---
async def get_summary(db: AsyncSession) -> FeeSummary:
    row = (
        await db.execute(
            select(
                func.coalesce(func.sum(StudentFeeAccount.total_due), 0),
                func.coalesce(func.sum(StudentFeeAccount.total_paid), 0),
                func.coalesce(
                    func.sum(
                        case((StudentFeeAccount.balance > 0, StudentFeeAccount.balance), else_=0)
                    ),
                    0,
                ),
                func.count(
                    case((StudentFeeAccount.status != FeeAccountStatus.PAID.value, 1))
                ),
            )
        )
    ).one()
    return FeeSummary(
        total_expected=to_money(row[0]),
        total_collected=to_money(row[1]),
        total_outstanding=to_money(row[2]),
        pending_account_count=int(row[3] or 0),
    )


async def get_finance_analytics(db: AsyncSession) -> FinanceAnalyticsResponse:
    return FinanceAnalyticsResponse(
        summary=await get_summary(db),
        recent_payments=await get_payment_history(db, limit=RECENT_PAYMENTS_LIMIT),
    )
