"""
Fee account ledger.

StudentFeeAccount rows are a summary over the append-only payments table.
recompute() is the only writer of total_paid, balance and status; every
writer holds the per-student lock for the whole read-modify-write.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import FeeAccountStatus
from app.core.models import Payment, StudentFeeAccount
from app.core.utils import to_money

from .schemas import StudentFeeAccountResponse

logger = logging.getLogger(__name__)


def derive_status(total_due: Decimal, total_paid: Decimal) -> FeeAccountStatus:
    """Nothing left to pay is Paid (including overpayment and 0/0); otherwise by what was paid."""
    if total_due - total_paid <= 0:
        return FeeAccountStatus.PAID
    if total_paid <= 0:
        return FeeAccountStatus.UNPAID
    return FeeAccountStatus.PARTIAL


class StudentLockRegistry:
    """asyncio locks keyed by student id. Unused locks are dropped with their last holder."""

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @asynccontextmanager
    async def hold(self, student_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(student_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[student_id] = lock
        async with lock:
            yield


student_locks = StudentLockRegistry()


def account_to_response(account: StudentFeeAccount) -> StudentFeeAccountResponse:
    balance = to_money(account.balance)
    return StudentFeeAccountResponse(
        student_id=account.student_id,
        course_id=account.course_id,
        total_due=to_money(account.total_due),
        total_paid=to_money(account.total_paid),
        balance=balance,
        overpaid_amount=-balance if balance < 0 else Decimal("0.00"),
        status=FeeAccountStatus(account.status),
        last_payment_date=account.last_payment_date,
        updated_at=account.updated_at,
    )


def empty_account(student_id: str) -> StudentFeeAccountResponse:
    zero = Decimal("0.00")
    return StudentFeeAccountResponse(
        student_id=student_id,
        total_due=zero,
        total_paid=zero,
        balance=zero,
        status=derive_status(zero, zero),
    )


async def _select_for_update(db: AsyncSession, student_id: str) -> Optional[StudentFeeAccount]:
    return (
        await db.execute(
            select(StudentFeeAccount)
            .where(StudentFeeAccount.student_id == student_id)
            .with_for_update()
        )
    ).scalar_one_or_none()


async def lock_account(db: AsyncSession, student_id: str) -> StudentFeeAccount:
    """
    Load the account row FOR UPDATE, creating a zero-valued one on first use.

    Call at the start of a unit of work: if another worker creates the same
    account first, the transaction is rolled back and the winner's row is locked.
    """
    account = await _select_for_update(db, student_id)
    if account is not None:
        return account

    zero = Decimal("0.00")
    account = StudentFeeAccount(
        student_id=student_id,
        total_due=zero,
        total_paid=zero,
        balance=zero,
        status=derive_status(zero, zero).value,
    )
    db.add(account)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        logger.info("Fee account %s was created concurrently; using the existing row", student_id)
        account = await _select_for_update(db, student_id)
        if account is None:
            raise
    return account


async def recompute(db: AsyncSession, account: StudentFeeAccount) -> StudentFeeAccount:
    """Rebuild total_paid from the payment log, then balance and status."""
    paid_row = (
        await db.execute(
            select(
                func.coalesce(func.sum(Payment.amount), 0),
                func.max(Payment.payment_date),
            ).where(Payment.student_id == account.student_id)
        )
    ).one()
    total_paid = to_money(paid_row[0])
    total_due = to_money(account.total_due)
    account.total_paid = total_paid
    account.balance = total_due - total_paid
    account.status = derive_status(total_due, total_paid).value
    account.last_payment_date = paid_row[1]
    await db.flush()
    logger.debug(
        "Recomputed %s: due=%s paid=%s status=%s",
        account.student_id, total_due, total_paid, account.status,
    )
    return account


async def get_account(db: AsyncSession, student_id: str) -> StudentFeeAccountResponse:
    account = await db.get(StudentFeeAccount, student_id)
    if account is None:
        return empty_account(student_id)
    return account_to_response(account)


async def list_accounts(db: AsyncSession) -> List[StudentFeeAccountResponse]:
    result = await db.execute(select(StudentFeeAccount).order_by(StudentFeeAccount.student_id))
    return [account_to_response(a) for a in result.scalars().all()]
