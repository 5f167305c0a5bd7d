"""
Push payments: initiation through the provider and reconciliation of its callbacks.

The only path from a provider confirmation to the ledger is
fees.service.record_payment, keyed by the checkout request id.
"""

import logging
from typing import Any, List, Optional
from uuid import UUID

from fastapi import status
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.fees import service as fees_service
from app.api.v1.fees.schemas import PaymentCreate
from app.core.config import settings
from app.core.enums import PaymentMethod, PushPaymentStatus
from app.core.exceptions import (
    MalformedCallback,
    ProviderAuthError,
    ProviderRejected,
    ProviderUnknownState,
    ServiceError,
)
from app.core.models import CallbackDiscrepancy, FeeAuditLog, PushPaymentRequest
from app.core.utils import mask_phone, normalize_phone, to_money, to_whole_units
from app.mpesa.callback import StkCallback, parse_stk_callback
from app.mpesa.gateway import MpesaGateway

from .schemas import (
    CallbackAck,
    CallbackDiscrepancyResponse,
    PushPaymentRequestResponse,
    StkPushCreate,
    StkPushResponse,
)

logger = logging.getLogger(__name__)

CALLBACK_ACTOR = "mpesa-callback"

# Requests a late success callback may still belong to.
_OPEN_STATUSES = (PushPaymentStatus.PENDING.value, PushPaymentStatus.TIMED_OUT.value)


def _log_outcome(
    db: AsyncSession,
    req: PushPaymentRequest,
    old_status: Optional[str],
    changed_by: Optional[str],
) -> None:
    db.add(
        FeeAuditLog(
            reference_table="push_payment_requests",
            reference_id=str(req.id),
            action_type="CREATE" if old_status is None else "UPDATE",
            old_value=None if old_status is None else {"status": old_status},
            new_value={
                "status": req.status,
                "checkout_request_id": req.checkout_request_id,
                "result_code": req.result_code,
            },
            changed_by=changed_by,
        )
    )


# --- Initiation ---
async def initiate_push_payment(
    db: AsyncSession,
    gateway: MpesaGateway,
    payload: StkPushCreate,
    initiated_by: Optional[str],
) -> StkPushResponse:
    phone, amount = gateway.initiator.prepare(payload.phone, payload.amount)

    # Persisted before the provider call so a callback for a cancelled or timed-out
    # request can still be matched by phone and amount.
    req = PushPaymentRequest(
        student_id=payload.student_id.strip(),
        phone=phone,
        amount=amount,
        status=PushPaymentStatus.PENDING.value,
        initiated_by=initiated_by,
    )
    db.add(req)
    await db.flush()
    _log_outcome(db, req, None, initiated_by)
    await db.commit()

    try:
        result = await gateway.initiator.initiate(phone, amount, req.student_id)
    except ProviderRejected as e:
        req.status = PushPaymentStatus.FAILED.value
        req.result_description = e.provider_message[:255]
        _log_outcome(db, req, PushPaymentStatus.PENDING.value, initiated_by)
        await db.commit()
        raise
    except ProviderUnknownState:
        req.status = PushPaymentStatus.TIMED_OUT.value
        req.result_description = "No response from payment provider"
        _log_outcome(db, req, PushPaymentStatus.PENDING.value, initiated_by)
        await db.commit()
        raise
    except ProviderAuthError:
        # Token exchange failed: nothing reached the provider.
        req.status = PushPaymentStatus.FAILED.value
        req.result_description = "Payment provider authentication failed"
        _log_outcome(db, req, PushPaymentStatus.PENDING.value, initiated_by)
        await db.commit()
        raise

    req.checkout_request_id = result.checkout_request_id
    req.merchant_request_id = result.merchant_request_id
    await db.commit()
    await db.refresh(req)
    response = StkPushResponse.model_validate(req)
    response.customer_message = result.customer_message
    return response


async def get_push_request(
    db: AsyncSession,
    checkout_request_id: str,
) -> Optional[PushPaymentRequestResponse]:
    req = (
        await db.execute(
            select(PushPaymentRequest).where(
                PushPaymentRequest.checkout_request_id == checkout_request_id
            )
        )
    ).scalar_one_or_none()
    if req is None:
        return None
    return PushPaymentRequestResponse.model_validate(req)


# --- Reconciliation ---
async def _flag_discrepancy(
    db: AsyncSession,
    reason: str,
    detail: str,
    payload: Any,
    checkout_request_id: Optional[str] = None,
) -> None:
    logger.warning(
        "M-Pesa callback flagged for review (%s, checkout %s): %s",
        reason, checkout_request_id, detail,
    )
    db.add(
        CallbackDiscrepancy(
            checkout_request_id=checkout_request_id,
            reason=reason,
            detail=detail[:500],
            payload=payload if isinstance(payload, dict) else {"raw": repr(payload)[:2000]},
        )
    )
    await db.commit()


async def _find_request(db: AsyncSession, callback: StkCallback) -> Optional[PushPaymentRequest]:
    req = (
        await db.execute(
            select(PushPaymentRequest).where(
                PushPaymentRequest.checkout_request_id == callback.checkout_request_id
            )
        )
    ).scalar_one_or_none()
    if req is not None or not callback.succeeded or not callback.phone:
        return req

    # The initiating call never saw a checkout id (timeout or cancellation).
    phone = normalize_phone(callback.phone, settings.phone_country_code)
    amount = to_whole_units(callback.amount)
    candidates = (
        await db.execute(
            select(PushPaymentRequest).where(
                PushPaymentRequest.checkout_request_id.is_(None),
                PushPaymentRequest.phone == phone,
                PushPaymentRequest.status.in_(_OPEN_STATUSES),
            )
        )
    ).scalars().all()
    matches = [c for c in candidates if to_whole_units(c.amount) == amount]
    if len(matches) == 1:
        logger.info(
            "Matched callback %s to request %s by phone %s and amount",
            callback.checkout_request_id, matches[0].id, mask_phone(phone),
        )
        return matches[0]
    return None


async def handle_callback(db: AsyncSession, payload: Any) -> CallbackAck:
    """
    Reconcile one provider callback. Always acknowledges so the provider stops
    retrying; anything that cannot be applied is stored as a discrepancy.
    """
    try:
        callback = parse_stk_callback(payload)
    except MalformedCallback as e:
        await _flag_discrepancy(db, "MALFORMED", e.message, payload)
        return CallbackAck()

    req = await _find_request(db, callback)
    if req is None:
        await _flag_discrepancy(
            db, "UNKNOWN_CHECKOUT",
            f"No push request for checkout id (result {callback.result_code})",
            payload,
            checkout_request_id=callback.checkout_request_id,
        )
        return CallbackAck()

    if not callback.succeeded:
        old_status = req.status
        if old_status in _OPEN_STATUSES and req.payment_id is None:
            req.status = callback.outcome.value
            req.result_code = str(callback.result_code)
            req.result_description = callback.result_description[:255]
            _log_outcome(db, req, old_status, CALLBACK_ACTOR)
            await db.commit()
        logger.info(
            "Push payment %s not completed: %s (%s)",
            callback.checkout_request_id, callback.result_description, callback.result_code,
        )
        return CallbackAck()

    confirmed_amount = to_money(callback.amount)
    remarks = f"M-Pesa receipt {callback.receipt_number}" if callback.receipt_number else "M-Pesa STK push"
    try:
        payment, created = await fees_service.record_payment(
            db,
            PaymentCreate(
                student_id=req.student_id,
                amount=confirmed_amount,
                method=PaymentMethod.MOBILE_MONEY,
                transaction_ref=callback.checkout_request_id,
                remarks=remarks,
            ),
            recorded_by=CALLBACK_ACTOR,
        )
    except (ValidationError, ServiceError) as e:
        await db.rollback()
        await _flag_discrepancy(
            db, "UNRECORDABLE",
            f"Confirmed payment could not be recorded: {e}",
            payload,
            checkout_request_id=callback.checkout_request_id,
        )
        return CallbackAck()

    # record_payment committed (or rolled back); reload before updating.
    await db.refresh(req)
    old_status = req.status
    req.status = PushPaymentStatus.CONFIRMED.value
    req.checkout_request_id = req.checkout_request_id or callback.checkout_request_id
    req.result_code = str(callback.result_code)
    req.result_description = callback.result_description[:255]
    req.payment_id = payment.id
    if old_status != req.status:
        _log_outcome(db, req, old_status, CALLBACK_ACTOR)
    await db.commit()

    if created and confirmed_amount != to_money(req.amount):
        await _flag_discrepancy(
            db, "AMOUNT_MISMATCH",
            f"Requested {to_money(req.amount)}, provider confirmed {confirmed_amount}; confirmed amount recorded",
            payload,
            checkout_request_id=callback.checkout_request_id,
        )
    return CallbackAck()


# --- Discrepancies ---
async def list_discrepancies(
    db: AsyncSession,
    include_resolved: bool = False,
) -> List[CallbackDiscrepancyResponse]:
    stmt = select(CallbackDiscrepancy)
    if not include_resolved:
        stmt = stmt.where(CallbackDiscrepancy.is_resolved.is_(False))
    stmt = stmt.order_by(CallbackDiscrepancy.created_at.desc())
    result = await db.execute(stmt)
    return [CallbackDiscrepancyResponse.model_validate(d) for d in result.scalars().all()]


async def resolve_discrepancy(
    db: AsyncSession,
    discrepancy_id: UUID,
    resolved_by: Optional[str],
) -> CallbackDiscrepancyResponse:
    discrepancy = await db.get(CallbackDiscrepancy, discrepancy_id)
    if discrepancy is None:
        raise ServiceError("Discrepancy not found", status.HTTP_404_NOT_FOUND)
    discrepancy.is_resolved = True
    db.add(
        FeeAuditLog(
            reference_table="callback_discrepancies",
            reference_id=str(discrepancy.id),
            action_type="RESOLVE",
            old_value={"is_resolved": False},
            new_value={"is_resolved": True},
            changed_by=resolved_by,
        )
    )
    await db.commit()
    await db.refresh(discrepancy)
    return CallbackDiscrepancyResponse.model_validate(discrepancy)
