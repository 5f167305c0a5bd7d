"""M-Pesa router: STK push initiation, provider callback, request status, discrepancies."""

import json
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import FINANCE_ROLES, ensure_student_scope, require_roles
from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.core.exceptions import ServiceError
from app.db.session import get_db
from app.mpesa.gateway import MpesaGateway, get_mpesa_gateway

from .schemas import (
    CallbackAck,
    CallbackDiscrepancyResponse,
    PushPaymentRequestResponse,
    StkPushCreate,
    StkPushResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/mpesa", tags=["mpesa"])


@router.post(
    "/stk-push",
    response_model=StkPushResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def initiate_stk_push(
    payload: StkPushCreate,
    db: AsyncSession = Depends(get_db),
    gateway: MpesaGateway = Depends(get_mpesa_gateway),
    current_user: CurrentUser = Depends(get_current_user),
) -> StkPushResponse:
    ensure_student_scope(current_user, payload.student_id)
    try:
        return await service.initiate_push_payment(
            db, gateway, payload, initiated_by=current_user.actor
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/callback",
    response_model=CallbackAck,
)
async def mpesa_callback(
    request: Request,
    token: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> CallbackAck:
    if settings.mpesa_callback_token and token != settings.mpesa_callback_token:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid callback token")
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = {"raw": (await request.body()).decode("utf-8", errors="replace")[:2000]}
    return await service.handle_callback(db, payload)


@router.get(
    "/requests/{checkout_request_id}",
    response_model=PushPaymentRequestResponse,
)
async def get_push_request(
    checkout_request_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PushPaymentRequestResponse:
    result = await service.get_push_request(db, checkout_request_id)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Push payment request not found",
        )
    ensure_student_scope(current_user, result.student_id)
    return result


@router.get(
    "/discrepancies",
    response_model=List[CallbackDiscrepancyResponse],
    dependencies=[Depends(require_roles(*FINANCE_ROLES))],
)
async def list_discrepancies(
    include_resolved: bool = Query(False),
    db: AsyncSession = Depends(get_db),
) -> List[CallbackDiscrepancyResponse]:
    return await service.list_discrepancies(db, include_resolved=include_resolved)


@router.post(
    "/discrepancies/{discrepancy_id}/resolve",
    response_model=CallbackDiscrepancyResponse,
)
async def resolve_discrepancy(
    discrepancy_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*FINANCE_ROLES)),
) -> CallbackDiscrepancyResponse:
    try:
        return await service.resolve_discrepancy(db, discrepancy_id, resolved_by=current_user.actor)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
