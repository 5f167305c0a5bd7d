"""Parsing of the STK push result the provider POSTs to the callback URL."""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from app.core.enums import PushPaymentStatus
from app.core.exceptions import MalformedCallback
from app.core.utils import MAX_TRANSACTION_REF_LENGTH, to_money

RESULT_SUCCESS = 0
RESULT_NO_RESPONSE_FROM_HANDSET = 1037


@dataclass
class StkCallback:
    checkout_request_id: str
    merchant_request_id: Optional[str]
    result_code: int
    result_description: str
    amount: Optional[Decimal] = None
    receipt_number: Optional[str] = None
    phone: Optional[str] = None
    transaction_date: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result_code == RESULT_SUCCESS

    @property
    def outcome(self) -> PushPaymentStatus:
        if self.succeeded:
            return PushPaymentStatus.CONFIRMED
        if self.result_code == RESULT_NO_RESPONSE_FROM_HANDSET:
            return PushPaymentStatus.TIMED_OUT
        return PushPaymentStatus.FAILED


def _metadata_items(stk: Dict[str, Any]) -> Dict[str, Any]:
    items = (stk.get("CallbackMetadata") or {}).get("Item") or []
    if not isinstance(items, list):
        raise MalformedCallback("CallbackMetadata.Item is not a list")
    return {item.get("Name"): item.get("Value") for item in items if isinstance(item, dict)}


def parse_stk_callback(payload: Any) -> StkCallback:
    """Extract Body.stkCallback. Raises MalformedCallback when required fields are missing."""
    if not isinstance(payload, dict):
        raise MalformedCallback("Callback body is not a JSON object")
    body = payload.get("Body")
    stk = body.get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(stk, dict):
        raise MalformedCallback("Callback is missing Body.stkCallback")

    checkout_id = stk.get("CheckoutRequestID")
    if not checkout_id or not isinstance(checkout_id, str):
        raise MalformedCallback("Callback is missing CheckoutRequestID")
    if len(checkout_id) > MAX_TRANSACTION_REF_LENGTH:
        raise MalformedCallback("Callback CheckoutRequestID is too long")
    try:
        result_code = int(stk.get("ResultCode"))
    except (TypeError, ValueError):
        raise MalformedCallback("Callback ResultCode is missing or not numeric")

    callback = StkCallback(
        checkout_request_id=checkout_id,
        merchant_request_id=stk.get("MerchantRequestID"),
        result_code=result_code,
        result_description=str(stk.get("ResultDesc") or ""),
    )
    if not callback.succeeded:
        return callback

    meta = _metadata_items(stk)
    try:
        callback.amount = Decimal(str(meta["Amount"]))
    except (KeyError, InvalidOperation):
        raise MalformedCallback("Successful callback has no valid Amount")
    # NaN and Infinity parse as Decimals; amounts under a cent round to zero.
    if not callback.amount.is_finite() or to_money(callback.amount) <= 0:
        raise MalformedCallback("Successful callback has no positive Amount")
    receipt = meta.get("MpesaReceiptNumber")
    callback.receipt_number = str(receipt) if receipt else None
    phone = meta.get("PhoneNumber")
    callback.phone = str(phone) if phone is not None else None
    txn_date = meta.get("TransactionDate")
    callback.transaction_date = str(txn_date) if txn_date is not None else None
    return callback
