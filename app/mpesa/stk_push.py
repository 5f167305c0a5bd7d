"""Lipa Na M-Pesa Online (STK push) initiation."""

import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Tuple

import httpx

from app.core.exceptions import (
    InvalidAmount,
    InvalidPhone,
    ProviderRejected,
    ProviderUnknownState,
)
from app.core.utils import (
    is_plausible_msisdn,
    mask_phone,
    normalize_phone,
    to_decimal,
    to_whole_units,
)
from app.mpesa.token_manager import AccessTokenManager

logger = logging.getLogger(__name__)

STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


@dataclass
class StkPushResult:
    phone: str
    amount: int
    student_ref: str
    checkout_request_id: str
    merchant_request_id: Optional[str]
    customer_message: Optional[str]


def build_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode("utf-8")).decode("ascii")


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"Payment provider returned HTTP {response.status_code}"
    if isinstance(data, dict):
        for key in ("errorMessage", "ResponseDescription", "CustomerMessage"):
            if data.get(key):
                return str(data[key])
    return f"Payment provider returned HTTP {response.status_code}"


class StkPushInitiator:
    """Sends STK push requests. Never touches the ledger; only the callback does."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        token_manager: AccessTokenManager,
        shortcode: str,
        passkey: str,
        callback_url: str,
        transaction_type: str = "CustomerPayBillOnline",
        country_code: str = "254",
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._client = client
        self._tokens = token_manager
        self._shortcode = shortcode
        self._passkey = passkey
        self._callback_url = callback_url
        self._transaction_type = transaction_type
        self._country_code = country_code
        self._now = now

    def build_request_body(self, phone: str, amount: int, student_ref: str) -> dict:
        timestamp = self._now().strftime(TIMESTAMP_FORMAT)
        return {
            "BusinessShortCode": self._shortcode,
            "Password": build_password(self._shortcode, self._passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": self._transaction_type,
            "Amount": amount,
            "PartyA": phone,
            "PartyB": self._shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self._callback_url,
            "AccountReference": student_ref,
            "TransactionDesc": f"Fee Payment for {student_ref}",
        }

    def prepare(self, phone: str, amount: Decimal) -> Tuple[str, int]:
        """Local validation: canonical phone and whole-unit amount. Nothing is sent."""
        if to_decimal(amount) <= 0:
            raise InvalidAmount("Amount must be greater than zero")
        whole_amount = to_whole_units(amount)
        if whole_amount <= 0:
            raise InvalidAmount("Amount must be at least 1 after rounding to whole units")
        canonical = normalize_phone(phone, self._country_code)
        if not is_plausible_msisdn(canonical):
            raise InvalidPhone("Phone number is not a valid mobile number")
        return canonical, whole_amount

    async def initiate(self, phone: str, amount: Decimal, student_ref: str) -> StkPushResult:
        canonical, whole_amount = self.prepare(phone, amount)

        body = self.build_request_body(canonical, whole_amount, student_ref)
        logger.info(
            "Sending STK push to %s for %s (account %s)",
            mask_phone(canonical),
            whole_amount,
            student_ref,
        )

        response = await self._submit(body)
        if response.status_code == 401:
            # Token revoked or expired early on the provider side: refresh once.
            self._tokens.invalidate()
            response = await self._submit(body)

        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning("STK push rejected (HTTP %s): %s", response.status_code, message)
            raise ProviderRejected(message)

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderUnknownState("STK push response was not JSON") from exc
        if str(data.get("ResponseCode")) != "0" or not data.get("CheckoutRequestID"):
            message = _error_message(response)
            logger.warning("STK push not accepted: %s", message)
            raise ProviderRejected(message)

        logger.info("STK push accepted, checkout id %s", data["CheckoutRequestID"])
        return StkPushResult(
            phone=canonical,
            amount=whole_amount,
            student_ref=student_ref,
            checkout_request_id=data["CheckoutRequestID"],
            merchant_request_id=data.get("MerchantRequestID"),
            customer_message=data.get("CustomerMessage"),
        )

    async def _submit(self, body: dict) -> httpx.Response:
        token = await self._tokens.get_token()
        try:
            return await self._client.post(
                STK_PUSH_PATH,
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as exc:
            logger.warning("STK push timed out; outcome unknown")
            raise ProviderUnknownState(f"timeout: {exc.__class__.__name__}") from exc
        except httpx.TransportError as exc:
            logger.warning("STK push transport error (%s); outcome unknown", exc.__class__.__name__)
            raise ProviderUnknownState(f"transport error: {exc.__class__.__name__}") from exc
