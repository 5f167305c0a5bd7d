"""Money, phone and reference helpers shared by the ledger and the M-Pesa integration."""

import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from app.core.exceptions import InvalidPayment

_NON_DIGITS = re.compile(r"\D")

CENTS = Decimal("0.01")
MAX_TRANSACTION_REF_LENGTH = 100


def to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


def to_money(val) -> Decimal:
    return to_decimal(val).quantize(CENTS, rounding=ROUND_HALF_UP)


def to_whole_units(amount) -> int:
    """Round half up to whole currency units, as the provider only accepts integers."""
    return int(to_decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize_phone(phone: Optional[str], country_code: str = "254") -> str:
    """
    Canonical digits-only international form, e.g. 0712345678 -> 254712345678.

    Never raises. Input with no digits returns an empty string; anything else is
    left for the provider to accept or reject.
    """
    digits = _NON_DIGITS.sub("", phone or "")
    if not digits:
        return ""
    if digits.startswith("00"):
        # International dialling prefix
        return digits[2:]
    if digits.startswith(country_code):
        return digits
    if digits.startswith("0"):
        return country_code + digits[1:]
    return country_code + digits


def is_plausible_msisdn(phone: str) -> bool:
    """E.164 allows at most 15 digits; anything under 9 cannot carry a subscriber number."""
    return phone.isdigit() and 9 <= len(phone) <= 15


def clean_transaction_ref(ref: Optional[str]) -> str:
    cleaned = (ref or "").strip()
    if not cleaned:
        raise InvalidPayment("Transaction reference is required")
    if len(cleaned) > MAX_TRANSACTION_REF_LENGTH:
        raise InvalidPayment(
            f"Transaction reference must be at most {MAX_TRANSACTION_REF_LENGTH} characters"
        )
    return cleaned


def mask_phone(phone: str) -> str:
    if not phone or len(phone) < 7:
        return "***"
    return f"{phone[:5]}***{phone[-3:]}"
