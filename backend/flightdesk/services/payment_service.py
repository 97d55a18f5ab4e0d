from __future__ import annotations

import hashlib
import hmac
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from flightdesk.core.config import Settings
from flightdesk.core.errors import PaymentVerificationError, ValidationError
from flightdesk.models.domain import Booking
from flightdesk.services.booking_machine import BookingStateMachine

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "y", "success", "succeeded", "ok", "completed", "paid"}


def md5_upper(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest().upper()


def parse_success(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value if value is not None else "").strip().lower() in TRUTHY


def _first(payload: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


def amount_renderings(amount_text: str) -> List[str]:
    """The textual forms a gateway may have signed for one amount."""
    base = amount_text.strip()
    no_commas = base.replace(",", "")
    trimmed = re.sub(r"\.0*$", "", re.sub(r"(\.\d*?)0+$", r"\1", no_commas))
    candidates = [base, no_commas, trimmed]
    try:
        candidates.append(format(Decimal(no_commas).normalize(), "f"))
    except InvalidOperation:
        pass
    seen: List[str] = []
    for candidate in candidates:
        if candidate and candidate not in seen:
            seen.append(candidate)
    return seen


def format_amount(amount: float) -> str:
    value = Decimal(str(amount)).quantize(Decimal("0.01"))
    return str(int(value)) if value == value.to_integral_value() else str(value)


@dataclass
class PaymentCallback:
    order_ref: str
    transaction_no: str
    amount_text: str
    token: str
    success: bool
    message: Optional[str] = None

    @property
    def amount(self) -> float:
        try:
            return float(self.amount_text.replace(",", ""))
        except ValueError:
            return 0.0

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PaymentCallback":
        order_ref = _first(payload, "orderRef", "orderref", "or", "order_ref", "booking_id")
        transaction_no = _first(
            payload, "transactionNo", "transactionno", "transaction_no", "transNo", "tn"
        )
        amount = _first(payload, "amount", "a", "Amount", "A")
        token = _first(payload, "token", "Token", "t")
        if not order_ref or not transaction_no or amount is None or not token:
            raise ValidationError("Missing required payment information")
        return cls(
            order_ref=str(order_ref),
            transaction_no=str(transaction_no),
            amount_text=str(amount).strip(),
            token=str(token),
            success=parse_success(
                _first(payload, "isSuccess", "success", "is_success", "status", "result")
            ),
            message=_first(payload, "message", "msg", "errorMessage", "error_message"),
        )


class PaymentGateway:
    """Hosted card checkout: URL signing and callback token verification."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def verification_code(self, amount: str, order_ref: str) -> str:
        s = self.settings
        return md5_upper(f"{s.merchant_key}{s.merchant_secret}{amount}{order_ref}")

    def callback_token(self, transaction_no: str, amount: str, order_ref: str) -> str:
        s = self.settings
        return md5_upper(f"{s.merchant_key}{s.merchant_secret}{transaction_no}{amount}{order_ref}")

    def build_checkout_url(self, amount: str, order_ref: str, return_url: Optional[str] = None) -> str:
        if not self.settings.payment_configured:
            raise ValidationError("Payment gateway is not configured")
        public = self.settings.server_public_url.rstrip("/")
        query = urlencode(
            {
                "tk": self.settings.terminal_key,
                "mid": self.settings.merchant_key,
                "vc": self.verification_code(amount, order_ref),
                "c": self.settings.payment_currency,
                "a": amount,
                "lang": "EN",
                "or": order_ref,
                "ru": return_url or f"{public}/payment/success",
                "cu": f"{public}/payment/callback",
            }
        )
        return f"{self.settings.payment_gateway_url.rstrip('/')}/Checkout/CardCheckout?{query}"

    def verify_callback(self, callback: PaymentCallback) -> None:
        if not self.settings.merchant_key or not self.settings.merchant_secret:
            raise PaymentVerificationError("Payment gateway not configured")
        received = callback.token.upper()
        for amount in amount_renderings(callback.amount_text):
            expected = self.callback_token(callback.transaction_no, amount, callback.order_ref)
            if hmac.compare_digest(expected, received):
                return
        logger.warning(
            "Invalid payment callback token for %s (transaction %s)",
            callback.order_ref, callback.transaction_no,
        )
        raise PaymentVerificationError("Invalid callback token")


class PaymentService:
    def __init__(self, gateway: PaymentGateway, machine: BookingStateMachine):
        self.gateway = gateway
        self.machine = machine

    def initiate(self, booking_id: str, return_url: Optional[str] = None) -> str:
        booking = self.machine.get_booking(booking_id)
        amount = format_amount(booking.flight.itinerary.total_price)
        url = self.gateway.build_checkout_url(amount, booking.booking_id, return_url)
        logger.info("Checkout started for %s (%s %s)", booking_id, amount, self.gateway.settings.payment_currency)
        return url

    def handle_callback(self, payload: Dict[str, Any]) -> Booking:
        callback = PaymentCallback.from_payload(payload)
        self.gateway.verify_callback(callback)
        logger.info(
            "Verified payment callback for %s: success=%s transaction=%s",
            callback.order_ref, callback.success, callback.transaction_no,
        )
        return self.machine.confirm_payment(
            callback.order_ref,
            amount=callback.amount,
            currency=self.gateway.settings.payment_currency,
            reference=callback.transaction_no,
            success=callback.success,
        )
