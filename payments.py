"""
Payment gateway boundary.

Checkout only needs "charge this snapshot and give me a reference". The
simulated gateway confirms every charge immediately; a hosted gateway would
return a redirect_url instead.
"""
import logging
import re
import time
import uuid
from typing import List, Literal, Optional

from pydantic import BaseModel

from errors import ValidationFailure

logger = logging.getLogger(__name__)

PaymentMethod = Literal["card", "paypal"]
PAYMENT_METHODS = ("card", "paypal")


class CardDetails(BaseModel):
    number: str
    expiry: str
    cvc: str


class PaymentResult(BaseModel):
    reference: str
    confirmed: bool = True
    redirect_url: Optional[str] = None


def validate_card(card: Optional[CardDetails]) -> None:
    if card is None or not card.number.strip() or not card.expiry.strip() or not card.cvc.strip():
        raise ValidationFailure("Please enter all card details")
    if len(re.sub(r"\s", "", card.number)) != 16 or not re.sub(r"\s", "", card.number).isdigit():
        raise ValidationFailure("Please enter a valid card number")
    if not re.fullmatch(r"\d{2}/\d{2}", card.expiry.strip()):
        raise ValidationFailure("Please enter expiry in MM/YY format")
    if not re.fullmatch(r"\d{3,4}", card.cvc.strip()):
        raise ValidationFailure("Please enter a valid CVC code")


class PaymentGateway:
    def charge(self, user_id: str, lines: List[dict], total: float, method: str,
               card: Optional[CardDetails] = None) -> PaymentResult:
        raise NotImplementedError


class SimulatedGateway(PaymentGateway):
    def charge(self, user_id, lines, total, method, card=None):
        if method not in PAYMENT_METHODS:
            raise ValidationFailure(f"Unsupported payment method: {method}")
        if method == "card":
            validate_card(card)
        reference = f"sim_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
        logger.info("simulated %s charge of %.2f for user %s: %s", method, total, user_id, reference)
        return PaymentResult(reference=reference)
