"""Provider-neutral payment gateway contract.

The checkout only ever talks to ``PaymentGateway``; ``StripeGateway`` and
``GlobalPaymentsGateway`` translate it to their provider's API. Card numbers and
CVVs never leave these objects except in the outgoing provider request.
"""
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from shared.errors import ValidationError

REFERENCE_MAX_LENGTH = 50
REFERENCE_MIN_LENGTH = 3

AUTHORIZED = "Authorized"
PAID = "Paid"
RELEASED = "Released"
VOIDED = "Voided"
DECLINED = "Declined"


def sanitize_reference(reference: Optional[str]) -> Optional[str]:
    """Alphanumerics only, at most 50 characters; None when too short to be useful."""
    cleaned = re.sub(r"[^A-Za-z0-9]", "", reference or "")[:REFERENCE_MAX_LENGTH]
    if len(cleaned) < REFERENCE_MIN_LENGTH:
        return None
    return cleaned


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1")))


def _normalize_month(value) -> str:
    month = str(value).strip()
    if not month.isdigit() or not 1 <= int(month) <= 12:
        raise ValidationError("Invalid card expiry month")
    return month.zfill(2)


def _normalize_year(value) -> str:
    year = str(value).strip()
    if not year.isdigit() or len(year) not in (2, 4):
        raise ValidationError("Invalid card expiry year")
    return f"20{year}" if len(year) == 2 else year


@dataclass
class PaymentMethod:
    """Either a provider token or a raw card. Sensitive fields are masked in repr."""

    token: Optional[str] = None
    number: Optional[str] = field(default=None, repr=False)
    exp_month: Optional[str] = None
    exp_year: Optional[str] = None
    cvv: Optional[str] = field(default=None, repr=False)
    card_holder_name: Optional[str] = None
    # Provider-side customer the card is (or will be) saved under
    customer: Optional[str] = None

    @property
    def is_token(self) -> bool:
        return bool(self.token)

    @property
    def last4(self) -> Optional[str]:
        return self.number[-4:] if self.number else None

    @classmethod
    def card(cls, number, exp_month, exp_year, cvv=None, card_holder_name=None) -> "PaymentMethod":
        if not number or not exp_month or not exp_year:
            raise ValidationError("Card number, expiry month and expiry year are required")
        digits = re.sub(r"[\s-]", "", str(number))
        if not digits.isdigit():
            raise ValidationError("Invalid card number")
        return cls(
            number=digits,
            exp_month=_normalize_month(exp_month),
            exp_year=_normalize_year(exp_year),
            cvv=str(cvv).strip() if cvv else None,
            card_holder_name=card_holder_name,
        )

    @classmethod
    def from_token(cls, token: str) -> "PaymentMethod":
        if not token or not token.strip():
            raise ValidationError("Payment token is required")
        return cls(token=token.strip())


@dataclass
class TransactionResult:
    success: bool
    status: str
    transaction_id: Optional[str] = None
    authorization_code: Optional[str] = None
    response_code: Optional[str] = None
    response_message: Optional[str] = None
    # Multi-use token, when one was requested and the provider issued it
    token: Optional[str] = None


@dataclass
class TokenizeResult:
    token: str
    fingerprint: Optional[str] = None
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[str] = None
    exp_year: Optional[str] = None


class PaymentGateway(ABC):
    """What the checkout needs from a card provider.

    ``holds_funds`` tells the checkout whether ``pay`` leaves an authorization
    to capture later (compensated by ``release``) or takes the money at once
    (compensated by ``void``).
    """

    provider: str = ""
    holds_funds: bool = True
    # Saved cards only work when attached to a customer record at the provider
    vaults_on_customer: bool = False

    @abstractmethod
    async def authorize(
        self,
        amount: Decimal,
        currency: str,
        reference: Optional[str],
        payment_method: PaymentMethod,
        request_token: bool = False,
    ) -> TransactionResult: ...

    @abstractmethod
    async def charge(
        self,
        amount: Decimal,
        currency: str,
        reference: Optional[str],
        payment_method: PaymentMethod,
        request_token: bool = False,
    ) -> TransactionResult: ...

    @abstractmethod
    async def capture(self, transaction_id: str, amount: Optional[Decimal] = None) -> TransactionResult: ...

    @abstractmethod
    async def release(self, transaction_id: str) -> TransactionResult: ...

    @abstractmethod
    async def void(self, transaction_id: str) -> TransactionResult: ...

    @abstractmethod
    async def tokenize(self, payment_method: PaymentMethod) -> TokenizeResult: ...

    async def create_customer(
        self, email: Optional[str], name: Optional[str] = None, user_id: Optional[int] = None
    ) -> Optional[str]:
        return None

    async def pay(self, amount, currency, reference, payment_method, request_token=False) -> TransactionResult:
        if self.holds_funds:
            return await self.authorize(amount, currency, reference, payment_method, request_token)
        return await self.charge(amount, currency, reference, payment_method, request_token)

    async def undo(self, transaction_id: str) -> TransactionResult:
        if self.holds_funds:
            return await self.release(transaction_id)
        return await self.void(transaction_id)
