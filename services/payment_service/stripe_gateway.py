import asyncio
from decimal import Decimal
from typing import Optional

import stripe
import structlog

from shared.errors import PaymentProviderError
from shared.observability import phleb_payment_provider_errors_total

from .gateway import (
    AUTHORIZED,
    DECLINED,
    PAID,
    RELEASED,
    VOIDED,
    PaymentGateway,
    PaymentMethod,
    TokenizeResult,
    TransactionResult,
    to_minor_units,
)

logger = structlog.get_logger(__name__)

PROVIDER = "stripe"


class StripeGateway(PaymentGateway):
    """Card-vault provider that takes the money at checkout.

    The SDK is synchronous, so every call runs in a worker thread.
    """

    provider = PROVIDER
    holds_funds = False
    vaults_on_customer = True

    def __init__(self, api_key: str):
        self.api_key = api_key

    async def _call(self, operation: str, func, **params):
        if not self.api_key:
            raise PaymentProviderError(PROVIDER, "Stripe is not configured")
        try:
            return await asyncio.to_thread(func, api_key=self.api_key, **params)
        except stripe.StripeError as exc:
            phleb_payment_provider_errors_total.labels(provider=PROVIDER, operation=operation).inc()
            code = getattr(exc, "code", None)
            logger.warning("stripe_request_failed", operation=operation, code=code)
            message = getattr(exc, "user_message", None) or "Payment was declined by Stripe"
            raise PaymentProviderError(PROVIDER, message, code) from exc

    async def _payment_method_params(self, payment_method: PaymentMethod, request_token: bool) -> dict:
        if not payment_method.is_token:
            created = await self._create_payment_method(payment_method)
            params = {"payment_method": created["id"]}
        elif payment_method.token.startswith("tok_"):
            params = {"payment_method_data": {"type": "card", "card": {"token": payment_method.token}}}
        else:
            params = {"payment_method": payment_method.token}

        # A saved pm_ can only be used again through the customer it is attached to
        if payment_method.customer:
            params["customer"] = payment_method.customer
            if request_token:
                # Stripe attaches the card to the customer once the payment succeeds
                params["setup_future_usage"] = "off_session"
        return params

    async def _create_intent(
        self, amount, currency, reference, payment_method, request_token, capture_method
    ) -> TransactionResult:
        params = await self._payment_method_params(payment_method, request_token)
        params.update(
            amount=to_minor_units(amount),
            currency=currency.lower(),
            confirm=True,
            capture_method=capture_method,
            automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
        )
        if reference:
            params["description"] = reference
            params["metadata"] = {"reference": reference}

        intent = await self._call("create_intent", stripe.PaymentIntent.create, **params)
        status = intent.get("status")
        if status == "requires_capture":
            result_status = AUTHORIZED
        elif status == "succeeded":
            result_status = PAID
        else:
            result_status = DECLINED

        return TransactionResult(
            success=result_status != DECLINED,
            status=result_status,
            transaction_id=intent.get("id"),
            response_code=status,
            response_message=status,
            token=intent.get("payment_method") if request_token else None,
        )

    async def authorize(self, amount, currency, reference, payment_method, request_token=False):
        return await self._create_intent(amount, currency, reference, payment_method, request_token, "manual")

    async def charge(self, amount, currency, reference, payment_method, request_token=False):
        return await self._create_intent(amount, currency, reference, payment_method, request_token, "automatic")

    async def capture(self, transaction_id: str, amount: Optional[Decimal] = None) -> TransactionResult:
        params = {}
        if amount is not None:
            params["amount_to_capture"] = to_minor_units(amount)
        intent = await self._call("capture", stripe.PaymentIntent.capture, intent=transaction_id, **params)
        succeeded = intent.get("status") == "succeeded"
        return TransactionResult(
            success=succeeded,
            status=PAID if succeeded else DECLINED,
            transaction_id=transaction_id,
            response_code=intent.get("status"),
        )

    async def release(self, transaction_id: str) -> TransactionResult:
        intent = await self._call("release", stripe.PaymentIntent.cancel, intent=transaction_id)
        return TransactionResult(
            success=intent.get("status") == "canceled",
            status=RELEASED,
            transaction_id=transaction_id,
            response_code=intent.get("status"),
        )

    async def void(self, transaction_id: str) -> TransactionResult:
        refund = await self._call("void", stripe.Refund.create, payment_intent=transaction_id)
        return TransactionResult(
            success=refund.get("status") in ("succeeded", "pending"),
            status=VOIDED,
            transaction_id=transaction_id,
            response_code=refund.get("status"),
        )

    async def create_customer(self, email, name=None, user_id=None) -> str:
        params = {"email": email}
        if name:
            params["name"] = name
        if user_id is not None:
            params["metadata"] = {"user_id": str(user_id)}
        customer = await self._call("create_customer", stripe.Customer.create, **params)
        return customer["id"]

    async def _create_payment_method(self, payment_method: PaymentMethod):
        card = {
            "number": payment_method.number,
            "exp_month": int(payment_method.exp_month),
            "exp_year": int(payment_method.exp_year),
        }
        if payment_method.cvv:
            card["cvc"] = payment_method.cvv
        params = {"type": "card", "card": card}
        if payment_method.card_holder_name:
            params["billing_details"] = {"name": payment_method.card_holder_name}
        return await self._call("tokenize", stripe.PaymentMethod.create, **params)

    async def tokenize(self, payment_method: PaymentMethod) -> TokenizeResult:
        """Creates a card PaymentMethod and attaches it to the payer's customer."""
        created = await self._create_payment_method(payment_method)
        if payment_method.customer:
            created = await self._call(
                "attach", stripe.PaymentMethod.attach, payment_method=created["id"], customer=payment_method.customer
            )
        details = created.get("card") or {}
        return TokenizeResult(
            token=created["id"],
            fingerprint=details.get("fingerprint"),
            brand=details.get("brand"),
            last4=details.get("last4"),
            exp_month=str(details["exp_month"]).zfill(2) if details.get("exp_month") else payment_method.exp_month,
            exp_year=str(details["exp_year"]) if details.get("exp_year") else payment_method.exp_year,
        )
