import hashlib
import secrets
import time
from decimal import Decimal
from typing import Optional

import httpx
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

PROVIDER = "global_payments"
API_VERSION = "2021-03-22"
SANDBOX_URL = "https://apis.sandbox.globalpay.com/ucp"
PRODUCTION_URL = "https://apis.globalpay.com/ucp"

# Renew the access token this many seconds before the provider expires it
TOKEN_EXPIRY_MARGIN = 60

_HINTS = {
    "50024": (
        " The merchant account is not configured to accept transactions; check that it is"
        " activated and that GP_TXN_ACCOUNT_NAME names a transaction processing account"
        " supporting this currency."
    ),
    "40213": " The reference must be alphanumeric and at most 50 characters.",
}


class GlobalPaymentsGateway(PaymentGateway):
    """Hold-based provider over GP-API: authorize now, capture or release later."""

    provider = PROVIDER
    holds_funds = True

    def __init__(
        self,
        client: httpx.AsyncClient,
        app_id: str,
        app_key: str,
        account_name: str = "",
        channel: str = "CNP",
        country: str = "GB",
        environment: str = "TEST",
        timeout: float = 20.0,
    ):
        self.client = client
        self.app_id = app_id
        self.app_key = app_key
        self.account_name = account_name
        self.channel = channel.upper()
        self.country = country
        self.base_url = PRODUCTION_URL if environment.upper() == "PRODUCTION" else SANDBOX_URL
        self.timeout = timeout
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    # --- transport ---

    async def _token(self) -> str:
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token
        if not self.app_id or not self.app_key:
            raise PaymentProviderError(PROVIDER, "Global Payments is not configured")

        nonce = secrets.token_hex(16)
        payload = {
            "app_id": self.app_id,
            "nonce": nonce,
            "secret": hashlib.sha512((nonce + self.app_key).encode()).hexdigest(),
            "grant_type": "client_credentials",
        }
        body = await self._send("access_token", "POST", "/accesstoken", payload, authenticated=False)
        self._access_token = body["token"]
        expires_in = int(body.get("seconds_to_expire", 3600))
        self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
        return self._access_token

    async def _send(self, operation: str, method: str, path: str, payload=None, authenticated=True) -> dict:
        headers = {"X-GP-Version": API_VERSION, "Content-Type": "application/json"}
        if authenticated:
            headers["Authorization"] = f"Bearer {await self._token()}"
        try:
            response = await self.client.request(
                method, f"{self.base_url}{path}", json=payload, headers=headers, timeout=self.timeout
            )
        except httpx.HTTPError as exc:
            phleb_payment_provider_errors_total.labels(provider=PROVIDER, operation=operation).inc()
            logger.warning("global_payments_unreachable", operation=operation, error=str(exc))
            raise PaymentProviderError(PROVIDER, "Global Payments is unavailable") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            phleb_payment_provider_errors_total.labels(provider=PROVIDER, operation=operation).inc()
            code = str(body.get("detailed_error_code") or body.get("error_code") or response.status_code)
            description = body.get("detailed_error_description") or body.get("error_code") or "request rejected"
            logger.warning(
                "global_payments_request_failed",
                operation=operation,
                status_code=response.status_code,
                code=code,
            )
            if response.status_code == 401 and authenticated:
                self._access_token = None
            raise PaymentProviderError(
                PROVIDER,
                f"Global Payments error: Status Code: {code} - {description}{_HINTS.get(code, '')}",
                code,
            )
        return body

    # --- payloads ---

    def _payment_method_payload(self, payment_method: PaymentMethod, store: bool) -> dict:
        if payment_method.is_token:
            payload = {"id": payment_method.token, "entry_mode": "ECOM"}
        else:
            card = {
                "number": payment_method.number,
                "expiry_month": payment_method.exp_month,
                "expiry_year": payment_method.exp_year[-2:],
            }
            if payment_method.cvv:
                card["cvv"] = payment_method.cvv
            payload = {"entry_mode": "ECOM", "card": card}
            if payment_method.card_holder_name:
                payload["name"] = payment_method.card_holder_name
        if store:
            payload["storage_mode"] = "ON_SUCCESS"
        return payload

    def _transaction_payload(self, amount, currency, reference, payment_method, request_token, capture_mode):
        payload = {
            "account_name": self.account_name,
            "type": "SALE",
            "channel": self.channel,
            "capture_mode": capture_mode,
            "amount": str(to_minor_units(amount)),
            "currency": currency.upper(),
            "country": self.country,
            "payment_method": self._payment_method_payload(payment_method, request_token),
        }
        if reference:
            payload["reference"] = reference
        return payload

    @staticmethod
    def _result(body: dict, status: str, transaction_id: Optional[str] = None) -> TransactionResult:
        method = body.get("payment_method") or {}
        code = method.get("result")
        success = code == "00" if code is not None else body.get("status") not in ("DECLINED", "FAILED")
        token = method.get("id")
        return TransactionResult(
            success=success,
            status=status if success else DECLINED,
            transaction_id=body.get("id") or transaction_id,
            authorization_code=(method.get("card") or {}).get("authcode"),
            response_code=code,
            response_message=method.get("message") or body.get("status"),
            token=token if token and token.startswith("PMT_") else None,
        )

    # --- operations ---

    async def authorize(self, amount, currency, reference, payment_method, request_token=False):
        payload = self._transaction_payload(amount, currency, reference, payment_method, request_token, "LATER")
        logger.info(
            "global_payments_authorize",
            amount=str(amount),
            currency=currency,
            has_token=payment_method.is_token,
            request_token=request_token,
        )
        return self._result(await self._send("authorize", "POST", "/transactions", payload), AUTHORIZED)

    async def charge(self, amount, currency, reference, payment_method, request_token=False):
        payload = self._transaction_payload(amount, currency, reference, payment_method, request_token, "AUTO")
        return self._result(await self._send("charge", "POST", "/transactions", payload), PAID)

    async def capture(self, transaction_id: str, amount: Optional[Decimal] = None) -> TransactionResult:
        payload = {"amount": str(to_minor_units(amount))} if amount is not None else {}
        body = await self._send("capture", "POST", f"/transactions/{transaction_id}/capture", payload)
        return self._result(body, PAID, transaction_id)

    async def release(self, transaction_id: str) -> TransactionResult:
        body = await self._send("release", "POST", f"/transactions/{transaction_id}/release", {})
        return self._result(body, RELEASED, transaction_id)

    async def void(self, transaction_id: str) -> TransactionResult:
        body = await self._send("void", "POST", f"/transactions/{transaction_id}/reversal", {})
        return self._result(body, VOIDED, transaction_id)

    async def tokenize(self, payment_method: PaymentMethod) -> TokenizeResult:
        payload = {
            "account_name": self.account_name,
            "usage_mode": "MULTIPLE",
            "card": self._payment_method_payload(payment_method, store=False)["card"],
        }
        body = await self._send("tokenize", "POST", "/payment-methods", payload)
        card = body.get("card") or {}
        last4 = (card.get("masked_number_last4") or "")[-4:] or payment_method.last4
        return TokenizeResult(
            token=body["id"],
            fingerprint=body.get("fingerprint"),
            brand=card.get("brand"),
            last4=last4,
            exp_month=card.get("expiry_month") or payment_method.exp_month,
            exp_year=card.get("expiry_year") or payment_method.exp_year,
        )
