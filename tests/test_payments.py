import json
from decimal import Decimal

import httpx
import pytest
import stripe

from services.availability_service.distance import (
    DistanceResolver,
    InvalidAddressError,
    NoRouteError,
    UpstreamUnavailableError,
)
from services.payment_service.gateway import PaymentMethod, sanitize_reference, to_minor_units
from services.payment_service.globalpay_gateway import GlobalPaymentsGateway
from services.payment_service.service import PaymentTokenVault
from services.payment_service.stripe_gateway import StripeGateway
from services.user_service.models import User
from shared.config.container import STRIPE
from shared.errors import NotFoundError, PaymentProviderError, ValidationError

from conftest import auth_headers


class TestReferenceAndAmounts:

    def test_reference_keeps_alphanumerics_only(self):
        assert sanitize_reference("#YRV-2405123456") == "YRV2405123456"

    def test_reference_is_truncated(self):
        assert len(sanitize_reference("A" * 80)) == 50

    def test_short_reference_is_dropped(self):
        assert sanitize_reference("#-1") is None

    def test_minor_units(self):
        assert to_minor_units(Decimal("95.00")) == 9500
        assert to_minor_units(Decimal("0.1")) == 10


class TestPaymentMethod:

    def test_card_is_normalized(self):
        card = PaymentMethod.card("4263 9700-0000 5262", "3", "27", " 123 ")
        assert card.number == "4263970000005262"
        assert card.exp_month == "03"
        assert card.exp_year == "2027"
        assert card.cvv == "123"
        assert card.last4 == "5262"

    def test_repr_hides_card_data(self):
        card = PaymentMethod.card("4263970000005262", "12", "2030", "999")
        assert "4263970000005262" not in repr(card)
        assert "999" not in repr(card)

    @pytest.mark.parametrize("month,year", [("13", "2030"), ("12", "203"), ("ab", "2030")])
    def test_bad_expiry(self, month, year):
        with pytest.raises(ValidationError):
            PaymentMethod.card("4263970000005262", month, year)

    def test_token_requires_value(self):
        with pytest.raises(ValidationError):
            PaymentMethod.from_token("  ")


def gp_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def gp_gateway(client):
    return GlobalPaymentsGateway(client, "app-id", "app-key", account_name="transaction_processing")


class TestGlobalPaymentsGateway:

    async def test_authorize_requests_a_hold(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path.endswith("/accesstoken"):
                return httpx.Response(200, json={"token": "access-1", "seconds_to_expire": 3600})
            return httpx.Response(
                200,
                json={
                    "id": "TRN_abc",
                    "status": "PREAUTHORIZED",
                    "payment_method": {"result": "00", "message": "SUCCESS", "card": {"authcode": "12345"}},
                },
            )

        async with gp_client(handler) as client:
            gateway = gp_gateway(client)
            card = PaymentMethod.card("4263970000005262", "12", "2030", "123")
            result = await gateway.authorize(Decimal("95.00"), "gbp", "YRV2405123456", card)
            await gateway.authorize(Decimal("10.00"), "gbp", "YRV2405123457", card)

        assert result.success
        assert result.status == "Authorized"
        assert result.transaction_id == "TRN_abc"
        assert result.authorization_code == "12345"

        # The access token is fetched once and reused
        assert [r.url.path for r in seen].count("/ucp/accesstoken") == 1
        transaction = seen[1]
        assert transaction.headers["Authorization"] == "Bearer access-1"
        assert transaction.headers["X-GP-Version"] == "2021-03-22"
        payload = json.loads(transaction.content)
        assert payload["capture_mode"] == "LATER"
        assert payload["amount"] == "9500"
        assert payload["currency"] == "GBP"
        assert payload["reference"] == "YRV2405123456"
        assert payload["payment_method"]["card"]["expiry_year"] == "30"

    async def test_provider_error_carries_code_and_hint(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/accesstoken"):
                return httpx.Response(200, json={"token": "access-1"})
            return httpx.Response(
                400,
                json={"error_code": "INVALID_REQUEST_DATA", "detailed_error_code": "40213",
                      "detailed_error_description": "reference contains unexpected data"},
            )

        async with gp_client(handler) as client:
            with pytest.raises(PaymentProviderError) as exc:
                await gp_gateway(client).authorize(
                    Decimal("5"), "GBP", "bad ref", PaymentMethod.from_token("PMT_1")
                )

        assert exc.value.code == "40213"
        assert exc.value.provider == "global_payments"
        assert "alphanumeric" in exc.value.message

    async def test_declined_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/accesstoken"):
                return httpx.Response(200, json={"token": "access-1"})
            return httpx.Response(
                200, json={"id": "TRN_d", "status": "DECLINED", "payment_method": {"result": "05", "message": "DECLINED"}}
            )

        async with gp_client(handler) as client:
            result = await gp_gateway(client).charge(Decimal("5"), "GBP", None, PaymentMethod.from_token("PMT_1"))

        assert not result.success
        assert result.status == "Declined"
        assert result.response_code == "05"

    async def test_release_posts_to_transaction(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if request.url.path.endswith("/accesstoken"):
                return httpx.Response(200, json={"token": "access-1"})
            return httpx.Response(200, json={"id": "TRN_abc", "status": "RELEASED"})

        async with gp_client(handler) as client:
            result = await gp_gateway(client).release("TRN_abc")

        assert result.success
        assert result.status == "Released"
        assert paths[-1] == "/ucp/transactions/TRN_abc/release"

    async def test_unconfigured_gateway(self):
        async with gp_client(lambda request: httpx.Response(500)) as client:
            gateway = GlobalPaymentsGateway(client, "", "")
            with pytest.raises(PaymentProviderError):
                await gateway.release("TRN_abc")


class TestStripeGateway:

    async def test_card_error_is_mapped(self, monkeypatch):
        def declined(**params):
            raise stripe.CardError("Your card was declined.", "number", "card_declined")

        monkeypatch.setattr(stripe.PaymentIntent, "create", declined)
        gateway = StripeGateway("sk_test_123")

        with pytest.raises(PaymentProviderError) as exc:
            await gateway.charge(Decimal("20"), "GBP", "YRV1", PaymentMethod.from_token("pm_card_visa"))

        assert exc.value.provider == "stripe"
        assert exc.value.code == "card_declined"

    async def test_charge_sends_minor_units_and_api_key(self, monkeypatch):
        captured = {}

        def create(**params):
            captured.update(params)
            return {"id": "pi_1", "status": "succeeded", "payment_method": "pm_1"}

        monkeypatch.setattr(stripe.PaymentIntent, "create", create)
        result = await StripeGateway("sk_test_123").charge(
            Decimal("20.50"), "GBP", "YRV1", PaymentMethod.from_token("pm_1"), request_token=True
        )

        assert result.status == "Paid"
        assert result.token == "pm_1"
        assert captured["amount"] == 2050
        assert captured["currency"] == "gbp"
        assert captured["capture_method"] == "automatic"
        assert captured["api_key"] == "sk_test_123"

    async def test_tokenize_attaches_card_to_customer(self, monkeypatch):
        attached = {}

        def create(**params):
            return {"id": "pm_new", "card": {"brand": "visa", "last4": "4242", "exp_month": 3, "exp_year": 2031}}

        def attach(**params):
            attached.update(params)
            return {"id": params["payment_method"], "customer": params["customer"], "card": {"last4": "4242"}}

        monkeypatch.setattr(stripe.PaymentMethod, "create", create)
        monkeypatch.setattr(stripe.PaymentMethod, "attach", attach)
        card = PaymentMethod.card("4242424242424242", "3", "2031")
        card.customer = "cus_42"

        result = await StripeGateway("sk_test_123").tokenize(card)

        assert result.token == "pm_new"
        assert result.last4 == "4242"
        assert attached == {"payment_method": "pm_new", "customer": "cus_42", "api_key": "sk_test_123"}

    async def test_save_card_charge_sets_up_future_usage(self, monkeypatch):
        captured = {}

        def create_method(**params):
            return {"id": "pm_once"}

        def create_intent(**params):
            captured.update(params)
            return {"id": "pi_1", "status": "succeeded", "payment_method": "pm_once"}

        monkeypatch.setattr(stripe.PaymentMethod, "create", create_method)
        monkeypatch.setattr(stripe.PaymentIntent, "create", create_intent)
        card = PaymentMethod.card("4242424242424242", "3", "2031", "123")
        card.customer = "cus_42"

        result = await StripeGateway("sk_test_123").charge(Decimal("10"), "GBP", "YRV1", card, request_token=True)

        assert result.token == "pm_once"
        assert captured["payment_method"] == "pm_once"
        assert captured["customer"] == "cus_42"
        assert captured["setup_future_usage"] == "off_session"

    async def test_saved_card_is_charged_with_its_customer(self, monkeypatch):
        captured = {}

        def create_intent(**params):
            captured.update(params)
            return {"id": "pi_2", "status": "succeeded"}

        monkeypatch.setattr(stripe.PaymentIntent, "create", create_intent)
        saved = PaymentMethod.from_token("pm_saved")
        saved.customer = "cus_42"

        await StripeGateway("sk_test_123").charge(Decimal("10"), "GBP", "YRV2", saved)

        assert captured["payment_method"] == "pm_saved"
        assert captured["customer"] == "cus_42"
        assert "setup_future_usage" not in captured

    async def test_customer_is_created_with_email(self, monkeypatch):
        captured = {}

        def create(**params):
            captured.update(params)
            return {"id": "cus_new"}

        monkeypatch.setattr(stripe.Customer, "create", create)

        customer_id = await StripeGateway("sk_test_123").create_customer("pat@example.test", "Pat Smith", 12)

        assert customer_id == "cus_new"
        assert captured == {
            "email": "pat@example.test",
            "name": "Pat Smith",
            "metadata": {"user_id": "12"},
            "api_key": "sk_test_123",
        }

    async def test_missing_key(self):
        with pytest.raises(PaymentProviderError):
            await StripeGateway("").void("pi_1")


class TestTokenVault:

    async def test_save_is_idempotent_per_user_and_token(self, db):
        async with db() as session:
            first = await PaymentTokenVault.save_or_update(session, 12, "PMT_1", "global_payments", last4="1111")
        async with db() as session:
            second = await PaymentTokenVault.save_or_update(session, 12, "PMT_1", "global_payments", brand="VISA")
        async with db() as session:
            tokens = await PaymentTokenVault.list_by_user(session, 12)

        assert first.id == second.id
        assert len(tokens) == 1
        assert (tokens[0].last4, tokens[0].brand) == ("1111", "VISA")

    async def test_tokens_are_scoped_to_owner(self, db):
        async with db() as session:
            saved = await PaymentTokenVault.save_or_update(session, 12, "PMT_2", "stripe")
        async with db() as session:
            with pytest.raises(NotFoundError):
                await PaymentTokenVault.get_by_id_for_user(session, saved.id, 13)
            with pytest.raises(NotFoundError):
                await PaymentTokenVault.delete_token(session, saved.id, 13)

    async def test_tokenize_list_and_delete_over_http(self, client, gateways):
        headers = auth_headers(12, "Customer")
        created = await client.post(
            "/payments/tokenize",
            json={"provider": "GlobalPayments", "payment_method": {"number": "4263970000005262", "expMonth": 1, "expYear": 2031}},
            headers=headers,
        )
        assert created.status_code == 200, created.text
        token = created.json()
        assert token["last4"] == "5262"
        assert "token" not in token

        listed = await client.get("/payments/tokens", headers=headers)
        assert [t["id"] for t in listed.json()] == [token["id"]]

        deleted = await client.delete(f"/payments/tokens/{token['id']}", headers=headers)
        assert deleted.json() == {"success": True}
        assert (await client.get("/payments/tokens", headers=headers)).json() == []

    async def test_stripe_card_is_saved_under_the_users_customer(self, client, db, people, gateways):
        headers = auth_headers(12, "Customer")
        body = {"provider": "Stripe", "payment_method": {"number": "4242424242424242", "expMonth": 3, "expYear": 2031}}

        first = await client.post("/payments/tokenize", json=body, headers=headers)
        second = await client.post("/payments/tokenize", json=body, headers=headers)

        assert first.status_code == 200, first.text
        assert second.json()["id"] == first.json()["id"]
        stripe_gateway = gateways[STRIPE]
        assert [call[1].customer for call in stripe_gateway.called("tokenize")] == ["cus_12", "cus_12"]
        assert stripe_gateway.called("create_customer") == [("create_customer", "pat@example.test", 12)]
        async with db() as session:
            account = await session.get(User, 12)
        assert account.stripe_customer_id == "cus_12"

    async def test_stripe_card_needs_a_known_user(self, client, gateways):
        response = await client.post(
            "/payments/tokenize",
            json={"provider": "Stripe", "payment_method": {"number": "4242424242424242", "expMonth": 3, "expYear": 2031}},
            headers=auth_headers(99, "Customer"),
        )
        assert response.status_code == 404
        assert gateways[STRIPE].calls == []

    async def test_unknown_provider_is_rejected(self, client):
        response = await client.post(
            "/payments/tokenize",
            json={"provider": "PayPal", "payment_method": {"token": "x"}},
            headers=auth_headers(12, "Customer"),
        )
        assert response.status_code == 422


def maps_resolver(payload=None, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["units"] == "imperial"
        return httpx.Response(status_code, json=payload or {})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DistanceResolver(client, "maps-key", "https://maps.test/distancematrix/json")


def element(status, meters=None):
    body = {"status": status}
    if meters is not None:
        body["distance"] = {"value": meters}
        body["duration"] = {"value": 900}
    return {"status": "OK", "rows": [{"elements": [body]}]}


class TestDistanceResolver:

    async def test_meters_are_converted_to_miles(self):
        estimate = await maps_resolver(element("OK", 16093.44)).resolve("53.5,-2.3", "M1 1AE")
        assert estimate.distance_miles == pytest.approx(10.0)
        assert estimate.duration_seconds == 900

    @pytest.mark.parametrize(
        "payload,error",
        [
            (element("NOT_FOUND"), InvalidAddressError),
            (element("ZERO_RESULTS"), NoRouteError),
            (element("MAX_ROUTE_LENGTH_EXCEEDED"), NoRouteError),
            ({"status": "INVALID_REQUEST"}, InvalidAddressError),
            ({"status": "OVER_QUERY_LIMIT"}, UpstreamUnavailableError),
            ({"status": "OK", "rows": []}, UpstreamUnavailableError),
        ],
    )
    async def test_status_mapping(self, payload, error):
        with pytest.raises(error):
            await maps_resolver(payload).resolve("53.5,-2.3", "M1 1AE")

    async def test_http_failure_is_upstream(self):
        with pytest.raises(UpstreamUnavailableError):
            await maps_resolver({}, status_code=503).resolve("53.5,-2.3", "M1 1AE")

    async def test_blank_destination(self):
        with pytest.raises(InvalidAddressError):
            await maps_resolver(element("OK", 100)).resolve("53.5,-2.3", "  ")

    async def test_missing_api_key(self):
        resolver = DistanceResolver(httpx.AsyncClient(), "", "https://maps.test")
        with pytest.raises(UpstreamUnavailableError):
            await resolver.resolve("53.5,-2.3", "M1 1AE")
