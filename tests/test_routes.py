"""
Endpoint tests for the relay API (app/main.py and the routers under /api)
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from app.main import app
from conftest import ACQUIRING_PARTNER, CUSTOMER_TOKENS, PAYTRAIL, SUB_PARTNER

KLARNA_HEADERS = {"klarna-correlation-id": "corr-9"}
PAYMENT = {
    "stamp": "stamp_1",
    "reference": "ref_1",
    "amount": 1590,
    "currency": "EUR",
    "customer": {"email": "test@example.com"},
    "redirectUrls": {"success": "https://shop.example/ok", "cancel": "https://shop.example/cancel"},
}


@pytest.fixture
def client():
    return TestClient(app)


class TestHealthAndConfig:
    """Test health and SDK configuration endpoints"""

    def test_health(self, client, configure):
        configure(**SUB_PARTNER)

        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["authMode"] == "SUB_PARTNER"
        assert data["mtls"] is False
        assert "timestamp" in data

    def test_health_reports_unloadable_client_certificate(self, client, configure):
        configure(**SUB_PARTNER, MTLS_CERT="bm90IGEgY2VydA==", MTLS_KEY="bm90IGEga2V5")

        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["mtls"] is False
        assert response.json()["authMode"] == "SUB_PARTNER"

    def test_config(self, client, configure):
        configure(**SUB_PARTNER, **ACQUIRING_PARTNER, **CUSTOMER_TOKENS)

        response = client.get("/api/config")

        assert response.status_code == 200
        assert response.json()["defaultMode"] == "ACQUIRING_PARTNER"

    def test_config_without_credentials(self, client, configure):
        configure()

        response = client.get("/api/config")

        assert response.status_code == 500
        assert response.json()["status"] == "ERROR"


class TestPaymentEndpoints:
    """Test the Klarna payment endpoints"""

    def test_payment_request_created(self, client, configure, mock_http):
        configure(**SUB_PARTNER)
        mock_client = mock_http(httpx.Response(201, json={
            "state": "SUBMITTED",
            "state_context": {"customer_interaction": {"payment_request_id": "pr_1", "payment_request_url": "https://x"}},
        }, headers=KLARNA_HEADERS))

        response = client.post("/api/payment-request", json={
            "paymentRequestData": {"currency": "EUR", "amount": 15900, "intents": ["PAY"]},
            "paymentOptionId": "opt_1",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "CREATED"
        assert data["paymentRequestId"] == "pr_1"
        assert data["paymentRequestUrl"] == "https://x"
        assert data["_request"]["authMode"] == "SUB_PARTNER"
        assert data["_response"]["correlationId"] == "corr-9"

        body = mock_client.post.call_args.kwargs["json"]
        assert body["customer_interaction_config"]["return_url"] == "http://testserver/payment-complete"

    def test_payment_request_missing_data(self, client, configure, mock_http):
        configure(**SUB_PARTNER)
        mock_client = mock_http()

        response = client.post("/api/payment-request", json={"paymentOptionId": "opt_1"})

        assert response.status_code == 400
        assert response.json()["status"] == "ERROR"
        mock_client.post.assert_not_called()

    def test_malformed_body_is_400_with_details(self, client, configure):
        configure(**SUB_PARTNER)

        response = client.post("/api/payment-request", json={
            "paymentRequestData": {"currency": "EUR", "amount": "lots", "intents": ["PAY"]},
        })

        assert response.status_code == 400
        data = response.json()
        assert data["status"] == "ERROR"
        assert isinstance(data["details"], list)
        assert any("amount" in detail["field"] for detail in data["details"])

    def test_authorize_unexpected_result(self, client, configure, mock_http):
        configure(**ACQUIRING_PARTNER)
        mock_http(httpx.Response(200, json={"payment_transaction_response": {"result": "UNKNOWN"}}))

        response = client.post("/api/authorize-payment", json={
            "paymentRequestData": {"currency": "EUR", "amount": 100, "intents": ["PAY"]},
            "paymentOptionId": "opt_1",
        })

        assert response.status_code == 500
        assert response.json()["message"] == "Unexpected result: UNKNOWN"

    def test_authorize_declined(self, client, configure, mock_http):
        configure(**ACQUIRING_PARTNER)
        mock_http(httpx.Response(200, json={
            "payment_transaction_response": {"result": "DECLINED", "result_reason": "RISK"},
        }))

        response = client.post("/api/authorize-payment", json={
            "paymentRequestData": {"currency": "EUR", "amount": 100, "intents": ["PAY"]},
            "paymentOptionId": "opt_1",
        })

        assert response.status_code == 200
        assert response.json()["status"] == "DECLINED"
        assert response.json()["reason"] == "RISK"

    def test_vendor_timeout_is_504(self, client, configure, mock_http):
        configure(**SUB_PARTNER)
        mock_http(httpx.ConnectTimeout("timed out"))

        response = client.post("/api/identity/sdk-tokens", json={"country": "SE"})

        assert response.status_code == 504
        assert response.json()["status"] == "ERROR"

    def test_presentation_requires_currency(self, client, configure):
        configure(**SUB_PARTNER)

        response = client.get("/api/presentation")

        assert response.status_code == 400
        assert "currency" in response.json()["message"]


class TestTokenEndpoints:
    """Test token endpoints"""

    def test_interoperability_requires_acquiring_partner(self, client, configure, mock_http):
        configure(**SUB_PARTNER, **CUSTOMER_TOKENS)
        mock_client = mock_http()

        response = client.post("/api/interoperability/test-tokens", json={
            "customerJourney": "KLARNA_EXPRESS_CHECKOUT",
            "country": "SE",
        })

        assert response.status_code == 400
        assert "Acquiring Partners" in response.json()["message"]
        mock_client.post.assert_not_called()

    def test_checkout_session_interoperability(self, client, configure, mock_http):
        configure(**ACQUIRING_PARTNER, **CUSTOMER_TOKENS)
        mock_http(
            httpx.Response(201, json={"interoperability_token": "iop_1"}),
            httpx.Response(201, json={"sdk_token": "sdk_1", "expires_at": "2026-10-19T12:00:00Z"}),
        )

        response = client.post("/api/checkout-sessions", json={
            "flow": "interoperability",
            "country": "SE",
            "customerJourney": "KLARNA_EXPRESS_CHECKOUT",
        })

        assert response.status_code == 200
        assert response.json() == {
            "status": "OK",
            "flow": "INTEROPERABILITY",
            "authMode": "ACQUIRING_PARTNER",
            "sdkToken": "sdk_1",
            "expiresAt": "2026-10-19T12:00:00Z",
            "interoperabilityToken": "iop_1",
        }

    def test_checkout_session_invalid_flow(self, client, configure):
        configure(**SUB_PARTNER)

        response = client.post("/api/checkout-sessions", json={"flow": "EXPRESS"})

        assert response.status_code == 400


class TestPaytrailEndpoints:
    """Test Paytrail endpoints"""

    def test_payment_missing_fields(self, client, configure, mock_http):
        configure(**PAYTRAIL)
        mock_client = mock_http()

        response = client.post("/api/payments", json={"payment": {"stamp": "s", "amount": 100}})

        assert response.status_code == 400
        assert response.json()["details"]["missing"] == ["reference", "currency", "customer", "redirectUrls"]
        mock_client.post.assert_not_called()

    def test_payment_created(self, client, configure, mock_http):
        configure()
        mock_http(httpx.Response(201, json={"transactionId": "tx_1", "href": "https://pay.paytrail/tx_1", "providers": []}))

        response = client.post("/api/payments", json={"payment": PAYMENT, "merchantId": "375917", "secretKey": "k"})

        assert response.status_code == 201
        data = response.json()
        assert data["transactionId"] == "tx_1"
        assert data["redirect"] == {"method": "GET", "url": "https://pay.paytrail/tx_1", "parameters": []}

    def test_payment_without_credentials(self, client, configure):
        configure()

        response = client.post("/api/payments", json={"payment": PAYMENT})

        assert response.status_code == 500
        assert response.json()["message"] == "Paytrail credentials not configured"

    def test_klarna_charge_step_up(self, client, configure, mock_http):
        configure(**PAYTRAIL)
        mock_http(httpx.Response(403, json={"transactionId": "tx_2", "stepUpUrl": "https://klarna.example/s"}))

        response = client.post("/api/payments/klarna/charge", json={"payment": PAYMENT})

        assert response.status_code == 403
        assert response.json()["status"] == "STEP_UP_REQUIRED"
        assert response.json()["stepUpUrl"] == "https://klarna.example/s"

    def test_providers_without_configuration(self, client, configure):
        configure()

        response = client.get("/api/merchants/payment-providers")

        assert response.status_code == 500

    def test_grouped_providers(self, client, configure, mock_http):
        configure(**PAYTRAIL)
        mock_client = mock_http(httpx.Response(200, json={"groups": [{"id": "credit"}]}))

        response = client.get("/api/merchants/grouped-payment-providers?amount=1590&language=EN")

        assert response.status_code == 200
        assert response.json()["providers"] == {"groups": [{"id": "credit"}]}
        assert mock_client.get.call_args.kwargs["params"] == {"amount": 1590, "language": "EN"}
