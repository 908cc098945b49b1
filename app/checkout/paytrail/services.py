import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from config import Settings, settings
from app.checkout.errors import ConfigurationError, MissingFieldsError, VendorError
from app.checkout.schemas import ErrorOutcome, RelayResult
from .schemas import (
    ExpressApproved,
    ExpressStepUpRequired,
    FormParameter,
    PaymentCreated,
    PaytrailPaymentRequestSchema,
    ProvidersFetched,
    RedirectInstruction,
)
from .signature import sign, verify_signature

logger = logging.getLogger(__name__)

KLARNA_CHARGE_PATH = "/payments/klarna/charge"
KLARNA_AUTHORIZATION_HOLD_PATH = "/payments/klarna/authorization-hold"


def _is_klarna_provider(provider: Dict[str, Any]) -> bool:
    return (
        str(provider.get("id") or "").lower() == "klarna"
        or str(provider.get("name") or "").lower() == "klarna"
        or "klarna" in str(provider.get("url") or "")
    )


def _passthrough(data: Dict[str, Any]) -> Dict[str, Any]:
    """Vendor fields for an outcome; Paytrail's own status must not replace the outcome tag"""
    fields = dict(data)
    if "status" in fields:
        fields["paytrailStatus"] = fields.pop("status")
    return fields


def _form_redirect(provider: Dict[str, Any]) -> RedirectInstruction:
    parameters = [
        FormParameter(name=param.get("name", ""), value=str(param.get("value") or ""))
        for param in provider.get("parameters") or []
    ]
    return RedirectInstruction(method="POST", url=provider["url"], parameters=parameters, provider=provider.get("id"))


def select_redirect(data: Dict[str, Any], hosted_page: bool = False) -> Optional[RedirectInstruction]:
    """
    Choose where to send the customer after a payment is created.

    The Klarna provider wins (form POST with its parameters), then the first
    provider that carries parameters, then a GET to the hosted page ``href``.
    ``hosted_page`` skips the providers and always uses ``href``.
    """
    href = data.get("href")
    providers = data.get("providers") or []
    if hosted_page:
        return RedirectInstruction(method="GET", url=href) if href else None

    klarna = next((p for p in providers if _is_klarna_provider(p)), None)
    if klarna and klarna.get("url"):
        return _form_redirect(klarna)

    if href:
        first = next((p for p in providers if p.get("url") and p.get("parameters")), None)
        if first:
            return _form_redirect(first)
        return RedirectInstruction(method="GET", url=href)
    return None


class PaytrailService:
    """Signed relay to the Paytrail payment API"""

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or settings
        self.api_base = self.config.PAYTRAIL_API_URL.rstrip("/")

    def resolve_credentials(self, merchant_id: Optional[str] = None, secret_key: Optional[str] = None) -> Tuple[str, str]:
        """Per-request credentials first, then the configured merchant"""
        merchant_id = (merchant_id or "").strip()
        secret_key = (secret_key or "").strip()
        if merchant_id and secret_key:
            return merchant_id, secret_key
        if self.config.has_paytrail_config():
            return self.config.PAYTRAIL_MERCHANT_ID, self.config.PAYTRAIL_SECRET_KEY
        raise ConfigurationError(
            "Paytrail credentials not configured",
            details="Provide merchantId and secretKey, or set PAYTRAIL_MERCHANT_ID and PAYTRAIL_SECRET_KEY",
        )

    async def _send(
        self,
        method: str,
        path: str,
        merchant_id: str,
        secret_key: str,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Tuple[httpx.Response, Any, Dict[str, Any]]:
        body = json.dumps(payload, separators=(",", ":")) if payload is not None else ""
        signed = sign(method, merchant_id, secret_key, body)
        url = f"{self.api_base}{path}"
        request_meta = {"url": url, "method": method, "merchantId": merchant_id}
        if params:
            request_meta["queryParams"] = params
        if payload is not None:
            request_meta["requestBody"] = payload

        logger.info(f"Making {method} request to: {url}")
        if self.config.DEBUG and payload is not None:
            logger.debug(f"Paytrail request body: {signed.body}")

        try:
            async with httpx.AsyncClient(timeout=self.config.HTTP_TIMEOUT) as client:
                if method == "GET":
                    response = await client.get(url, headers=signed.http_headers(), params=params)
                else:
                    # send exactly the bytes that were signed
                    response = await client.post(url, headers=signed.http_headers(), content=signed.body.encode("utf-8"))
        except httpx.TimeoutException as e:
            logger.error(f"Paytrail request timed out: {method} {url}")
            raise VendorError(504, f"Paytrail API timed out: {str(e)}")
        except httpx.HTTPError as e:
            logger.error(f"Paytrail request failed: {method} {url}: {str(e)}")
            raise VendorError(502, f"Paytrail API unreachable: {str(e)}")

        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text}

        logger.info(f"Paytrail response status: {response.status_code}")
        if self.config.DEBUG:
            logger.debug(f"Paytrail response body: {data}")

        response_meta = {
            "statusCode": response.status_code,
            "requestId": response.headers.get("request-id"),
            "responseBody": data,
        }
        response_signature = response.headers.get("signature")
        if response_signature:
            response_meta["signatureValid"] = verify_signature(
                secret_key, response.headers, response.text, response_signature
            )
        return response, data, {"request": request_meta, "response": response_meta}

    @staticmethod
    def _error_message(response: httpx.Response, data: Any) -> str:
        message = data.get("message") if isinstance(data, dict) else None
        return message or f"Paytrail API error: {response.reason_phrase}"

    def _error_result(self, response: httpx.Response, data: Any, meta: Dict[str, Any]) -> RelayResult:
        message = self._error_message(response, data)
        logger.error(f"Paytrail API error ({response.status_code}): {message}")
        return RelayResult(
            outcome=ErrorOutcome(message=message, details=data),
            http_status=response.status_code,
            request=meta["request"],
            response=meta["response"],
        )

    def _validated(self, request: PaytrailPaymentRequestSchema) -> Tuple[str, str]:
        merchant_id, secret_key = self.resolve_credentials(request.merchant_id, request.secret_key)
        missing = request.missing_fields()
        if missing:
            raise MissingFieldsError(missing)
        return merchant_id, secret_key

    async def create_payment(self, request: PaytrailPaymentRequestSchema, hosted_page: bool = False) -> RelayResult:
        """
        Create a Paytrail payment and pick the customer redirect.
        """
        merchant_id, secret_key = self._validated(request)
        payment = request.payment

        logger.info("Creating payment with Paytrail API...")
        logger.info(f"Reference: {payment.get('reference')}, Stamp: {payment.get('stamp')}")
        network_session_token = ((payment.get("providerDetails") or {}).get("klarna") or {}).get("networkSessionToken")
        logger.info(f"Klarna Network Session Token: {'included' if network_session_token else 'not included'}")

        response, data, meta = await self._send("POST", "/payments", merchant_id, secret_key, payment)
        if not response.is_success or not isinstance(data, dict):
            return self._error_result(response, data, meta)

        logger.info(f"Payment created, transactionId: {data.get('transactionId')}")
        outcome = PaymentCreated.model_validate({**_passthrough(data), "redirect": select_redirect(data, hosted_page)})
        return RelayResult(outcome=outcome, http_status=201, request=meta["request"], response=meta["response"])

    async def _express(self, path: str, request: PaytrailPaymentRequestSchema) -> RelayResult:
        merchant_id, secret_key = self._validated(request)
        response, data, meta = await self._send("POST", path, merchant_id, secret_key, request.payment)
        data_dict = data if isinstance(data, dict) else {}

        if response.status_code in (200, 201) and data_dict.get("transactionId"):
            logger.info(f"Klarna express payment approved, transactionId: {data_dict['transactionId']}")
            outcome = ExpressApproved.model_validate(_passthrough(data_dict))
            return RelayResult(outcome=outcome, http_status=201, request=meta["request"], response=meta["response"])

        if response.status_code == 403 and data_dict.get("stepUpUrl"):
            logger.info("Step-up required for Klarna express payment")
            outcome = ExpressStepUpRequired.model_validate(_passthrough(data_dict))
            return RelayResult(outcome=outcome, http_status=403, request=meta["request"], response=meta["response"])

        if response.is_success:
            # 2xx without a transaction id is not something the storefront can act on
            logger.error(f"Unexpected Paytrail response ({response.status_code}): no transactionId")
            return RelayResult(
                outcome=ErrorOutcome(message="Paytrail response did not contain a transactionId", details=data),
                http_status=502,
                request=meta["request"],
                response=meta["response"],
            )
        return self._error_result(response, data, meta)

    async def klarna_charge(self, request: PaytrailPaymentRequestSchema) -> RelayResult:
        """Charge immediately with a Klarna network session token"""
        logger.info("Calling Paytrail Klarna charge...")
        return await self._express(KLARNA_CHARGE_PATH, request)

    async def klarna_authorization_hold(self, request: PaytrailPaymentRequestSchema) -> RelayResult:
        """Place an authorization hold with a Klarna network session token"""
        logger.info("Calling Paytrail Klarna authorization hold...")
        return await self._express(KLARNA_AUTHORIZATION_HOLD_PATH, request)

    async def list_payment_providers(
        self,
        grouped: bool = False,
        amount: Optional[int] = None,
        groups: Optional[List[str]] = None,
        language: Optional[str] = None,
    ) -> RelayResult:
        """Payment providers for the configured merchant"""
        if not self.config.has_paytrail_config():
            raise ConfigurationError(
                "Paytrail credentials not configured",
                details="Please set PAYTRAIL_MERCHANT_ID and PAYTRAIL_SECRET_KEY environment variables",
            )
        path = "/merchants/grouped-payment-providers" if grouped else "/merchants/payment-providers"
        params: Dict[str, Any] = {}
        if amount is not None:
            params["amount"] = amount
        if groups:
            params["groups"] = ",".join(groups)
        if language:
            params["language"] = language

        logger.info(f"Fetching {'grouped ' if grouped else ''}payment providers from Paytrail API...")
        response, data, meta = await self._send(
            "GET",
            path,
            self.config.PAYTRAIL_MERCHANT_ID,
            self.config.PAYTRAIL_SECRET_KEY,
            params=params or None,
        )
        if not response.is_success:
            return self._error_result(response, data, meta)
        return RelayResult(
            outcome=ProvidersFetched(providers=data),
            request=meta["request"],
            response=meta["response"],
        )
