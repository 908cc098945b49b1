import os
import ssl
import base64
import logging
import tempfile
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple

import httpx

from config import Settings, settings
from app.checkout.errors import ConfigurationError, MissingFieldError, ValidationError, VendorError
from app.checkout.schemas import ErrorOutcome, RelayResult
from .credentials import CredentialResolver
from .schemas import (
    Approved,
    AuthConfig,
    AuthorizePaymentRequestSchema,
    Completed,
    Created,
    CustomerJourney,
    Declined,
    PaymentRequestSchema,
    PresentationFetched,
    StepUpRequired,
    TokenIssued,
)
from .tokens import CheckoutFlow, CheckoutSession, SingleUseToken
from .transformer import build_authorize_body, build_payment_request_body, presentation_query_params

logger = logging.getLogger(__name__)

DEFAULT_SUCCESS_URL = "/payment-complete"
CUSTOMER_REGION = "krn:test:us1:test"
_NO_BODY = object()


@lru_cache(maxsize=4)
def _mtls_context(cert_b64: str, key_b64: str) -> Optional[ssl.SSLContext]:
    """Build an SSL context from base64 PEM material; None if it cannot be loaded"""
    try:
        cert_pem = base64.b64decode(cert_b64)
        key_pem = base64.b64decode(key_b64)
        context = ssl.create_default_context()
        # the PEM files only live until the chain is loaded into the context
        with tempfile.TemporaryDirectory(prefix="klarna-mtls-") as directory:
            cert_path = os.path.join(directory, "client.crt")
            key_path = os.path.join(directory, "client.key")
            with open(cert_path, "wb") as cert_file:
                cert_file.write(cert_pem)
            with os.fdopen(os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600), "wb") as key_file:
                key_file.write(key_pem)
            context.load_cert_chain(cert_path, key_path)
        logger.info("Created mTLS-enabled SSL context")
        return context
    except (ValueError, OSError) as e:
        logger.error(f"Failed to load mTLS credentials: {str(e)}")
        return None


def mtls_context(config: Settings) -> Optional[ssl.SSLContext]:
    """Client certificate context for Klarna calls, None when mTLS is off or unusable"""
    if not config.has_mtls_config():
        return None
    return _mtls_context(config.MTLS_CERT, config.MTLS_KEY)


def _read_json(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"raw": response.text}
    return data if isinstance(data, dict) else {"data": data}


def _dig(data: Optional[Dict[str, Any]], *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


class KlarnaService:
    """
    Relay between the storefront and the Klarna Network APIs.

    Each public method performs at most two sequential Klarna calls and
    returns a RelayResult carrying exactly one outcome plus audit metadata.
    Validation and configuration problems raise before any network call.
    """

    def __init__(self, config: Optional[Settings] = None, resolver: Optional[CredentialResolver] = None):
        self.config = config or settings
        self.resolver = resolver or CredentialResolver(self.config)
        self.api_base = self.config.KLARNA_API_BASE_URL.rstrip("/")

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _verify(self):
        return mtls_context(self.config) or True

    async def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Any = _NO_BODY,
    ) -> Tuple[httpx.Response, Dict[str, Any]]:
        if self.config.DEBUG and body is not _NO_BODY:
            logger.debug(f"Klarna request body: {body}")
        try:
            async with httpx.AsyncClient(timeout=self.config.HTTP_TIMEOUT, verify=self._verify()) as client:
                if method == "GET":
                    response = await client.get(url, headers=headers)
                elif body is _NO_BODY:
                    response = await client.post(url, headers=headers)
                else:
                    response = await client.post(url, headers=headers, json=body)
        except httpx.TimeoutException as e:
            logger.error(f"Klarna request timed out: {method} {url}")
            raise VendorError(504, f"Klarna API timed out: {str(e)}")
        except httpx.HTTPError as e:
            logger.error(f"Klarna request failed: {method} {url}: {str(e)}")
            raise VendorError(502, f"Klarna API unreachable: {str(e)}")

        data = _read_json(response)
        logger.info(f"Klarna response status: {response.status_code}")
        logger.info(f"Klarna Correlation ID: {response.headers.get('klarna-correlation-id')}")
        if self.config.DEBUG:
            logger.debug(f"Klarna response body: {data}")
        return response, data

    @staticmethod
    def _headers(auth: AuthConfig, json_body: bool = True) -> Dict[str, str]:
        headers = {"Authorization": f"Basic {auth.api_key}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _url(self, auth: AuthConfig, path: str, account_id: Optional[str] = None) -> str:
        """Acquiring Partners use account-scoped paths, Sub Partners the plain ones"""
        if auth.is_acquiring_partner:
            return f"{self.api_base}/v2/accounts/{account_id or auth.partner_account_id}{path}"
        return f"{self.api_base}/v2{path}"

    @staticmethod
    def _request_meta(url: str, auth: AuthConfig, method: str, **extra: Any) -> Dict[str, Any]:
        return {"url": url, "authMode": auth.mode.value, "method": method, **extra}

    @staticmethod
    def _response_meta(response: httpx.Response, data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "statusCode": response.status_code,
            "correlationId": response.headers.get("klarna-correlation-id"),
            "mtlsVerificationStatus": response.headers.get("klarna-mtls-verification-status"),
            "responseBody": data,
        }

    @staticmethod
    def _is_success(response: httpx.Response) -> bool:
        return 200 <= response.status_code < 300

    @staticmethod
    def _error_result(
        response: httpx.Response,
        data: Dict[str, Any],
        default_message: str,
        request_meta: Dict[str, Any],
        response_meta: Dict[str, Any],
    ) -> RelayResult:
        message = data.get("error_message") or default_message
        logger.error(f"Klarna API error ({response.status_code}): {message}")
        return RelayResult(
            outcome=ErrorOutcome(message=message, details=data),
            http_status=response.status_code,
            request=request_meta,
            response=response_meta,
        )

    def _require_acquiring_partner(self, auth: AuthConfig) -> None:
        if not auth.is_acquiring_partner:
            raise ValidationError("Interoperability flows are only available for Acquiring Partners")
        if not auth.partner_account_id:
            raise ConfigurationError(
                "Server configuration error: PARTNER_ACCOUNT_ID not set (required for interoperability)"
            )

    # ------------------------------------------------------------------
    # Configuration exposed to the Web SDK
    # ------------------------------------------------------------------

    def get_sdk_config(self) -> Dict[str, Any]:
        """Client ids per configured mode plus customer token availability"""
        modes = self.resolver.available_modes()
        if not modes:
            raise ConfigurationError(
                "No authentication modes configured. Please set either "
                "AP_CLIENT_ID/AP_API_KEY/PARTNER_ACCOUNT_ID for Acquiring Partner mode, "
                "or SP_CLIENT_ID/SP_API_KEY for Sub Partner mode."
            )
        available = []
        for auth in modes:
            entry = {"mode": auth.mode.value, "clientId": auth.client_id}
            if auth.partner_account_id:
                entry["partnerAccountId"] = auth.partner_account_id
            available.append(entry)

        default = available[0]
        countries = self.resolver.customer_token_countries()
        config = {
            "availableModes": available,
            "defaultMode": default["mode"],
            "clientId": default["clientId"],
            "authMode": default["mode"],
            "mtlsEnabled": mtls_context(self.config) is not None,
            "customerTokenConfigured": bool(countries),
            "customerTokenCountries": countries,
        }
        if default.get("partnerAccountId"):
            config["partnerAccountId"] = default["partnerAccountId"]
        return config

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    async def create_identity_sdk_token(self, country: Optional[str] = None, auth_mode: Optional[str] = None) -> RelayResult:
        """Identity SDK token for tokenized payments"""
        auth = self.resolver.resolve(auth_mode)
        customer_token = self.resolver.customer_token_for(country)
        url = self._url(auth, "/identity/sdk-tokens")

        headers = self._headers(auth)
        if customer_token:
            headers["Klarna-Customer-Token"] = customer_token

        logger.info("Calling Klarna Identity SDK Token API...")
        logger.info(f"Auth Mode: {auth.mode.value}")
        logger.info(f"Request URL: {url}")
        logger.info(f"Country: {country or 'not specified'}")
        logger.info(f"Customer Token: {'found for country' if customer_token else 'not configured for country'}")

        response, data = await self._send("POST", url, headers, {})
        request_meta = self._request_meta(url, auth, "POST", klarnaCustomerToken=customer_token, requestBody={})
        response_meta = self._response_meta(response, data)

        if not self._is_success(response):
            return self._error_result(response, data, "SDK token generation failed", request_meta, response_meta)

        return RelayResult(
            outcome=TokenIssued(sdk_token=data.get("sdk_token"), expires_at=data.get("expires_at")),
            request=request_meta,
            response=response_meta,
        )

    async def create_interoperability_test_token(
        self,
        customer_journey: Optional[str],
        country: Optional[str] = None,
        auth_mode: Optional[str] = None,
    ) -> RelayResult:
        """Interoperability test token (Acquiring Partners only)"""
        auth = self.resolver.resolve(auth_mode)
        self._require_acquiring_partner(auth)

        if not customer_journey:
            raise MissingFieldError("customerJourney")
        try:
            journey = CustomerJourney(customer_journey)
        except ValueError:
            valid = ", ".join(j.value for j in CustomerJourney)
            raise ValidationError(f"Invalid customerJourney. Must be one of: {valid}")

        customer_token = self.resolver.customer_token_for(country)
        if not customer_token:
            raise ValidationError(f"No customer token configured for country: {country}")

        url = self._url(auth, "/interoperability/test-tokens")
        request_body = {"customer_journey": journey.value}
        headers = self._headers(auth)
        headers["Klarna-Customer-Token"] = customer_token
        headers["Klarna-Customer-Region"] = CUSTOMER_REGION

        logger.info("Calling Klarna Interoperability Test Tokens API...")
        logger.info(f"Request URL: {url}")
        logger.info(f"Customer Journey: {journey.value}, Country: {country}")

        response, data = await self._send("POST", url, headers, request_body)
        request_meta = self._request_meta(
            url, auth, "POST", klarnaCustomerToken=customer_token, requestBody=request_body
        )
        response_meta = self._response_meta(response, data)

        if not self._is_success(response):
            return self._error_result(
                response, data, "Interoperability test token generation failed", request_meta, response_meta
            )

        return RelayResult(
            outcome=TokenIssued(interoperability_token=data.get("interoperability_token")),
            request=request_meta,
            response=response_meta,
        )

    async def create_interoperability_sdk_token(
        self,
        interoperability_token: Optional[str],
        auth_mode: Optional[str] = None,
    ) -> RelayResult:
        """Exchange an interoperability token for an SDK token (Acquiring Partners only)"""
        auth = self.resolver.resolve(auth_mode)
        self._require_acquiring_partner(auth)
        if not interoperability_token:
            raise MissingFieldError("interoperabilityToken")

        url = self._url(auth, "/interoperability/sdk-tokens")
        headers = self._headers(auth)
        headers["Klarna-Interoperability-Token"] = interoperability_token

        logger.info("Calling Klarna Interoperability SDK Tokens API...")
        logger.info(f"Request URL: {url}")

        # this endpoint takes no request body
        response, data = await self._send("POST", url, headers)
        request_meta = self._request_meta(
            url, auth, "POST", klarnaInteroperabilityToken=interoperability_token, requestBody={}
        )
        response_meta = self._response_meta(response, data)

        if not self._is_success(response):
            return self._error_result(
                response, data, "Interoperability SDK token generation failed", request_meta, response_meta
            )

        return RelayResult(
            outcome=TokenIssued(sdk_token=data.get("sdk_token"), expires_at=data.get("expires_at")),
            request=request_meta,
            response=response_meta,
        )

    async def prepare_checkout_session(self, session: CheckoutSession) -> CheckoutSession:
        """
        Run the token exchanges the session's flow needs before SDK initialization.

        TOKENIZED fetches an identity SDK token; INTEROPERABILITY fetches a test
        token and exchanges it for an SDK token. Any vendor failure raises
        VendorError with the failing call's metadata.
        """
        session.discard()
        if session.flow == CheckoutFlow.TOKENIZED:
            result = await self.create_identity_sdk_token(session.country, session.auth_mode)
            self._raise_for_error(result)
            session.sdk_token = SingleUseToken(result.outcome.sdk_token, "sdkToken")
            session.sdk_token_expires_at = result.outcome.expires_at

        elif session.flow == CheckoutFlow.INTEROPERABILITY:
            test_token = await self.create_interoperability_test_token(
                session.customer_journey, session.country, session.auth_mode
            )
            self._raise_for_error(test_token)
            interoperability_token = test_token.outcome.interoperability_token

            result = await self.create_interoperability_sdk_token(interoperability_token, session.auth_mode)
            self._raise_for_error(result)
            session.interoperability_token = SingleUseToken(interoperability_token, "interoperabilityToken")
            session.sdk_token = SingleUseToken(result.outcome.sdk_token, "sdkToken")
            session.sdk_token_expires_at = result.outcome.expires_at

        return session

    @staticmethod
    def _raise_for_error(result: RelayResult) -> None:
        if result.is_error:
            raise VendorError(
                result.http_status,
                result.outcome.message,
                details=result.outcome.details,
                request_meta=result.request,
                response_meta=result.response,
            )
        token = getattr(result.outcome, "sdk_token", None) or getattr(result.outcome, "interoperability_token", None)
        if not token:
            raise VendorError(502, "Klarna response did not contain a token", details=result.response)

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    async def get_presentation(
        self,
        currency: Optional[str],
        locale: Optional[str] = None,
        amount: Optional[int] = None,
        intents: Optional[str] = None,
        subscription_billing_interval: Optional[str] = None,
        subscription_billing_interval_frequency: Optional[int] = None,
        include_customer_token: bool = False,
        country: Optional[str] = None,
        interoperability_token: Optional[str] = None,
        auth_mode: Optional[str] = None,
    ) -> RelayResult:
        """Payment presentation for a currency/locale/intent combination"""
        if not currency:
            raise MissingFieldError("currency", "Missing required query parameter: currency")
        auth = self.resolver.resolve(auth_mode)

        params = presentation_query_params(
            currency,
            locale=locale,
            amount=amount,
            intents=intents,
            subscription_billing_interval=subscription_billing_interval,
            subscription_billing_interval_frequency=subscription_billing_interval_frequency,
        )
        url = str(httpx.URL(self._url(auth, "/payment/presentation"), params=params))

        headers = self._headers(auth, json_body=False)
        customer_token = self.resolver.customer_token_for(country) if include_customer_token else None
        if customer_token:
            headers["Klarna-Customer-Token"] = customer_token
        if interoperability_token:
            headers["Klarna-Interoperability-Token"] = interoperability_token

        logger.info("Calling Klarna Payment Presentation API (GET)...")
        logger.info(f"Auth Mode: {auth.mode.value}")
        logger.info(f"Request URL: {url}")
        logger.info(f"Interoperability Token: {'included' if interoperability_token else 'not included'}")

        response, data = await self._send("GET", url, headers)
        request_meta = self._request_meta(
            url,
            auth,
            "GET",
            queryParams=dict(params),
            klarnaCustomerToken=customer_token,
            klarnaInteroperabilityToken=interoperability_token,
        )
        response_meta = self._response_meta(response, data)

        if not self._is_success(response):
            return self._error_result(response, data, "Presentation API failed", request_meta, response_meta)

        return RelayResult(
            outcome=PresentationFetched(presentation=data),
            request=request_meta,
            response=response_meta,
        )

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def _payment_headers(
        self,
        auth: AuthConfig,
        request: PaymentRequestSchema,
        interoperability_token: Optional[str] = None,
    ) -> Tuple[Dict[str, str], Optional[str]]:
        headers = self._headers(auth)
        if request.klarna_network_session_token:
            headers["Klarna-Network-Session-Token"] = request.klarna_network_session_token
        customer_token = self.resolver.customer_token_for(request.country) if request.include_customer_token else None
        if customer_token:
            headers["Klarna-Customer-Token"] = customer_token
        if interoperability_token:
            headers["Klarna-Interoperability-Token"] = interoperability_token
        return headers, customer_token

    async def create_payment_request(self, request: PaymentRequestSchema, default_return_url: str) -> RelayResult:
        """
        Create a payment request (Sub Partner flow).

        Returns CREATED with the hosted payment request URL, COMPLETED when
        Klarna finished the payment straight away (tokenized payments), or
        ERROR carrying Klarna's status code.
        """
        auth = self.resolver.resolve(request.auth_mode)
        data = request.payment_request_data
        if data is None:
            raise MissingFieldError("paymentRequestData", "Missing required field: paymentRequestData is required")

        payment_option_id = request.payment_option_id or data.payment_option_id
        # no default is invented for the payment option; the caller must supply one
        if not payment_option_id:
            raise MissingFieldError(
                "paymentOptionId",
                "Missing paymentOptionId: provide it directly or include it in paymentRequestData",
            )

        return_url = request.return_url or default_return_url
        body = build_payment_request_body(data, payment_option_id, return_url, request.app_return_url)
        url = f"{self.api_base}/v2/payment/requests"
        headers, customer_token = self._payment_headers(auth, request)

        logger.info("Calling Klarna Payment Request API...")
        logger.info(f"Auth Mode: {auth.mode.value}")
        logger.info(
            "Intent: " + ("ADD_TO_WALLET only (no amount)" if data.is_wallet_only
                          else (", ".join(i.value for i in data.intents) or "not specified"))
        )
        logger.info(f"Request URL: {url}")

        response, response_data = await self._send("POST", url, headers, body)
        request_meta = self._request_meta(
            url,
            auth,
            "POST",
            klarnaNetworkSessionToken=request.klarna_network_session_token,
            klarnaCustomerToken=customer_token,
            requestBody=body,
        )
        response_meta = self._response_meta(response, response_data)

        if not self._is_success(response):
            return self._error_result(
                response, response_data, "Payment request creation failed", request_meta, response_meta
            )

        state = response_data.get("state")
        logger.info(f"Payment Request State: {state}")

        if state == "COMPLETED":
            success_url = (
                _dig(response_data, "customer_interaction_config", "return_url")
                or request.return_url
                or DEFAULT_SUCCESS_URL
            )
            outcome = Completed(
                payment_request_id=response_data.get("payment_request_id"),
                success_url=success_url,
                expires_at=response_data.get("expires_at"),
            )
        else:
            interaction = _dig(response_data, "state_context", "customer_interaction")
            outcome = Created(
                payment_request_id=_dig(interaction, "payment_request_id"),
                payment_request_url=_dig(interaction, "payment_request_url"),
                expires_at=response_data.get("expires_at"),
            )
        return RelayResult(outcome=outcome, request=request_meta, response=response_meta)

    async def authorize_payment(self, request: AuthorizePaymentRequestSchema, default_return_url: str) -> RelayResult:
        """
        Authorize a payment or a wallet link.

        Wallet-only flows are judged on customer_token_response, everything
        else on payment_transaction_response.
        """
        auth = self.resolver.resolve(request.auth_mode)
        data = request.payment_request_data
        if data is None:
            raise MissingFieldError("paymentRequestData", "Missing required field: paymentRequestData is required")

        wallet_only = data.is_wallet_only
        payment_option_id = request.payment_option_id or data.payment_option_id
        # only a payment transaction needs a payment option
        if not wallet_only and not payment_option_id:
            raise MissingFieldError(
                "paymentOptionId",
                "Missing paymentOptionId: provide it directly or include it in paymentRequestData",
            )

        account_id = request.partner_account_id or auth.partner_account_id
        if auth.is_acquiring_partner and not account_id:
            raise ValidationError(
                "Partner Account ID is required for Acquiring Partner mode. "
                "Set PARTNER_ACCOUNT_ID env var or provide in request."
            )

        return_url = request.return_url or default_return_url
        body = build_authorize_body(data, payment_option_id, return_url, request.app_return_url)
        url = self._url(auth, "/payment/authorize", account_id=account_id)
        headers, customer_token = self._payment_headers(auth, request, request.interoperability_token)

        logger.info("Calling Klarna Payment Authorize API...")
        logger.info(f"Auth Mode: {auth.mode.value}")
        logger.info(
            "Intent: " + ("ADD_TO_WALLET only (no payment transaction)" if wallet_only
                          else (", ".join(i.value for i in data.intents) or "not specified"))
        )
        logger.info(f"Request URL: {url}")

        response, response_data = await self._send("POST", url, headers, body)
        request_meta = self._request_meta(
            url,
            auth,
            "POST",
            klarnaNetworkSessionToken=request.klarna_network_session_token,
            klarnaCustomerToken=customer_token,
            klarnaInteroperabilityToken=request.interoperability_token,
            requestBody=body,
        )
        response_meta = self._response_meta(response, response_data)

        if not self._is_success(response):
            return self._error_result(
                response, response_data, "Payment authorization failed", request_meta, response_meta
            )

        result_block = "customer_token_response" if wallet_only else "payment_transaction_response"
        result = _dig(response_data, result_block, "result")
        logger.info(f"Authorization result: {result}")
        success_url = request.return_url or DEFAULT_SUCCESS_URL

        if result == "STEP_UP_REQUIRED":
            interaction = _dig(response_data, "payment_request", "state_context", "customer_interaction")
            outcome = StepUpRequired(
                payment_request_id=_dig(interaction, "payment_request_id"),
                payment_request_url=_dig(interaction, "payment_request_url"),
                expires_at=_dig(response_data, "payment_request", "expires_at"),
            )
        elif result == "APPROVED" and wallet_only:
            token = _dig(response_data, "customer_token_response", "customer_token")
            outcome = Approved(
                customer_token_id=_dig(token, "customer_token_id"),
                customer_token_reference=_dig(token, "customer_token_reference"),
                success_url=success_url,
            )
        elif result == "APPROVED":
            transaction = _dig(response_data, "payment_transaction_response", "payment_transaction")
            outcome = Approved(
                payment_transaction_id=_dig(transaction, "payment_transaction_id"),
                payment_transaction_reference=_dig(transaction, "payment_transaction_reference"),
                success_url=success_url,
            )
        elif result == "DECLINED":
            reason = _dig(response_data, result_block, "result_reason")
            outcome = Declined(message=reason or "Request declined", reason=reason)
        else:
            logger.error(f"Unexpected authorization result: {result}")
            return RelayResult(
                outcome=ErrorOutcome(message=f"Unexpected result: {result}", details=response_data),
                http_status=500,
                request=request_meta,
                response=response_meta,
            )
        return RelayResult(outcome=outcome, request=request_meta, response=response_meta)
