import logging
from typing import Optional

from fastapi import APIRouter, Query, Request

from app.checkout.errors import RelayError, ValidationError
from app.checkout.responses import error_response, internal_error_response, relay_response
from .schemas import (
    AuthorizePaymentRequestSchema,
    CheckoutSessionRequestSchema,
    InteroperabilitySdkTokenRequestSchema,
    InteroperabilityTestTokenRequestSchema,
    PaymentRequestSchema,
    SdkTokenRequestSchema,
)
from .services import KlarnaService
from .tokens import CheckoutFlow, CheckoutSession

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["Klarna Network"],
    prefix="",
    responses={404: {"description": "Not found"}},
)


def _default_return_url(request: Request) -> str:
    return f"{str(request.base_url).rstrip('/')}/payment-complete"


@router.get("/config")
async def get_config():
    """
    Client configuration for the Klarna Web SDK
    """
    try:
        return KlarnaService().get_sdk_config()
    except RelayError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Config error: {str(e)}")
        return internal_error_response(f"Config error: {str(e)}")


@router.post("/identity/sdk-tokens")
async def create_identity_sdk_token(request: SdkTokenRequestSchema):
    """
    Generate an SDK token for tokenized payments
    """
    try:
        result = await KlarnaService().create_identity_sdk_token(request.country, request.auth_mode)
        return relay_response(result)
    except RelayError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"SDK token error: {str(e)}")
        return internal_error_response(f"Internal server error: {str(e)}")


@router.post("/interoperability/test-tokens")
async def create_interoperability_test_token(request: InteroperabilityTestTokenRequestSchema):
    """
    Generate an interoperability test token (Acquiring Partner only)
    """
    try:
        result = await KlarnaService().create_interoperability_test_token(
            request.customer_journey, request.country, request.auth_mode
        )
        return relay_response(result)
    except RelayError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Interoperability test token error: {str(e)}")
        return internal_error_response(f"Internal server error: {str(e)}")


@router.post("/interoperability/sdk-tokens")
async def create_interoperability_sdk_token(request: InteroperabilitySdkTokenRequestSchema):
    """
    Exchange an interoperability token for an SDK token (Acquiring Partner only)
    """
    try:
        result = await KlarnaService().create_interoperability_sdk_token(
            request.interoperability_token, request.auth_mode
        )
        return relay_response(result)
    except RelayError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Interoperability SDK token error: {str(e)}")
        return internal_error_response(f"Internal server error: {str(e)}")


@router.post("/checkout-sessions")
async def create_checkout_session(request: CheckoutSessionRequestSchema):
    """
    Run every token exchange a checkout flow needs before SDK initialization
    """
    try:
        try:
            flow = CheckoutFlow(request.flow.strip().upper())
        except ValueError:
            valid = ", ".join(f.value for f in CheckoutFlow)
            raise ValidationError(f"Invalid flow. Must be one of: {valid}")

        klarna_service = KlarnaService()
        auth = klarna_service.resolver.resolve(request.auth_mode)
        session = CheckoutSession(
            flow=flow,
            auth_mode=auth.mode.value,
            country=request.country,
            customer_journey=request.customer_journey,
        )
        await klarna_service.prepare_checkout_session(session)

        content = {"status": "OK", "flow": flow.value, "authMode": auth.mode.value}
        # the tokens leave the relay exactly once, here
        if session.sdk_token is not None:
            content["sdkToken"] = session.sdk_token.consume()
            content["expiresAt"] = session.sdk_token_expires_at
        if session.interoperability_token is not None:
            content["interoperabilityToken"] = session.interoperability_token.consume()
        return content
    except RelayError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Checkout session error: {str(e)}")
        return internal_error_response(f"Internal server error: {str(e)}")


@router.get("/presentation")
async def get_presentation(
    currency: Optional[str] = Query(None),
    locale: Optional[str] = Query(None),
    amount: Optional[int] = Query(None),
    intents: Optional[str] = Query(None, description="Comma separated intents"),
    subscription_billing_interval: Optional[str] = Query(None),
    subscription_billing_interval_frequency: Optional[int] = Query(None),
    include_customer_token: bool = Query(False),
    country: Optional[str] = Query(None),
    interoperability_token: Optional[str] = Query(None),
    auth_mode: Optional[str] = Query(None),
):
    """
    Fetch the payment presentation (GET)
    """
    try:
        result = await KlarnaService().get_presentation(
            currency,
            locale=locale,
            amount=amount,
            intents=intents,
            subscription_billing_interval=subscription_billing_interval,
            subscription_billing_interval_frequency=subscription_billing_interval_frequency,
            include_customer_token=include_customer_token,
            country=country,
            interoperability_token=interoperability_token,
            auth_mode=auth_mode,
        )
        return relay_response(result)
    except RelayError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Presentation error: {str(e)}")
        return internal_error_response(f"Internal server error: {str(e)}")


@router.post("/payment-request")
async def create_payment_request(body: PaymentRequestSchema, request: Request):
    """
    Create a payment request (Sub Partner flow)
    """
    try:
        result = await KlarnaService().create_payment_request(body, _default_return_url(request))
        return relay_response(result)
    except RelayError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Payment request error: {str(e)}")
        return internal_error_response(f"Internal server error: {str(e)}")


@router.post("/authorize-payment")
async def authorize_payment(body: AuthorizePaymentRequestSchema, request: Request):
    """
    Authorize a payment or wallet link; may return STEP_UP_REQUIRED
    """
    try:
        result = await KlarnaService().authorize_payment(body, _default_return_url(request))
        return relay_response(result)
    except RelayError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Authorize error: {str(e)}")
        return internal_error_response(f"Internal server error: {str(e)}")
