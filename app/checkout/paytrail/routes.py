import logging
from typing import List, Optional

from fastapi import APIRouter, Query

from app.checkout.errors import RelayError
from app.checkout.responses import error_response, internal_error_response, relay_response
from .schemas import PaytrailPaymentRequestSchema
from .services import PaytrailService

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["Paytrail"],
    prefix="",
    responses={404: {"description": "Not found"}},
)


@router.post("/payments")
async def create_payment(
    request: PaytrailPaymentRequestSchema,
    hpp: bool = Query(False, description="Redirect to the hosted payment page instead of a provider"),
):
    """
    Create a Paytrail payment and return the redirect to use
    """
    try:
        result = await PaytrailService().create_payment(request, hosted_page=hpp)
        return relay_response(result, success_status=201)
    except RelayError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error creating payment: {str(e)}")
        return internal_error_response(f"Failed to create payment with Paytrail API: {str(e)}")


@router.post("/payments/klarna/charge")
async def klarna_charge(request: PaytrailPaymentRequestSchema):
    """
    Klarna express charge through Paytrail; 403 means step-up is required
    """
    try:
        result = await PaytrailService().klarna_charge(request)
        return relay_response(result)
    except RelayError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error in Klarna charge: {str(e)}")
        return internal_error_response(f"Klarna charge failed: {str(e)}")


@router.post("/payments/klarna/authorization-hold")
async def klarna_authorization_hold(request: PaytrailPaymentRequestSchema):
    """
    Klarna express authorization hold through Paytrail
    """
    try:
        result = await PaytrailService().klarna_authorization_hold(request)
        return relay_response(result)
    except RelayError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error in Klarna authorization hold: {str(e)}")
        return internal_error_response(f"Klarna authorization hold failed: {str(e)}")


@router.get("/merchants/payment-providers")
async def get_payment_providers(
    amount: Optional[int] = Query(None),
    groups: Optional[List[str]] = Query(None),
    language: Optional[str] = Query(None),
):
    """
    Payment providers for the configured merchant
    """
    try:
        result = await PaytrailService().list_payment_providers(amount=amount, groups=groups, language=language)
        return relay_response(result)
    except RelayError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error fetching payment providers: {str(e)}")
        return internal_error_response(f"Failed to fetch payment providers from Paytrail API: {str(e)}")


@router.get("/merchants/grouped-payment-providers")
async def get_grouped_payment_providers(
    amount: Optional[int] = Query(None),
    groups: Optional[List[str]] = Query(None),
    language: Optional[str] = Query(None),
):
    """
    Payment providers grouped by type
    """
    try:
        result = await PaytrailService().list_payment_providers(
            grouped=True, amount=amount, groups=groups, language=language
        )
        return relay_response(result)
    except RelayError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error fetching grouped payment providers: {str(e)}")
        return internal_error_response(f"Failed to fetch grouped payment providers from Paytrail API: {str(e)}")
