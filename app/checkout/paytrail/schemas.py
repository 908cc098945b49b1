from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field, model_validator

from app.checkout.schemas import CamelModel, Outcome

REQUIRED_PAYMENT_FIELDS = ["stamp", "reference", "amount", "currency", "customer", "redirectUrls"]


class PaytrailPaymentRequestSchema(CamelModel):
    """
    Relay body for the Paytrail payment endpoints.

    ``payment`` is forwarded to Paytrail untouched. Credentials in the body
    take precedence over the configured merchant.
    """
    payment: Dict[str, Any] = Field(default_factory=dict, description="Paytrail payment payload")
    merchant_id: Optional[str] = Field(None, description="Paytrail merchant (checkout-account)")
    secret_key: Optional[str] = Field(None, repr=False, description="Paytrail secret key")

    @model_validator(mode="before")
    @classmethod
    def wrap_bare_payment(cls, data):
        # a bare Paytrail payload posted without the {payment, ...} envelope;
        # credentials are lifted out so they are never forwarded to Paytrail
        if isinstance(data, dict) and "payment" not in data and "stamp" in data:
            payment = dict(data)
            merchant_id = payment.pop("merchantId", None)
            merchant_id = payment.pop("merchant_id", None) or merchant_id
            secret_key = payment.pop("secretKey", None)
            secret_key = payment.pop("secret_key", None) or secret_key
            return {"payment": payment, "merchantId": merchant_id, "secretKey": secret_key}
        return data

    def missing_fields(self) -> List[str]:
        return [field for field in REQUIRED_PAYMENT_FIELDS if not self.payment.get(field)]


class FormParameter(CamelModel):
    name: str
    value: str = ""


class RedirectInstruction(CamelModel):
    """How the browser should leave the shop: a form POST or a plain GET"""
    method: str = Field(..., description="POST or GET")
    url: str
    parameters: List[FormParameter] = Field(default_factory=list)
    provider: Optional[str] = Field(None, description="Provider id the redirect targets")


class PaymentCreated(Outcome):
    """Paytrail create-payment response, passed through with a redirect choice"""
    model_config = ConfigDict(extra="allow")

    status: str = "CREATED"
    transaction_id: Optional[str] = None
    href: Optional[str] = None
    reference: Optional[str] = None
    providers: List[Dict[str, Any]] = Field(default_factory=list)
    redirect: Optional[RedirectInstruction] = None


class ExpressApproved(Outcome):
    model_config = ConfigDict(extra="allow")

    status: str = "APPROVED"
    transaction_id: str


class ExpressStepUpRequired(Outcome):
    model_config = ConfigDict(extra="allow")

    status: str = "STEP_UP_REQUIRED"
    transaction_id: Optional[str] = None
    step_up_url: str


class ProvidersFetched(Outcome):
    status: str = "OK"
    providers: Any = Field(..., description="Paytrail provider list or grouped provider object")
