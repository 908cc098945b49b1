from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field, field_validator

from app.checkout.schemas import CamelModel, Outcome

CUSTOMER_PRESENT_SCOPE = "payment:customer_present"
CUSTOMER_NOT_PRESENT_SCOPE = "payment:customer_not_present"


class AuthMode(str, Enum):
    """Klarna account topologies"""
    SUB_PARTNER = "SUB_PARTNER"
    ACQUIRING_PARTNER = "ACQUIRING_PARTNER"


class Intent(str, Enum):
    """Purchase purposes accepted by the presentation and payment APIs"""
    PAY = "PAY"
    SUBSCRIBE = "SUBSCRIBE"
    DONATE = "DONATE"
    SIGNIN = "SIGNIN"
    SIGNUP = "SIGNUP"
    ADD_TO_WALLET = "ADD_TO_WALLET"


class CustomerJourney(str, Enum):
    """Interoperability test-token journeys"""
    KLARNA_EXPRESS_CHECKOUT = "KLARNA_EXPRESS_CHECKOUT"
    SIGN_IN_WITH_KLARNA = "SIGN_IN_WITH_KLARNA"
    KLARNA_PRE_QUALIFICATION = "KLARNA_PRE_QUALIFICATION"
    KLARNA_ACCOUNT_LINKING = "KLARNA_ACCOUNT_LINKING"


class AuthConfig(CamelModel):
    """Resolved credential set for one relay call"""
    client_id: str = Field(..., description="Klarna client id used by the Web SDK")
    api_key: str = Field(..., repr=False, description="Base64 encoded API credentials")
    partner_account_id: Optional[str] = Field(None, description="Acquiring Partner account id")
    is_acquiring_partner: bool = Field(..., description="Whether account-scoped URLs are used")

    @property
    def mode(self) -> AuthMode:
        return AuthMode.ACQUIRING_PARTNER if self.is_acquiring_partner else AuthMode.SUB_PARTNER


# Purchase data (camelCase on input, see transformer.to_wire_format for the wire shape)

class LineItem(CamelModel):
    name: str = Field(..., description="Line item name")
    quantity: int = Field(..., description="Quantity")
    total_amount: int = Field(..., description="Total in minor units, supplied by the caller")
    unit_price: int = Field(..., description="Unit price in minor units")
    line_item_reference: Optional[str] = None
    subscription_reference: Optional[str] = None


class OndemandService(CamelModel):
    average_amount: Optional[int] = None
    minimum_amount: Optional[int] = None
    maximum_amount: Optional[int] = None
    purchase_interval: Optional[str] = None
    # The storefront sends the irregular "purchaseInterval_frequency" key
    purchase_interval_frequency: Optional[int] = Field(
        None,
        validation_alias=AliasChoices(
            "purchaseInterval_frequency",
            "purchaseIntervalFrequency",
            "purchase_interval_frequency",
        ),
    )


class BillingPlan(CamelModel):
    billing_amount: int = Field(..., description="Amount per billing interval")
    currency: str = Field(..., description="Plan currency, independent of the purchase currency")
    from_: str = Field(..., alias="from", description="Plan start date (YYYY-MM-DD)")
    interval: str = Field(..., description="DAY, WEEK, MONTH or YEAR")
    interval_frequency: int = Field(..., description="Number of intervals between charges")


class Subscription(CamelModel):
    subscription_reference: str
    name: str
    free_trial: Optional[str] = None
    billing_plans: List[BillingPlan] = Field(default_factory=list)


class SupplementaryPurchaseData(CamelModel):
    purchase_reference: Optional[str] = None
    line_items: Optional[List[LineItem]] = None
    ondemand_service: Optional[OndemandService] = None
    subscriptions: Optional[List[Subscription]] = None
    customer: Optional[Dict[str, Any]] = None


class CustomerTokenRequest(CamelModel):
    scopes: List[str] = Field(..., min_length=1, description="Token scopes")
    customer_token_reference: str = Field(..., description="Merchant reference for the token")

    @field_validator("scopes")
    @classmethod
    def validate_scopes(cls, v):
        scopes = list(dict.fromkeys(v))
        if CUSTOMER_PRESENT_SCOPE in scopes and CUSTOMER_NOT_PRESENT_SCOPE in scopes:
            raise ValueError(
                f"{CUSTOMER_PRESENT_SCOPE} and {CUSTOMER_NOT_PRESENT_SCOPE} cannot be requested together"
            )
        return scopes


class PaymentRequestData(CamelModel):
    """Internal payment intent model built by the storefront for one action"""
    currency: str = Field(..., description="ISO 4217 currency code")
    payment_request_reference: Optional[str] = None
    amount: Optional[int] = Field(None, description="Amount in minor units")
    payment_option_id: Optional[str] = None
    intents: List[Intent] = Field(default_factory=list)
    supplementary_purchase_data: Optional[SupplementaryPurchaseData] = None
    request_customer_token: Optional[CustomerTokenRequest] = None

    @property
    def is_wallet_only(self) -> bool:
        """Wallet linking carries no payment transaction"""
        return set(self.intents) == {Intent.ADD_TO_WALLET}


# Relay endpoint bodies

class SdkTokenRequestSchema(CamelModel):
    country: Optional[str] = None
    auth_mode: Optional[str] = None


class InteroperabilityTestTokenRequestSchema(CamelModel):
    customer_journey: Optional[str] = None
    country: Optional[str] = None
    auth_mode: Optional[str] = None


class InteroperabilitySdkTokenRequestSchema(CamelModel):
    interoperability_token: Optional[str] = None
    auth_mode: Optional[str] = None


class PaymentRequestSchema(CamelModel):
    payment_request_data: Optional[PaymentRequestData] = None
    payment_option_id: Optional[str] = None
    klarna_network_session_token: Optional[str] = None
    return_url: Optional[str] = None
    app_return_url: Optional[str] = None
    include_customer_token: bool = False
    country: Optional[str] = None
    auth_mode: Optional[str] = None


class AuthorizePaymentRequestSchema(PaymentRequestSchema):
    partner_account_id: Optional[str] = None
    interoperability_token: Optional[str] = None


class CheckoutSessionRequestSchema(CamelModel):
    flow: str = Field("STANDARD", description="STANDARD, TOKENIZED or INTEROPERABILITY")
    country: Optional[str] = None
    customer_journey: Optional[str] = None
    auth_mode: Optional[str] = None


# Outcomes

class Created(Outcome):
    status: str = "CREATED"
    payment_request_id: Optional[str] = None
    payment_request_url: Optional[str] = None
    expires_at: Optional[str] = None


class Completed(Outcome):
    status: str = "COMPLETED"
    payment_request_id: Optional[str] = None
    success_url: str
    expires_at: Optional[str] = None


class StepUpRequired(Outcome):
    status: str = "STEP_UP_REQUIRED"
    payment_request_id: Optional[str] = None
    payment_request_url: Optional[str] = None
    expires_at: Optional[str] = None


class Approved(Outcome):
    """Either the transaction fields or the customer token fields are set"""
    status: str = "APPROVED"
    payment_transaction_id: Optional[str] = None
    payment_transaction_reference: Optional[str] = None
    customer_token_id: Optional[str] = None
    customer_token_reference: Optional[str] = None
    success_url: str


class Declined(Outcome):
    status: str = "DECLINED"
    message: str
    reason: Optional[str] = None


class TokenIssued(Outcome):
    status: str = "OK"
    sdk_token: Optional[str] = None
    expires_at: Optional[str] = None
    interoperability_token: Optional[str] = None


class PresentationFetched(Outcome):
    status: str = "OK"
    presentation: Dict[str, Any]
