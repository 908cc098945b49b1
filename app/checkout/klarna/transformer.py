"""
Mapping from the storefront's purchase model to Klarna's wire schema.

Input models use camelCase; Klarna expects snake_case. Absent optional
fields are left out of the wire object instead of being sent as null.
"""
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .schemas import (
    CustomerTokenRequest,
    LineItem,
    OndemandService,
    PaymentRequestData,
    Subscription,
    SupplementaryPurchaseData,
)

HANDOVER = "HANDOVER"


def _compact(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def generate_reference(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}"


def _line_item(item: LineItem) -> Dict[str, Any]:
    # total_amount is copied as given; keeping it equal to unit_price * quantity is the caller's job
    return _compact({
        "name": item.name,
        "quantity": item.quantity,
        "total_amount": item.total_amount,
        "unit_price": item.unit_price,
        "line_item_reference": item.line_item_reference,
        "subscription_reference": item.subscription_reference,
    })


def _ondemand_service(service: OndemandService) -> Dict[str, Any]:
    return _compact({
        "average_amount": service.average_amount,
        "minimum_amount": service.minimum_amount,
        "maximum_amount": service.maximum_amount,
        "purchase_interval": service.purchase_interval,
        "purchase_interval_frequency": service.purchase_interval_frequency,
    })


def _subscription(subscription: Subscription) -> Dict[str, Any]:
    return _compact({
        "subscription_reference": subscription.subscription_reference,
        "name": subscription.name,
        "free_trial": subscription.free_trial,
        "billing_plans": [
            {
                "billing_amount": plan.billing_amount,
                "currency": plan.currency,
                "from": plan.from_,
                "interval": plan.interval,
                "interval_frequency": plan.interval_frequency,
            }
            for plan in subscription.billing_plans
        ],
    })


def to_wire_format(data: Optional[SupplementaryPurchaseData]) -> Dict[str, Any]:
    """Transform supplementary purchase data to Klarna API format (snake_case)"""
    if data is None:
        return {}

    transformed: Dict[str, Any] = {}
    if data.purchase_reference:
        transformed["purchase_reference"] = data.purchase_reference
    if data.line_items is not None:
        transformed["line_items"] = [_line_item(item) for item in data.line_items]
    if data.ondemand_service is not None:
        transformed["ondemand_service"] = _ondemand_service(data.ondemand_service)
    if data.subscriptions is not None:
        transformed["subscriptions"] = [_subscription(sub) for sub in data.subscriptions]
    if data.customer:
        transformed["customer"] = data.customer
    return transformed


def customer_token_request_to_wire(request: CustomerTokenRequest) -> Dict[str, Any]:
    return {
        "scopes": list(request.scopes),
        "customer_token_reference": request.customer_token_reference,
    }


def customer_interaction_config(return_url: str, app_return_url: Optional[str] = None) -> Dict[str, Any]:
    config = {"method": HANDOVER, "return_url": return_url}
    if app_return_url:
        config["app_return_url"] = app_return_url
    return config


def build_payment_request_body(
    data: PaymentRequestData,
    payment_option_id: Optional[str],
    return_url: str,
    app_return_url: Optional[str] = None,
) -> Dict[str, Any]:
    """Body for the Payment Request API (Sub Partner flow)"""
    body: Dict[str, Any] = {
        "currency": data.currency,
        "payment_request_reference": data.payment_request_reference or generate_reference("req"),
    }
    if payment_option_id:
        body["payment_option_id"] = payment_option_id
    body["customer_interaction_config"] = customer_interaction_config(return_url, app_return_url)

    if not data.is_wallet_only and data.amount is not None:
        body["amount"] = data.amount
    if data.supplementary_purchase_data is not None:
        body["supplementary_purchase_data"] = to_wire_format(data.supplementary_purchase_data)
    if data.request_customer_token is not None:
        body["request_customer_token"] = customer_token_request_to_wire(data.request_customer_token)
    return body


def build_authorize_body(
    data: PaymentRequestData,
    payment_option_id: Optional[str],
    return_url: str,
    app_return_url: Optional[str] = None,
) -> Dict[str, Any]:
    """Body for the Payment Authorize API"""
    body: Dict[str, Any] = {
        "currency": data.currency,
        "supplementary_purchase_data": to_wire_format(data.supplementary_purchase_data),
        "step_up_config": {
            "payment_request_reference": data.payment_request_reference or generate_reference("req"),
            "customer_interaction_config": customer_interaction_config(return_url, app_return_url),
        },
    }
    if not data.is_wallet_only:
        body["request_payment_transaction"] = _compact({
            "amount": data.amount,
            "payment_option_id": payment_option_id,
            "payment_transaction_reference": data.payment_request_reference or generate_reference("txn"),
        })
    if data.request_customer_token is not None:
        body["request_customer_token"] = customer_token_request_to_wire(data.request_customer_token)
    return body


def presentation_query_params(
    currency: str,
    locale: Optional[str] = None,
    amount: Optional[int] = None,
    intents: Optional[Union[str, Iterable[str]]] = None,
    subscription_billing_interval: Optional[str] = None,
    subscription_billing_interval_frequency: Optional[int] = None,
) -> List[Tuple[str, str]]:
    """Query for the Presentation API; intents go out as repeated intents[] entries"""
    params: List[Tuple[str, str]] = [("currency", currency)]
    if locale:
        params.append(("locale", locale))
    if amount is not None:
        params.append(("amount", str(amount)))
    if intents:
        if isinstance(intents, str):
            intents = intents.split(",")
        params.extend(("intents[]", intent.strip()) for intent in intents if intent.strip())
    if subscription_billing_interval:
        params.append(("subscription_billing_interval", subscription_billing_interval))
    if subscription_billing_interval_frequency is not None:
        params.append(("subscription_billing_interval_frequency", str(subscription_billing_interval_frequency)))
    return params
