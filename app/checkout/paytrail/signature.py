"""
HMAC request signing for the Paytrail API.

The signed string is every ``checkout-*`` header as ``key:value``, sorted by
key and joined with line feeds, then a final line feed, then the request body
with carriage returns removed.
"""
import hashlib
import hmac
import uuid
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

ALGORITHM = "sha256"


class SignedRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    headers: Dict[str, str] = Field(..., description="checkout-* headers in canonical order")
    signature: str = Field(..., description="Hex encoded HMAC-SHA256")
    body: str = Field("", description="The exact body that was signed")

    def http_headers(self) -> Dict[str, str]:
        """Headers to send: the signed set plus signature and content type"""
        return {
            **self.headers,
            "signature": self.signature,
            "content-type": "application/json; charset=utf-8",
        }


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix"""
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def normalize_body(body: Optional[str]) -> str:
    return (body or "").replace("\r", "")


def canonical_string(headers: Mapping[str, str], body: Optional[str]) -> str:
    checkout_headers = sorted(
        (key.lower(), value) for key, value in headers.items() if key.lower().startswith("checkout-")
    )
    lines = [f"{key}:{value}" for key, value in checkout_headers]
    return "\n".join(lines) + "\n" + normalize_body(body)


def compute_signature(secret_key: str, headers: Mapping[str, str], body: Optional[str]) -> str:
    message = canonical_string(headers, body)
    return hmac.new(secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def sign(
    method: str,
    account_id: str,
    secret_key: str,
    body: Optional[str] = None,
    nonce: Optional[str] = None,
    timestamp: Optional[str] = None,
    extra_headers: Optional[Mapping[str, str]] = None,
) -> SignedRequest:
    """
    Sign one Paytrail request.

    A fresh nonce and timestamp are generated unless supplied, so two calls
    never share a signature. Extra ``checkout-*`` headers (for example
    ``checkout-transaction-id``) are signed along with the standard set.
    """
    headers = {
        "checkout-account": str(account_id),
        "checkout-algorithm": ALGORITHM,
        "checkout-method": method.upper(),
        "checkout-nonce": nonce or str(uuid.uuid4()),
        "checkout-timestamp": timestamp or utc_timestamp(),
    }
    if extra_headers:
        headers.update({key.lower(): str(value) for key, value in extra_headers.items()})
    headers = dict(sorted(headers.items()))

    normalized = normalize_body(body)
    return SignedRequest(
        headers=headers,
        signature=compute_signature(secret_key, headers, normalized),
        body=normalized,
    )


def verify_signature(secret_key: str, headers: Mapping[str, str], body: Optional[str], signature: Optional[str]) -> bool:
    """Check a signature Paytrail attached to a response or callback"""
    if not signature:
        return False
    expected = compute_signature(secret_key, headers, body)
    return hmac.compare_digest(expected, signature.lower())
