from enum import Enum
from typing import Optional

from app.checkout.errors import TokenConsumedError


class SingleUseToken:
    """
    A bearer token that can be read exactly once.

    SDK tokens and interoperability tokens must be refetched after every
    completed or abandoned checkout; reading one twice raises
    TokenConsumedError instead of silently reusing it.
    """

    __slots__ = ("name", "_value", "_consumed")

    def __init__(self, value: str, name: str = "token"):
        if not value:
            raise ValueError(f"{name} must not be empty")
        self.name = name
        self._value = value
        self._consumed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume(self) -> str:
        if self._consumed:
            raise TokenConsumedError(f"{self.name} has already been used")
        self._consumed = True
        return self._value

    def __repr__(self) -> str:
        # never expose the value
        return f"SingleUseToken(name={self.name!r}, consumed={self._consumed})"


class CheckoutFlow(str, Enum):
    STANDARD = "STANDARD"
    TOKENIZED = "TOKENIZED"
    INTEROPERABILITY = "INTEROPERABILITY"


class CheckoutSession:
    """Per-checkout context passed explicitly between relay calls"""

    def __init__(
        self,
        flow: CheckoutFlow = CheckoutFlow.STANDARD,
        auth_mode: Optional[str] = None,
        country: Optional[str] = None,
        customer_journey: Optional[str] = None,
    ):
        self.flow = flow
        self.auth_mode = auth_mode
        self.country = country
        self.customer_journey = customer_journey
        self.sdk_token: Optional[SingleUseToken] = None
        self.sdk_token_expires_at: Optional[str] = None
        self.interoperability_token: Optional[SingleUseToken] = None

    def discard(self) -> None:
        """Drop every token; call after the flow completes or is abandoned"""
        self.sdk_token = None
        self.sdk_token_expires_at = None
        self.interoperability_token = None
