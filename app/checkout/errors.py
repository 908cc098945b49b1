from typing import Any, Dict, List, Optional


class RelayError(Exception):
    """Base class for failures surfaced to the relay caller"""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"status": "ERROR", "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ConfigurationError(RelayError):
    """No usable credentials are configured for the requested operation"""

    status_code = 500


class ValidationError(RelayError):
    """Caller input is incomplete or invalid; raised before any network call"""

    status_code = 400


class MissingFieldError(ValidationError):
    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message or f"Missing required field: {field}")
        self.field = field


class MissingFieldsError(ValidationError):
    """Several required fields are absent; the list is passed back to the caller"""

    def __init__(self, fields: List[str]):
        super().__init__("Missing required fields", details={"missing": fields})
        self.fields = fields


class VendorError(RelayError):
    """Upstream (Klarna or Paytrail) failure, carrying the vendor's status code"""

    def __init__(
        self,
        status_code: int,
        message: str,
        details: Optional[Any] = None,
        request_meta: Optional[Dict[str, Any]] = None,
        response_meta: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code
        self.request_meta = request_meta
        self.response_meta = response_meta

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        if self.request_meta is not None:
            body["_request"] = self.request_meta
        if self.response_meta is not None:
            body["_response"] = self.response_meta
        return body


class TokenConsumedError(RuntimeError):
    """A single-use token was read a second time"""
