from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys; snake_case field names are accepted too"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Outcome(CamelModel):
    """Caller-visible result of one relay call, tagged by status"""

    status: str = Field(..., description="Outcome tag")


class ErrorOutcome(Outcome):
    status: str = "ERROR"
    message: str = Field(..., description="Human readable error message")
    details: Optional[Any] = Field(None, description="Vendor payload or validation errors")


@dataclass
class RelayResult:
    """An outcome plus the HTTP status and audit metadata for the UI log"""

    outcome: Outcome
    http_status: int = 200
    request: Optional[Dict[str, Any]] = None
    response: Optional[Dict[str, Any]] = None

    @property
    def is_error(self) -> bool:
        return self.outcome.status == "ERROR"

    def to_response(self) -> Dict[str, Any]:
        body = self.outcome.model_dump(by_alias=True, exclude_none=True)
        if self.request is not None:
            body["_request"] = self.request
        if self.response is not None:
            body["_response"] = self.response
        return body
