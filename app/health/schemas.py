from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class HealthResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: str = "ok"
    timestamp: str = Field(..., description="ISO-8601 UTC time of the check")
    auth_mode: Optional[str] = Field(None, description="Default Klarna auth mode, None when unconfigured")
    mtls: bool = Field(False, description="Whether a client certificate context is loaded")
