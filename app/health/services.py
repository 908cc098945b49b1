from datetime import datetime, timezone
from typing import Optional

from config import Settings, settings
from app.checkout.klarna.credentials import CredentialResolver
from app.checkout.klarna.services import mtls_context
from .schemas import HealthResponse


async def get_health_status(config: Optional[Settings] = None) -> HealthResponse:
    """
    Health check service
    """
    config = config or settings
    resolver = CredentialResolver(config)
    modes = resolver.available_modes()
    return HealthResponse(
        timestamp=datetime.now(timezone.utc).isoformat(),
        auth_mode=modes[0].mode.value if modes else None,
        mtls=mtls_context(config) is not None,
    )
