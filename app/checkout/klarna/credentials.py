import logging
from typing import List, Optional

from config import Settings, settings
from app.checkout.errors import ConfigurationError
from .schemas import AuthConfig, AuthMode

logger = logging.getLogger(__name__)


class CredentialResolver:
    """
    Picks the Klarna credential set for a request.

    Both credential sets come from process-wide configuration; nothing here
    mutates state, so one resolver can be shared freely.
    """

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or settings

    def get_auth_config(self, mode: AuthMode) -> Optional[AuthConfig]:
        """Credential set for a mode, or None when it is not fully configured"""
        if mode == AuthMode.ACQUIRING_PARTNER:
            if not self.config.has_acquiring_partner_config():
                return None
            return AuthConfig(
                client_id=self.config.AP_CLIENT_ID,
                api_key=self.config.AP_API_KEY,
                partner_account_id=self.config.PARTNER_ACCOUNT_ID,
                is_acquiring_partner=True,
            )
        if not self.config.has_sub_partner_config():
            return None
        return AuthConfig(
            client_id=self.config.SP_CLIENT_ID,
            api_key=self.config.SP_API_KEY,
            partner_account_id=None,
            is_acquiring_partner=False,
        )

    @property
    def default_mode(self) -> AuthMode:
        # Prefer Acquiring Partner if both are available
        if self.config.has_acquiring_partner_config():
            return AuthMode.ACQUIRING_PARTNER
        return AuthMode.SUB_PARTNER

    def available_modes(self) -> List[AuthConfig]:
        modes = [self.get_auth_config(AuthMode.ACQUIRING_PARTNER), self.get_auth_config(AuthMode.SUB_PARTNER)]
        return [mode for mode in modes if mode is not None]

    def resolve(self, requested_mode: Optional[str] = None) -> AuthConfig:
        """
        Resolve the credential set for a requested mode.

        Unknown or unconfigured modes fall back to the default mode. Raises
        ConfigurationError when no credential set is complete.
        """
        mode = self.default_mode
        if requested_mode:
            try:
                mode = AuthMode(requested_mode.strip().upper())
            except ValueError:
                logger.warning(f"Unknown auth mode requested: {requested_mode}, using {mode.value}")

        config = self.get_auth_config(mode)
        if config is None:
            config = self.get_auth_config(self.default_mode)
        if config is None:
            raise ConfigurationError("Server configuration error: No authentication configured")
        if config.mode != mode:
            logger.info(f"Auth mode {mode.value} is not configured, falling back to {config.mode.value}")
        return config

    def customer_token_for(self, country: Optional[str]) -> Optional[str]:
        if not country:
            return None
        return self.config.customer_tokens().get(country.strip().upper())

    def customer_token_countries(self) -> List[str]:
        return list(self.config.customer_tokens().keys())
