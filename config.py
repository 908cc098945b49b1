import os
import json
import logging
from typing import Dict, List
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_KLARNA_API_BASE_URL = "https://api-global.test.klarna.com"
DEFAULT_PAYTRAIL_API_URL = "https://services.paytrail.com"


class Settings:
    """Application settings"""

    # Klarna Acquiring Partner credentials
    AP_CLIENT_ID: str = os.getenv("AP_CLIENT_ID", "")
    AP_API_KEY: str = os.getenv("AP_API_KEY", "")  # base64 encoded, sent as Basic auth
    PARTNER_ACCOUNT_ID: str = os.getenv("PARTNER_ACCOUNT_ID", "")

    # Klarna Sub Partner credentials
    SP_CLIENT_ID: str = os.getenv("SP_CLIENT_ID", "")
    SP_API_KEY: str = os.getenv("SP_API_KEY", "")

    # Klarna API
    KLARNA_API_BASE_URL: str = os.getenv("KLARNA_API_BASE_URL", "") or DEFAULT_KLARNA_API_BASE_URL
    KLARNA_CUSTOMER_TOKENS: str = os.getenv("KLARNA_CUSTOMER_TOKENS", "")  # {"SE": "tok_xxx", ...}
    MTLS_CERT: str = os.getenv("MTLS_CERT", "")  # base64 encoded PEM
    MTLS_KEY: str = os.getenv("MTLS_KEY", "")

    # Paytrail
    PAYTRAIL_API_URL: str = os.getenv("PAYTRAIL_API_URL", "") or DEFAULT_PAYTRAIL_API_URL
    PAYTRAIL_MERCHANT_ID: str = os.getenv("PAYTRAIL_MERCHANT_ID", "")
    PAYTRAIL_SECRET_KEY: str = os.getenv("PAYTRAIL_SECRET_KEY", "")

    # Outbound HTTP
    HTTP_TIMEOUT: float = float(os.getenv("HTTP_TIMEOUT", "15.0"))

    # Verbose body logging
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # Frontend URLs (comma separated list of allowed origins)
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "*")

    def has_acquiring_partner_config(self) -> bool:
        """Acquiring Partner mode needs client id, API key and account id"""
        return bool(self.AP_CLIENT_ID and self.AP_API_KEY and self.PARTNER_ACCOUNT_ID)

    def has_sub_partner_config(self) -> bool:
        """Sub Partner mode needs client id and API key"""
        return bool(self.SP_CLIENT_ID and self.SP_API_KEY)

    def has_mtls_config(self) -> bool:
        return bool(self.MTLS_CERT and self.MTLS_KEY)

    def has_paytrail_config(self) -> bool:
        return bool(self.PAYTRAIL_MERCHANT_ID and self.PAYTRAIL_SECRET_KEY)

    def customer_tokens(self) -> Dict[str, str]:
        """
        Parse KLARNA_CUSTOMER_TOKENS into a country -> token map.

        An unparsable value is logged and treated as "no tokens configured".
        """
        if not self.KLARNA_CUSTOMER_TOKENS:
            return {}
        try:
            parsed = json.loads(self.KLARNA_CUSTOMER_TOKENS)
        except ValueError as e:
            logger.error(f"Failed to parse KLARNA_CUSTOMER_TOKENS: {str(e)}")
            return {}
        if not isinstance(parsed, dict):
            logger.warning("KLARNA_CUSTOMER_TOKENS is not a valid JSON object")
            return {}
        return {str(country).upper(): str(token) for country, token in parsed.items() if token}

    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.FRONTEND_URL.split(",") if origin.strip()]


# Create settings instance
settings = Settings()
