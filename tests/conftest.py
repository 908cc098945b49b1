"""
Pytest configuration and fixtures for the relay tests
"""

import pytest
from unittest.mock import AsyncMock, patch

from config import Settings, settings as global_settings

BLANK = {
    "AP_CLIENT_ID": "",
    "AP_API_KEY": "",
    "PARTNER_ACCOUNT_ID": "",
    "SP_CLIENT_ID": "",
    "SP_API_KEY": "",
    "KLARNA_API_BASE_URL": "https://api.klarna.test",
    "KLARNA_CUSTOMER_TOKENS": "",
    "MTLS_CERT": "",
    "MTLS_KEY": "",
    "PAYTRAIL_API_URL": "https://paytrail.test",
    "PAYTRAIL_MERCHANT_ID": "",
    "PAYTRAIL_SECRET_KEY": "",
    "HTTP_TIMEOUT": 5.0,
    "DEBUG": False,
}

SUB_PARTNER = {"SP_CLIENT_ID": "klarna_sp_client", "SP_API_KEY": "c3BfYXBpX2tleQ=="}
ACQUIRING_PARTNER = {
    "AP_CLIENT_ID": "klarna_ap_client",
    "AP_API_KEY": "YXBfYXBpX2tleQ==",
    "PARTNER_ACCOUNT_ID": "krn:partner:account:123",
}
CUSTOMER_TOKENS = {"KLARNA_CUSTOMER_TOKENS": '{"se": "ctok_se", "FI": "ctok_fi"}'}
PAYTRAIL = {"PAYTRAIL_MERCHANT_ID": "375917", "PAYTRAIL_SECRET_KEY": "SAIPPUAKAUPPIAS"}


def make_settings(**overrides) -> Settings:
    """Settings instance independent of the process environment"""
    instance = Settings()
    for key, value in {**BLANK, **overrides}.items():
        setattr(instance, key, value)
    return instance


@pytest.fixture
def empty_settings():
    """No credentials configured at all"""
    return make_settings()


@pytest.fixture
def sp_settings():
    """Sub Partner credentials only"""
    return make_settings(**SUB_PARTNER, **CUSTOMER_TOKENS)


@pytest.fixture
def ap_settings():
    """Acquiring Partner credentials only"""
    return make_settings(**ACQUIRING_PARTNER, **CUSTOMER_TOKENS)


@pytest.fixture
def both_settings():
    """Both credential sets configured"""
    return make_settings(**SUB_PARTNER, **ACQUIRING_PARTNER, **CUSTOMER_TOKENS)


@pytest.fixture
def paytrail_settings():
    """Paytrail merchant configured through the environment"""
    return make_settings(**PAYTRAIL)


@pytest.fixture
def configure(monkeypatch):
    """
    Overwrite the process-wide settings object for endpoint tests
    """
    def _configure(**overrides):
        for key, value in {**BLANK, **overrides}.items():
            monkeypatch.setattr(global_settings, key, value)
        return global_settings
    return _configure


@pytest.fixture
def mock_http():
    """
    Replace httpx.AsyncClient with an AsyncMock that answers with the given
    responses in order, whichever of get/post is called;
    an exception in the sequence is raised instead
    """
    patchers = []

    def _install(*responses):
        queue = iter(responses)

        async def _next_response(*args, **kwargs):
            item = next(queue)
            if isinstance(item, Exception):
                raise item
            return item

        mock_client = AsyncMock()
        mock_client.post.side_effect = _next_response
        mock_client.get.side_effect = _next_response
        mock_client.__aenter__.return_value = mock_client
        mock_client.__aexit__.return_value = None

        patcher = patch("httpx.AsyncClient", return_value=mock_client)
        patcher.start()
        patchers.append(patcher)
        return mock_client

    yield _install

    for patcher in patchers:
        patcher.stop()
