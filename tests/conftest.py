from dataclasses import dataclass

import pytest

from shared.config import get_settings, load_settings

TEST_ENV = {
    "PUROLATOR_API_KEY": "puro-key",
    "PUROLATOR_API_PASSWORD": "puro-pass",
    "PUROLATOR_CSC_ACCOUNT": "12345678",
    "PUROLATOR_NETWORK_RETRIES": "1",
    "STRIPE_SECRET_KEY": "sk_test_123",
    "STRIPE_PUBLISHABLE_KEY": "pk_test_123",
    "STRIPE_WEBHOOK_SECRET": "whsec_test_secret",
    "SUPABASE_URL": "https://example.supabase.co",
    "SUPABASE_KEY": "service-role-key",
    "RESEND_API_KEY": "re_test_123",
    "NOTIFICATION_EMAIL": "office@campusstores.ca",
}


@dataclass
class FakeLambdaContext:
    function_name: str = "test-function"
    function_version: str = "$LATEST"
    memory_limit_in_mb: int = 128
    invoked_function_arn: str = "arn:aws:lambda:ca-central-1:123456789012:function:test-function"
    aws_request_id: str = "00000000-0000-0000-0000-000000000000"


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Every test runs with a complete environment and a fresh settings cache."""
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    get_settings.cache_clear()
    yield dict(TEST_ENV)
    get_settings.cache_clear()


@pytest.fixture
def settings():
    return load_settings(dict(TEST_ENV))


@pytest.fixture
def lambda_context():
    return FakeLambdaContext()
