import pytest
from pydantic import ValidationError

from shared.config import ConfigurationError, get_settings, load_settings


def _env(**overrides) -> dict:
    env = {
        "PUROLATOR_API_KEY": "k",
        "PUROLATOR_API_PASSWORD": "p",
        "PUROLATOR_CSC_ACCOUNT": "12345678",
        "STRIPE_SECRET_KEY": "sk_test_abc",
        "STRIPE_WEBHOOK_SECRET": "whsec_abc",
        "SUPABASE_URL": "https://example.supabase.co",
        "SUPABASE_KEY": "key",
        "RESEND_API_KEY": "re_abc",
    }
    env.update(overrides)
    return {k: v for k, v in env.items() if v is not None}


class TestLoadSettings:
    def test_defaults(self) -> None:
        settings = load_settings(_env())

        assert settings.purolator.production is False
        assert settings.purolator.timeout_sec == 30.0
        assert settings.purolator.network_retries == 1
        assert settings.purolator.skip_validation is False
        assert settings.purolator.sender.address.postal_code == "L2G3K7"
        assert settings.notifier.notification_email == "google@campusstores.ca"
        assert settings.stripe.mode == "test"

    def test_only_literal_true_selects_production(self) -> None:
        assert load_settings(_env(PUROLATOR_USE_PRODUCTION="true")).purolator.production is True
        assert load_settings(_env(PUROLATOR_USE_PRODUCTION="1")).purolator.production is False
        assert load_settings(_env(PUROLATOR_USE_PRODUCTION="yes")).purolator.production is False

    def test_lists_every_missing_variable(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(_env(PUROLATOR_API_KEY=None, SUPABASE_URL=None))
        assert "PUROLATOR_API_KEY" in str(exc_info.value)
        assert "SUPABASE_URL" in str(exc_info.value)

    def test_conference_overrides(self) -> None:
        settings = load_settings(_env(CONFERENCE_CITY="Toronto", CONFERENCE_POSTAL_CODE="M5V3L9", SENDER_PHONE="4165551234"))
        assert settings.purolator.sender.address.city == "Toronto"
        assert settings.purolator.sender.address.postal_code == "M5V3L9"
        assert settings.purolator.sender.phone == "4165551234"

    def test_settings_are_frozen(self) -> None:
        settings = load_settings(_env())
        with pytest.raises(ValidationError):
            settings.purolator.production = True


class TestStripeMode:
    def test_live_detected_from_key_prefix(self) -> None:
        settings = load_settings(_env(STRIPE_SECRET_KEY="sk_live_abc"))
        assert settings.stripe.mode == "live"

    def test_explicit_pairs_follow_flag(self) -> None:
        env = _env(
            STRIPE_SECRET_KEY=None,
            STRIPE_WEBHOOK_SECRET=None,
            STRIPE_USE_LIVE_MODE="true",
            STRIPE_LIVE_SECRET_KEY="sk_live_x",
            STRIPE_LIVE_WEBHOOK_SECRET="whsec_live",
            STRIPE_TEST_SECRET_KEY="sk_test_x",
            STRIPE_TEST_WEBHOOK_SECRET="whsec_test",
        )
        stripe_settings = load_settings(env).stripe
        assert stripe_settings.mode == "live"
        assert stripe_settings.secret_key == "sk_live_x"
        assert stripe_settings.webhook_secret == "whsec_live"

    def test_missing_keys_for_active_mode(self) -> None:
        env = _env(
            STRIPE_SECRET_KEY=None,
            STRIPE_WEBHOOK_SECRET=None,
            STRIPE_USE_LIVE_MODE="true",
            STRIPE_TEST_SECRET_KEY="sk_test_x",
            STRIPE_TEST_WEBHOOK_SECRET="whsec_test",
        )
        with pytest.raises(ConfigurationError, match="live"):
            load_settings(env)


def test_get_settings_reads_process_environment(test_env) -> None:
    settings = get_settings()
    assert settings.purolator.billing_account == test_env["PUROLATOR_CSC_ACCOUNT"]
    assert get_settings() is settings
