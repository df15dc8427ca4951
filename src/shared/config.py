"""
Process-wide settings, read once from the environment.

Clients receive the relevant frozen section at construction time; nothing
downstream reads os.environ directly.
"""

import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict


class ConfigurationError(RuntimeError):
    """Raised when keys required by the active mode are missing."""

    pass


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class Address(_Frozen):
    street: str
    city: str
    province: str
    postal_code: str
    country: str = "CA"


class SenderSettings(_Frozen):
    name: str = "Campus Stores Canada"
    company: str = "Campus Stores Canada"
    phone: str = "9053581430"
    email: str = "info@campusstores.ca"
    address: Address = Address(
        street="5875 Falls Ave",
        city="Niagara Falls",
        province="ON",
        postal_code="L2G3K7",
    )


class PurolatorSettings(_Frozen):
    key: str
    password: str
    billing_account: str
    production: bool = False
    timeout_sec: float = 30.0
    network_retries: int = 1
    skip_validation: bool = False
    sender: SenderSettings = SenderSettings()


class StripeSettings(_Frozen):
    secret_key: str
    publishable_key: str = ""
    webhook_secret: str
    mode: Literal["live", "test"] = "test"


class StoreSettings(_Frozen):
    url: str
    key: str


class NotifierSettings(_Frozen):
    api_key: str
    notification_email: str = "google@campusstores.ca"
    from_address: str = "Campus Stores Canada <noreply@campusstores.ca>"


class Settings(_Frozen):
    purolator: PurolatorSettings
    stripe: StripeSettings
    store: StoreSettings
    notifier: NotifierSettings


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


def load_stripe_settings(env) -> StripeSettings:
    """
    Two layouts are accepted:

    - explicit: STRIPE_USE_LIVE_MODE plus STRIPE_LIVE_* / STRIPE_TEST_* pairs;
    - single pair: STRIPE_SECRET_KEY etc., live when a key carries a live prefix.
    """
    has_pairs = env.get("STRIPE_LIVE_SECRET_KEY") or env.get("STRIPE_TEST_SECRET_KEY")
    if has_pairs:
        mode = "live" if _flag(env.get("STRIPE_USE_LIVE_MODE")) else "test"
        prefix = f"STRIPE_{mode.upper()}_"
        names = {
            "secret_key": prefix + "SECRET_KEY",
            "publishable_key": prefix + "PUBLISHABLE_KEY",
            "webhook_secret": prefix + "WEBHOOK_SECRET",
        }
    else:
        names = {
            "secret_key": "STRIPE_SECRET_KEY",
            "publishable_key": "STRIPE_PUBLISHABLE_KEY",
            "webhook_secret": "STRIPE_WEBHOOK_SECRET",
        }
        secret = env.get("STRIPE_SECRET_KEY") or ""
        publishable = env.get("STRIPE_PUBLISHABLE_KEY") or ""
        is_live = secret.startswith("sk_live_") or publishable.startswith("pk_live_")
        mode = "live" if is_live else "test"

    values = {field: env.get(var) or "" for field, var in names.items()}
    missing = [names[f] for f in ("secret_key", "webhook_secret") if not values[f]]
    if missing:
        raise ConfigurationError(f"Missing Stripe {mode} mode keys: {', '.join(missing)}")
    return StripeSettings(mode=mode, **values)


def load_settings(env=None) -> Settings:
    env = os.environ if env is None else env

    required = (
        "PUROLATOR_API_KEY",
        "PUROLATOR_API_PASSWORD",
        "PUROLATOR_CSC_ACCOUNT",
        "SUPABASE_URL",
        "SUPABASE_KEY",
        "RESEND_API_KEY",
    )
    missing = [name for name in required if not env.get(name)]
    if missing:
        raise ConfigurationError(f"Missing environment variables: {', '.join(missing)}")

    defaults = SenderSettings()
    sender = SenderSettings(
        name=env.get("SENDER_NAME") or defaults.name,
        company=env.get("SENDER_COMPANY") or defaults.company,
        phone=env.get("SENDER_PHONE") or defaults.phone,
        email=env.get("SENDER_EMAIL") or defaults.email,
        address=Address(
            street=env.get("CONFERENCE_STREET") or defaults.address.street,
            city=env.get("CONFERENCE_CITY") or defaults.address.city,
            province=env.get("CONFERENCE_PROVINCE") or defaults.address.province,
            postal_code=env.get("CONFERENCE_POSTAL_CODE") or defaults.address.postal_code,
        ),
    )

    purolator = PurolatorSettings(
        key=env["PUROLATOR_API_KEY"],
        password=env["PUROLATOR_API_PASSWORD"],
        billing_account=env["PUROLATOR_CSC_ACCOUNT"],
        production=_flag(env.get("PUROLATOR_USE_PRODUCTION")),
        timeout_sec=float(env.get("PUROLATOR_TIMEOUT_SEC") or 30),
        network_retries=int(env.get("PUROLATOR_NETWORK_RETRIES") or 1),
        skip_validation=_flag(env.get("PUROLATOR_SKIP_VALIDATION")),
        sender=sender,
    )

    notifier_defaults = NotifierSettings(api_key="-")
    return Settings(
        purolator=purolator,
        stripe=load_stripe_settings(env),
        store=StoreSettings(url=env["SUPABASE_URL"], key=env["SUPABASE_KEY"]),
        notifier=NotifierSettings(
            api_key=env["RESEND_API_KEY"],
            notification_email=env.get("NOTIFICATION_EMAIL") or notifier_defaults.notification_email,
            from_address=env.get("EMAIL_FROM") or notifier_defaults.from_address,
        ),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings for this process; raises ConfigurationError on the first call if incomplete."""
    return load_settings()
