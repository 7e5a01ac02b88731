from decimal import Decimal

import pytest

from billing_relay_svc.config import DEFAULT_ACCOUNT_PORTAL_URL, Settings, parse_amounts
from billing_relay_svc.errors import ConfigurationError

ENV_KEYS = (
    "DATABASE_URL",
    "STRIPE_API_KEY",
    "NEXT_PUBLIC_SUPABASE_URL",
    "SUPABASE_URL",
    "NEXT_PUBLIC_SUPABASE_ANON_KEY",
    "SUPABASE_ANON_KEY",
    "RECOGNIZED_SUBSCRIPTION_AMOUNTS",
    "RECOGNIZED_PAYMENT_AMOUNTS",
    "PROVIDER_SUBSCRIPTION_PREFIX",
    "PROVIDER_PAYMENT_PREFIX",
    "ACCOUNT_PORTAL_URL",
    "CORS_ALLOW_ORIGINS",
    "LOG_LEVEL",
    "STRIPE_MAX_RETRIES",
    "STRIPE_RETRY_DELAY",
    "RESEND_API_KEY",
    "EMAIL_FROM",
    "APP_URL",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    # keep a developer's .env out of the way
    monkeypatch.chdir(tmp_path)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    clean_env.setenv("DATABASE_URL", "sqlite://")
    settings = Settings.from_env()
    assert settings.stripe_api_key is None
    assert settings.recognized_subscription_amounts == {Decimal("3.49"), Decimal("3.50"), Decimal("8.90")}
    assert settings.recognized_payment_amounts == {Decimal("3.49"), Decimal("8.90")}
    assert settings.provider_subscription_prefix == "sub_"
    assert settings.provider_payment_prefix == "pi_"
    assert settings.account_portal_url == DEFAULT_ACCOUNT_PORTAL_URL
    assert settings.cors_allow_origins == ["*"]
    assert settings.stripe_max_retries == 3
    assert settings.resend_api_key is None
    assert settings.email_from == "Memo Chess <hello@memo-chess.com>"


def test_values_from_environment(clean_env):
    clean_env.setenv("DATABASE_URL", "postgresql://db")
    clean_env.setenv("STRIPE_API_KEY", "sk_live_x")
    clean_env.setenv("SUPABASE_URL", "https://fallback.supabase.co")
    clean_env.setenv("NEXT_PUBLIC_SUPABASE_ANON_KEY", "anon")
    clean_env.setenv("RECOGNIZED_SUBSCRIPTION_AMOUNTS", "4.99, 9.99")
    clean_env.setenv("CORS_ALLOW_ORIGINS", "https://a.example.com, https://b.example.com")
    clean_env.setenv("STRIPE_RETRY_DELAY", "0.5")
    clean_env.setenv("RESEND_API_KEY", "re_live")
    clean_env.setenv("APP_URL", "https://chess.example.com/")

    settings = Settings.from_env()

    assert settings.stripe_api_key == "sk_live_x"
    assert settings.public_backend_url == "https://fallback.supabase.co"
    assert settings.public_anon_key == "anon"
    assert settings.recognized_subscription_amounts == {Decimal("4.99"), Decimal("9.99")}
    assert settings.cors_allow_origins == ["https://a.example.com", "https://b.example.com"]
    assert settings.stripe_retry_delay == 0.5
    assert settings.resend_api_key == "re_live"
    assert settings.app_url == "https://chess.example.com"


def test_missing_database_url(clean_env):
    with pytest.raises(ConfigurationError) as excinfo:
        Settings.from_env()
    assert "DATABASE_URL" in str(excinfo.value)


def test_invalid_integer(clean_env):
    clean_env.setenv("DATABASE_URL", "sqlite://")
    clean_env.setenv("STRIPE_MAX_RETRIES", "many")
    with pytest.raises(ConfigurationError, match="STRIPE_MAX_RETRIES"):
        Settings.from_env()


def test_invalid_amount_list():
    with pytest.raises(ConfigurationError, match="RECOGNIZED_PAYMENT_AMOUNTS"):
        parse_amounts("RECOGNIZED_PAYMENT_AMOUNTS", "3.49,abc")
