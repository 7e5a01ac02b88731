import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import FrozenSet, List, Optional

from dotenv import load_dotenv

from billing_relay_svc.errors import ConfigurationError

DEFAULT_SUBSCRIPTION_AMOUNTS = "3.49,3.50,8.90"
DEFAULT_PAYMENT_AMOUNTS = "3.49,8.90"
DEFAULT_ACCOUNT_PORTAL_URL = "https://billing.stripe.com/p/login"
DEFAULT_EMAIL_FROM = "Memo Chess <hello@memo-chess.com>"
DEFAULT_APP_URL = "https://memo-chess.com"


@dataclass(frozen=True)
class Settings:
    """
    Configuration for one application instance.

    Build it with :meth:`Settings.from_env` in production; tests construct it
    directly with explicit values.
    """

    database_url: str
    stripe_api_key: Optional[str] = None
    public_backend_url: Optional[str] = None
    public_anon_key: Optional[str] = None
    recognized_subscription_amounts: FrozenSet[Decimal] = field(
        default_factory=lambda: parse_amounts("RECOGNIZED_SUBSCRIPTION_AMOUNTS", DEFAULT_SUBSCRIPTION_AMOUNTS)
    )
    recognized_payment_amounts: FrozenSet[Decimal] = field(
        default_factory=lambda: parse_amounts("RECOGNIZED_PAYMENT_AMOUNTS", DEFAULT_PAYMENT_AMOUNTS)
    )
    provider_subscription_prefix: str = "sub_"
    provider_payment_prefix: str = "pi_"
    account_portal_url: str = DEFAULT_ACCOUNT_PORTAL_URL
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    stripe_max_retries: int = 3
    stripe_retry_delay: float = 1.0
    resend_api_key: Optional[str] = None
    email_from: str = DEFAULT_EMAIL_FROM
    app_url: str = DEFAULT_APP_URL

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Read settings from the environment (after loading a ``.env`` file).

        :raises ConfigurationError: when a required variable is missing or a
            value cannot be parsed. The message names the variable.
        """
        load_dotenv()
        origins = os.getenv("CORS_ALLOW_ORIGINS")
        if origins:
            cors_allow_origins = [item.strip() for item in origins.split(",") if item.strip()]
        else:
            cors_allow_origins = ["*"]

        return cls(
            database_url=_require("DATABASE_URL"),
            stripe_api_key=_optional("STRIPE_API_KEY"),
            public_backend_url=_optional("NEXT_PUBLIC_SUPABASE_URL") or _optional("SUPABASE_URL"),
            public_anon_key=_optional("NEXT_PUBLIC_SUPABASE_ANON_KEY") or _optional("SUPABASE_ANON_KEY"),
            recognized_subscription_amounts=parse_amounts(
                "RECOGNIZED_SUBSCRIPTION_AMOUNTS", os.getenv("RECOGNIZED_SUBSCRIPTION_AMOUNTS", DEFAULT_SUBSCRIPTION_AMOUNTS)
            ),
            recognized_payment_amounts=parse_amounts(
                "RECOGNIZED_PAYMENT_AMOUNTS", os.getenv("RECOGNIZED_PAYMENT_AMOUNTS", DEFAULT_PAYMENT_AMOUNTS)
            ),
            provider_subscription_prefix=os.getenv("PROVIDER_SUBSCRIPTION_PREFIX", "sub_"),
            provider_payment_prefix=os.getenv("PROVIDER_PAYMENT_PREFIX", "pi_"),
            account_portal_url=os.getenv("ACCOUNT_PORTAL_URL", DEFAULT_ACCOUNT_PORTAL_URL),
            cors_allow_origins=cors_allow_origins,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            stripe_max_retries=_get_int("STRIPE_MAX_RETRIES", 3),
            stripe_retry_delay=_get_float("STRIPE_RETRY_DELAY", 1.0),
            resend_api_key=_optional("RESEND_API_KEY"),
            email_from=os.getenv("EMAIL_FROM", DEFAULT_EMAIL_FROM),
            app_url=os.getenv("APP_URL", DEFAULT_APP_URL).rstrip("/"),
        )


def _optional(key: str) -> Optional[str]:
    value = os.getenv(key)
    if value is None:
        return None
    return value.strip() or None


def _require(key: str) -> str:
    value = _optional(key)
    if not value:
        raise ConfigurationError(f"Missing required environment variable: {key}")
    return value


def _get_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"Environment variable {key} must be an integer") from exc


def _get_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"Environment variable {key} must be a number") from exc


def parse_amounts(key: str, raw: str) -> FrozenSet[Decimal]:
    try:
        return frozenset(Decimal(item.strip()) for item in raw.split(",") if item.strip())
    except InvalidOperation as exc:
        raise ConfigurationError(f"Environment variable {key} must be a comma separated list of amounts") from exc
