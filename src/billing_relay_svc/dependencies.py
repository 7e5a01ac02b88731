from typing import Optional

from fastapi import Request

from billing_relay_svc.config import Settings
from billing_relay_svc.email_service import EmailService
from billing_relay_svc.stripe_integration import StripeIntegration


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_stripe_integration(request: Request) -> Optional[StripeIntegration]:
    """The Stripe client for this request, or ``None`` when no API key is configured."""
    settings: Settings = request.app.state.settings
    if not settings.stripe_api_key:
        return None
    return StripeIntegration(
        settings.stripe_api_key,
        max_retries=settings.stripe_max_retries,
        retry_delay=settings.stripe_retry_delay,
    )


def get_email_service(request: Request) -> EmailService:
    settings: Settings = request.app.state.settings
    return EmailService(settings.resend_api_key, from_email=settings.email_from, app_url=settings.app_url)
