"""Transactional emails sent through Resend."""

import html
import logging
import re
from typing import Any, Dict, Optional, Tuple

import resend

from billing_relay_svc.config import DEFAULT_APP_URL, DEFAULT_EMAIL_FROM
from billing_relay_svc.errors import ConfigurationError, EmailDeliveryError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DEFAULT_NAME = "Chess Player"

WELCOME = "welcome"
SUBSCRIPTION_CONFIRMED = "subscription_confirmed"
SUBSCRIPTION_CANCELLED = "subscription_cancelled"
EMAIL_TYPES = (WELCOME, SUBSCRIPTION_CONFIRMED, SUBSCRIPTION_CANCELLED)

_LAYOUT = """<!DOCTYPE html>
<html>
    <body style="font-family: 'Segoe UI', Tahoma, sans-serif; background-color: #f5f5f5; color: #2c3e50;">
        <div style="max-width: 600px; margin: 0 auto; background-color: #ffffff; border-radius: 12px; padding: 40px;">
            <h1 style="font-weight: 400; color: #1e3a8a; text-align: center;">{title}</h1>
            <p style="font-size: 18px;">Hi {name},</p>
            {body}
            <div style="border-top: 1px solid #e5e7eb; padding-top: 20px; text-align: center;">
                <p style="color: #6b7280; font-size: 14px;">The Memo Chess Team</p>
            </div>
        </div>
    </body>
</html>
"""


def _button(url: str, label: str) -> str:
    return (
        f'<p style="text-align: center; margin: 30px 0;"><a href="{url}" '
        'style="background-color: #1e3a8a; color: #ffffff; padding: 14px 28px; '
        f'text-decoration: none; border-radius: 6px;">{label}</a></p>'
    )


def render_email(email_type: str, name: Optional[str], data: Optional[Dict[str, Any]] = None,
                 app_url: str = DEFAULT_APP_URL) -> Tuple[str, str]:
    """
    Build ``(subject, html)`` for one of :data:`EMAIL_TYPES`.

    :raises ValueError: for an unknown email type.
    """
    data = data or {}
    name = html.escape(name or DEFAULT_NAME)

    if email_type == WELCOME:
        title = "Welcome to Memo Chess"
        subject = title
        body = (
            "<p>Welcome to Memo Chess! We're excited to have you join our community "
            "of blindfold chess players.</p>"
            + _button(f"{app_url}/games.html", "Start Training")
        )
    elif email_type == SUBSCRIPTION_CONFIRMED:
        title = "Subscription Confirmed"
        subject = "Subscription Confirmed - Memo Chess"
        plan_name = html.escape(str(data.get("planName") or "Premium"))
        amount = html.escape(str(data.get("amount") or "N/A"))
        currency = html.escape(str(data.get("currency") or "USD"))
        body = (
            "<p>Thank you for subscribing to Memo Chess Premium! "
            "Your subscription has been successfully activated.</p>"
            '<table style="width: 100%; background-color: #f5f5f5; padding: 20px; border-radius: 8px;">'
            f"<tr><td>Plan:</td><td>{plan_name}</td></tr>"
            f"<tr><td>Amount:</td><td>{amount} {currency}</td></tr>"
            "<tr><td>Status:</td><td>Active</td></tr>"
            "</table>"
            + _button(f"{app_url}/games.html", "Start Training")
            + f'<p>You can manage your subscription anytime from your <a href="{app_url}/profile.html">profile page</a>.</p>'
        )
    elif email_type == SUBSCRIPTION_CANCELLED:
        title = "Subscription Cancelled"
        subject = "Subscription Cancelled - Memo Chess"
        body = (
            "<p>Your Memo Chess Premium subscription has been cancelled. "
            "You keep premium access until the end of the current billing period.</p>"
            "<p>We're sorry to see you go. You can resubscribe at any time.</p>"
            + _button(f"{app_url}/pricing.html", "View Plans")
        )
    else:
        raise ValueError("Invalid email type")

    return subject, _LAYOUT.format(title=title, name=name, body=body)


class EmailService:
    """Sends the service's transactional emails via the Resend API."""

    def __init__(self, api_key: Optional[str], from_email: str = DEFAULT_EMAIL_FROM,
                 app_url: str = DEFAULT_APP_URL) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self.app_url = app_url
        self.enabled = bool(api_key)

    def send(self, email_type: str, to: Optional[str], name: Optional[str] = None,
             data: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """
        Render and send one email.

        :return: The provider's message id.
        :raises ValueError: on a missing recipient, a malformed address or an unknown type.
        :raises ConfigurationError: if no Resend API key is configured.
        :raises EmailDeliveryError: if Resend fails to send the message.
        """
        if not email_type or not to:
            raise ValueError("Missing required fields: type and to")
        if not EMAIL_PATTERN.match(to):
            raise ValueError("Invalid email address")
        subject, body = render_email(email_type, name, data, self.app_url)
        if not self.enabled:
            raise ConfigurationError("Email service not configured: RESEND_API_KEY is not set")

        resend.api_key = self.api_key
        try:
            sent = resend.Emails.send({
                "from": self.from_email,
                "to": [to],
                "subject": subject,
                "html": body,
            })
        except Exception as e:
            logging.error(f"[email] Resend API error for {to}: {e}", exc_info=True)
            raise EmailDeliveryError(f"Failed to send email: {e}") from e

        message_id = sent.get("id") if isinstance(sent, dict) else getattr(sent, "id", None)
        logging.info(f"[email] {email_type} email sent to {to}: {message_id}")
        return message_id

    def send_quietly(self, email_type: str, to: str, name: Optional[str] = None,
                     data: Optional[Dict[str, Any]] = None) -> bool:
        """Like :meth:`send`, but failures are logged as warnings and reported as ``False``."""
        if not self.enabled:
            logging.warning(f"[email] RESEND_API_KEY not set, skipping {email_type} email to {to}")
            return False
        try:
            self.send(email_type, to, name, data)
        except Exception as e:
            logging.warning(f"[email] Could not send {email_type} email to {to} (non-critical): {e}")
            return False
        return True
