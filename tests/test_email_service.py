import pytest
import resend

from billing_relay_svc.dependencies import get_email_service
from billing_relay_svc.email_service import (
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_CONFIRMED,
    WELCOME,
    EmailService,
    render_email,
)
from billing_relay_svc.errors import ConfigurationError, EmailDeliveryError


class FakeResend:
    """Records what would have been sent through the Resend API."""

    def __init__(self, error=None):
        self.error = error
        self.sent = []

    def send(self, params):
        if self.error:
            raise self.error
        self.sent.append(params)
        return {"id": f"email_{len(self.sent)}"}


@pytest.fixture
def fake_resend(monkeypatch):
    fake = FakeResend()
    monkeypatch.setattr(resend.Emails, "send", staticmethod(fake.send))
    return fake


def test_render_templates():
    subject, body = render_email(WELCOME, "Ana")
    assert subject == "Welcome to Memo Chess"
    assert "Hi Ana," in body

    subject, body = render_email(SUBSCRIPTION_CONFIRMED, None, {"planName": "Monthly Premium", "amount": "3.49",
                                                                 "currency": "EUR"})
    assert subject == "Subscription Confirmed - Memo Chess"
    assert "Hi Chess Player," in body
    assert "Monthly Premium" in body
    assert "3.49 EUR" in body

    subject, _ = render_email(SUBSCRIPTION_CANCELLED, "Ana")
    assert subject == "Subscription Cancelled - Memo Chess"


def test_render_escapes_names():
    _, body = render_email(WELCOME, "<script>")
    assert "<script>" not in body
    assert "&lt;script&gt;" in body


def test_render_unknown_type():
    with pytest.raises(ValueError, match="Invalid email type"):
        render_email("newsletter", "Ana")


def test_send_uses_resend(fake_resend):
    service = EmailService("re_test", from_email="Team <team@example.com>", app_url="https://app.example.com")
    message_id = service.send(WELCOME, "ana@example.com", "Ana")
    assert message_id == "email_1"
    params = fake_resend.sent[0]
    assert params["from"] == "Team <team@example.com>"
    assert params["to"] == ["ana@example.com"]
    assert "https://app.example.com/games.html" in params["html"]
    assert resend.api_key == "re_test"


@pytest.mark.parametrize("to, message", [
    (None, "Missing required fields: type and to"),
    ("not-an-address", "Invalid email address"),
])
def test_send_validates_recipient(fake_resend, to, message):
    with pytest.raises(ValueError, match=message):
        EmailService("re_test").send(WELCOME, to)
    assert fake_resend.sent == []


def test_send_without_api_key(fake_resend):
    with pytest.raises(ConfigurationError):
        EmailService(None).send(WELCOME, "ana@example.com")
    assert fake_resend.sent == []


def test_send_provider_failure(monkeypatch):
    fake = FakeResend(error=Exception("rate limited"))
    monkeypatch.setattr(resend.Emails, "send", staticmethod(fake.send))
    with pytest.raises(EmailDeliveryError):
        EmailService("re_test").send(WELCOME, "ana@example.com")


def test_send_quietly_reports_failures(monkeypatch):
    fake = FakeResend(error=Exception("rate limited"))
    monkeypatch.setattr(resend.Emails, "send", staticmethod(fake.send))
    assert EmailService("re_test").send_quietly(WELCOME, "ana@example.com") is False
    assert EmailService(None).send_quietly(WELCOME, "ana@example.com") is False


def test_email_endpoint(client, fake_resend):
    client.app.dependency_overrides[get_email_service] = lambda: EmailService("re_test")
    response = client.post("/api/emails", json={"type": "subscription_cancelled", "to": "ana@example.com",
                                                 "name": "Ana"})
    assert response.status_code == 200
    assert response.json() == {"success": True, "messageId": "email_1"}
    assert fake_resend.sent[0]["subject"] == "Subscription Cancelled - Memo Chess"


def test_email_endpoint_rejects_bad_input(client):
    response = client.post("/api/emails", json={"to": "ana@example.com"})
    assert response.status_code == 400
    response = client.post("/api/emails", json={"type": "newsletter", "to": "ana@example.com"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid email type"


def test_email_endpoint_without_api_key(client):
    response = client.post("/api/emails", json={"type": "welcome", "to": "ana@example.com"})
    assert response.status_code == 500
    assert response.json()["detail"] == "Email service not configured"


def test_email_endpoint_provider_failure(client, monkeypatch):
    fake = FakeResend(error=Exception("rate limited"))
    monkeypatch.setattr(resend.Emails, "send", staticmethod(fake.send))
    client.app.dependency_overrides[get_email_service] = lambda: EmailService("re_test")
    response = client.post("/api/emails", json={"type": "welcome", "to": "ana@example.com"})
    assert response.status_code == 500
    assert "Failed to send email" in response.json()["detail"]
