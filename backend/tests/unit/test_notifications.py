from datetime import datetime, timezone

import aiosmtplib
import pytest

from eventsphere.notifications import mailer as mailer_module
from eventsphere.notifications.mailer import (
    PermanentEmailError,
    SMTPEmailSender,
    TransientEmailError,
    mask_email,
)
from eventsphere.notifications.service import NotificationMailer, format_changes
from eventsphere.notifications.templates import TemplateRenderer
from eventsphere.settings import settings


@pytest.fixture
def sender():
    return SMTPEmailSender(mock=True)


@pytest.fixture
def notifications(sender):
    return NotificationMailer(TemplateRenderer(), sender)


def test_format_changes_renders_timestamps():
    changes = format_changes({
        "start_time": {"old": "2026-04-01T18:00:00Z", "new": datetime(2026, 4, 2, 19, 30, tzinfo=timezone.utc)},
        "location": {"old": "Hall A", "new": "Hall B"},
    })
    assert changes["start_time"] == {"old": "Wed 01 Apr 2026, 18:00 UTC", "new": "Thu 02 Apr 2026, 19:30 UTC"}
    assert changes["location"] == {"old": "Hall A", "new": "Hall B"}


@pytest.mark.asyncio
async def test_welcome_subject_and_layout(notifications, sender):
    await notifications.send_welcome("ada@example.com", "Ada")
    [mail] = list(sender.outbox)
    assert mail.to == "ada@example.com"
    assert mail.subject == f"Welcome to {settings.app_name}!"
    assert "Ada" in mail.html
    assert settings.app_name in mail.html


@pytest.mark.asyncio
async def test_event_update_lists_changes(notifications, sender):
    await notifications.send_event_update(
        "ada@example.com",
        "Ada",
        "Rooftop Jazz",
        {"location": {"old": "Hall A", "new": "Hall B"}},
        "e1",
    )
    [mail] = list(sender.outbox)
    assert mail.subject == "Update: Rooftop Jazz"
    assert "Location changed:" in mail.html
    assert "Hall B" in mail.html
    assert "/events/e1" in mail.html


@pytest.mark.asyncio
async def test_template_values_are_escaped(notifications, sender):
    await notifications.send_welcome("ada@example.com", "<script>alert(1)</script>")
    [mail] = list(sender.outbox)
    assert "<script>" not in mail.html
    assert "&lt;script&gt;" in mail.html


@pytest.mark.asyncio
async def test_invitation_links_to_event(notifications, sender):
    await notifications.send_invitation("bo@example.com", "Bo", "Ada", "Gala", "e42")
    [mail] = list(sender.outbox)
    assert mail.subject == "Invitation: Gala"
    assert f"{settings.client_url.rstrip('/')}/events/e42" in mail.html


@pytest.mark.asyncio
async def test_verification_and_community_messages(notifications, sender):
    await notifications.send_verification("bo@example.com", "Bo", "482913")
    await notifications.send_community_invite("bo@example.com", "Hikers", "Ada")
    await notifications.send_community_event("bo@example.com", "Bo", "Hikers", "Trail Day", "e7")
    await notifications.send_recurring_created("bo@example.com", "Bo", "Book Club", "Tue Mar 31 2026")
    subjects = [mail.subject for mail in sender.outbox]
    assert subjects == [
        f"Verify your {settings.app_name} account",
        "Invitation: Join Hikers",
        "New Event in Hikers",
        "New Event: Book Club",
    ]
    assert "482913" in sender.outbox[0].html
    assert "Tue Mar 31 2026" in sender.outbox[3].html


def test_mask_email_is_stable_and_opaque():
    assert mask_email("Ada@Example.com") == mask_email("ada@example.com")
    assert "ada" not in mask_email("ada@example.com")
    assert len(mask_email("ada@example.com")) == 12


def test_sender_without_credentials_runs_in_mock_mode():
    assert SMTPEmailSender(username="", password="").mock is True
    assert SMTPEmailSender(username="user", password="secret").mock is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, expected",
    [
        (aiosmtplib.SMTPRecipientsRefused([]), PermanentEmailError),
        (aiosmtplib.SMTPResponseException(550, "mailbox unavailable"), PermanentEmailError),
        (aiosmtplib.SMTPResponseException(451, "try again later"), TransientEmailError),
        (aiosmtplib.SMTPConnectError("refused"), TransientEmailError),
        (ConnectionRefusedError("refused"), TransientEmailError),
    ],
)
async def test_smtp_failures_are_classified(monkeypatch, error, expected):
    async def _fail(*args, **kwargs):
        raise error

    monkeypatch.setattr(mailer_module.aiosmtplib, "send", _fail)
    sender = SMTPEmailSender(username="user", password="secret")
    with pytest.raises(expected):
        await sender.send("ada@example.com", "Hi", "<p>Hi</p>")


@pytest.mark.asyncio
async def test_real_send_uses_starttls_on_587(monkeypatch):
    calls = {}

    async def _send(message, **kwargs):
        calls.update(kwargs)
        calls["to"] = message["To"]

    monkeypatch.setattr(mailer_module.aiosmtplib, "send", _send)
    sender = SMTPEmailSender(host="smtp.example.com", port=587, username="user", password="secret", use_tls=True)
    await sender.send("ada@example.com", "Hi", "<p>Hi</p>")
    assert calls["start_tls"] is True
    assert calls["use_tls"] is False
    assert calls["hostname"] == "smtp.example.com"
    assert calls["to"] == "ada@example.com"
