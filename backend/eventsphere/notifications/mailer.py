"""SMTP delivery for notification emails."""

from __future__ import annotations

import hashlib
import logging
import re
from collections import deque
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional, Protocol

import aiosmtplib

from eventsphere.settings import settings

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>?")


class EmailDeliveryError(Exception):
    """Base class for delivery failures."""


class TransientEmailError(EmailDeliveryError):
    """Delivery may succeed on retry (connection, timeout, 4xx)."""


class PermanentEmailError(EmailDeliveryError):
    """Delivery will not succeed on retry (rejected recipient, auth, 5xx)."""


@dataclass(frozen=True)
class SentEmail:
    to: str
    subject: str
    html: str


class EmailSender(Protocol):
    async def send(self, to: str, subject: str, html: str) -> None:
        ...


def mask_email(email: str) -> str:
    return hashlib.sha256(email.lower().encode("utf-8")).hexdigest()[:12]


def _classify(exc: Exception) -> EmailDeliveryError:
    if isinstance(exc, (aiosmtplib.SMTPRecipientsRefused, aiosmtplib.SMTPAuthenticationError)):
        return PermanentEmailError(str(exc))
    if isinstance(exc, aiosmtplib.SMTPResponseException) and exc.code >= 500:
        return PermanentEmailError(f"{exc.code} {exc.message}")
    return TransientEmailError(str(exc) or exc.__class__.__name__)


class SMTPEmailSender:
    """Sends through aiosmtplib; without credentials it runs in mock mode and only logs."""

    def __init__(
        self,
        *,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_email: Optional[str] = None,
        use_tls: Optional[bool] = None,
        timeout: Optional[float] = None,
        mock: Optional[bool] = None,
    ) -> None:
        self.host = host or settings.smtp_host
        self.port = int(port or settings.smtp_port)
        self.username = username if username is not None else settings.smtp_user
        self.password = password if password is not None else settings.smtp_password
        self.from_email = from_email or settings.smtp_from_email
        self.tls = settings.smtp_tls if use_tls is None else use_tls
        self.timeout = timeout if timeout is not None else settings.smtp_timeout_seconds
        self.mock = (not (self.username and self.password)) if mock is None else mock
        self.outbox: deque[SentEmail] = deque(maxlen=100)
        if self.mock:
            logger.warning("SMTP credentials not found. Email service running in MOCK mode.")

    def _build(self, to: str, subject: str, html: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = f'"{settings.app_name}" <{self.from_email}>'
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(html, subtype="html")
        return msg

    async def send(self, to: str, subject: str, html: str) -> None:
        if self.mock:
            self.outbox.append(SentEmail(to=to, subject=subject, html=html))
            preview = _TAG_RE.sub("", html).strip()
            logger.info(
                "[MOCK EMAIL] To: %s Subject: %s",
                mask_email(to),
                subject,
                extra={"preview_chars": len(preview)},
            )
            return

        # STARTTLS on 587, implicit TLS on 465.
        start_tls = bool(self.tls) and self.port == 587
        use_tls = bool(self.tls) and self.port == 465
        try:
            await aiosmtplib.send(
                self._build(to, subject, html),
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                start_tls=start_tls,
                use_tls=use_tls,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            error = _classify(exc)
            logger.error("Failed to send email to %s: %s", mask_email(to), error)
            raise error from exc
        logger.info("Email sent to %s", mask_email(to))


__all__ = [
    "EmailDeliveryError",
    "EmailSender",
    "PermanentEmailError",
    "SMTPEmailSender",
    "SentEmail",
    "TransientEmailError",
    "mask_email",
]
