"""
Compliance Cloud - Email Service

Handles transactional email sending.
Supports SendGrid or SMTP, with a mock provider for development.

send_email returns the provider message id and raises DeliveryException
on failure, flagged transient when a retry may succeed.
"""

import logging
import smtplib
import socket
import ssl
import uuid
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import List, Optional

import httpx

from app.config import settings
from app.utils.error_handling import DeliveryException

logger = logging.getLogger(__name__)


class EmailProvider:
    """Email provider types."""
    SMTP = "smtp"
    SENDGRID = "sendgrid"
    MOCK = "mock"


@dataclass
class EmailMessage:
    """Email message data structure."""
    to: List[str]
    subject: str
    body_text: str
    body_html: Optional[str] = None
    cc: Optional[List[str]] = None
    reply_to: Optional[str] = None


SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailService:
    """Service for sending transactional emails."""

    def __init__(self, provider: Optional[str] = None):
        self.from_email = settings.email_from
        self.from_name = settings.mail_from_name
        self.configured_provider = provider or settings.email_provider

        # SMTP settings
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.mail_port
        self.smtp_username = settings.mail_username
        self.smtp_password = settings.mail_password
        self.smtp_use_tls = settings.mail_use_tls

        # SendGrid settings
        self.sendgrid_api_key = settings.sendgrid_api_key

        self.timeout = settings.email_timeout_seconds

    def _determine_provider(self) -> str:
        """Determine which email provider to use based on configuration."""
        if self.configured_provider:
            return self.configured_provider
        if self.sendgrid_api_key:
            return EmailProvider.SENDGRID
        elif self.smtp_host:
            return EmailProvider.SMTP
        else:
            return EmailProvider.MOCK

    @property
    def provider(self) -> str:
        return self._determine_provider()

    async def send_email(self, message: EmailMessage) -> str:
        """
        Send an email using the configured provider.

        Returns the provider message id.
        """
        provider = self._determine_provider()

        if provider == EmailProvider.SENDGRID:
            return await self._send_via_sendgrid(message)
        elif provider == EmailProvider.SMTP:
            return await self._send_via_smtp(message)
        elif provider == EmailProvider.MOCK:
            return await self._send_mock(message)
        raise DeliveryException(f"Unknown email provider '{provider}'", transient=False, provider=provider)

    async def _send_via_sendgrid(self, message: EmailMessage) -> str:
        """Send email via SendGrid API."""
        payload = {
            "personalizations": [
                {
                    "to": [{"email": email} for email in message.to],
                }
            ],
            "from": {
                "email": self.from_email,
                "name": self.from_name,
            },
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.body_text},
            ],
        }

        # Add HTML content if provided
        if message.body_html:
            payload["content"].append({
                "type": "text/html",
                "value": message.body_html,
            })

        # Add CC recipients
        if message.cc:
            payload["personalizations"][0]["cc"] = [
                {"email": email} for email in message.cc
            ]

        # Add reply-to
        if message.reply_to:
            payload["reply_to"] = {"email": message.reply_to}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    SENDGRID_URL,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self.sendgrid_api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TransportError as e:
            # Timeouts, refused and dropped connections
            raise DeliveryException(
                f"SendGrid unreachable: {e}",
                transient=True,
                provider=EmailProvider.SENDGRID,
                original_error=e,
            ) from e

        if response.status_code in (200, 202):
            message_id = response.headers.get("X-Message-Id") or f"sendgrid-{uuid.uuid4().hex}"
            logger.info(f"Email sent via SendGrid to {message.to}")
            return message_id

        transient = response.status_code == 429 or response.status_code >= 500
        logger.error(f"SendGrid API error: {response.status_code} - {response.text}")
        raise DeliveryException(
            f"SendGrid API error {response.status_code}: {response.text[:200]}",
            transient=transient,
            provider=EmailProvider.SENDGRID,
        )

    async def _send_via_smtp(self, message: EmailMessage) -> str:
        """Send email via SMTP."""
        message_id = make_msgid(domain=self.from_email.split("@")[-1] if "@" in self.from_email else None)

        msg = MIMEMultipart('alternative')
        msg['Subject'] = message.subject
        msg['From'] = f"{self.from_name} <{self.from_email}>"
        msg['To'] = ', '.join(message.to)
        msg['Message-ID'] = message_id

        if message.cc:
            msg['Cc'] = ', '.join(message.cc)

        if message.reply_to:
            msg['Reply-To'] = message.reply_to

        msg.attach(MIMEText(message.body_text, 'plain'))
        if message.body_html:
            msg.attach(MIMEText(message.body_html, 'html'))

        all_recipients = message.to.copy()
        if message.cc:
            all_recipients.extend(message.cc)

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                if self.smtp_use_tls:
                    server.starttls(context=ssl.create_default_context())
                if self.smtp_username and self.smtp_password:
                    server.login(self.smtp_username, self.smtp_password)
                server.sendmail(self.from_email, all_recipients, msg.as_string())
        except (smtplib.SMTPRecipientsRefused, smtplib.SMTPSenderRefused, smtplib.SMTPAuthenticationError) as e:
            raise DeliveryException(
                f"SMTP rejected message: {e}",
                transient=False,
                provider=EmailProvider.SMTP,
                original_error=e,
            ) from e
        except smtplib.SMTPResponseException as e:
            # 4xx replies are temporary, 5xx permanent
            raise DeliveryException(
                f"SMTP error {e.smtp_code}: {e.smtp_error!r}",
                transient=400 <= e.smtp_code < 500,
                provider=EmailProvider.SMTP,
                original_error=e,
            ) from e
        except (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError, socket.timeout, OSError) as e:
            raise DeliveryException(
                f"SMTP connection failed: {e}",
                transient=True,
                provider=EmailProvider.SMTP,
                original_error=e,
            ) from e

        logger.info(f"Email sent via SMTP to {message.to}")
        return message_id

    async def _send_mock(self, message: EmailMessage) -> str:
        """Mock email sending for development."""
        logger.info(f"[MOCK EMAIL] To: {message.to} | Subject: {message.subject}")
        logger.debug(f"[MOCK EMAIL] Body: {message.body_text[:200]}...")
        return f"mock-{uuid.uuid4().hex}"
