"""SMTP service for sending emails."""

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Optional

import aiosmtplib

from subca.models.config import SMTPEncryption, SMTPSettings

logger = logging.getLogger("subca")


class SMTPService:
    """Service for sending emails via SMTP."""

    def __init__(self, settings: SMTPSettings):
        """Initialize SMTP service.

        Args:
            settings: SMTP configuration settings
        """
        self.settings = settings

    def _client(self) -> aiosmtplib.SMTP:
        """Build a client honoring the configured transport security."""
        return aiosmtplib.SMTP(
            hostname=self.settings.host,
            port=self.settings.port,
            use_tls=self.settings.encryption == SMTPEncryption.SSL,
            start_tls=self.settings.encryption == SMTPEncryption.STARTTLS,
            timeout=self.settings.timeout_seconds,
        )

    async def send_email(
        self,
        recipient: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> tuple[bool, Optional[str], Optional[str]]:
        """Send an email.

        Args:
            recipient: Recipient email address
            subject: Email subject
            html_body: HTML email body
            text_body: Plain text email body

        Returns:
            Tuple of (success, message_id, error_message)
        """
        if not self.settings.enabled:
            return False, None, "SMTP is disabled"

        message = MIMEMultipart("alternative")
        message["From"] = f"{self.settings.sender_name} <{self.settings.sender_email}>"
        message["To"] = recipient
        message["Subject"] = subject
        message["Message-ID"] = make_msgid(domain=self.settings.sender_email.rpartition("@")[2] or None)
        message.attach(MIMEText(text_body, "plain"))
        message.attach(MIMEText(html_body, "html"))

        try:
            async with self._client() as smtp:
                if self.settings.username and self.settings.password:
                    await smtp.login(self.settings.username, self.settings.password)
                await smtp.send_message(message)
        except aiosmtplib.SMTPAuthenticationError as e:
            error_msg = f"SMTP authentication failed: {e}"
            logger.error(error_msg)
            return False, None, error_msg
        except aiosmtplib.SMTPRecipientsRefused as e:
            error_msg = f"Recipient refused: {e}"
            logger.error(error_msg)
            return False, None, error_msg
        except (aiosmtplib.SMTPException, OSError) as e:
            error_msg = f"Failed to send email: {e}"
            logger.error(error_msg)
            return False, None, error_msg

        logger.info(f"Email sent to {recipient} (subject: {subject})")
        return True, message["Message-ID"], None

    async def send_bulk_email(
        self,
        recipients: list[str],
        subject: str,
        html_body: str,
        text_body: str,
    ) -> list[tuple[str, bool, Optional[str], Optional[str]]]:
        """Send email to multiple recipients.

        Returns:
            List of tuples (recipient, success, message_id, error_message)
        """
        results = []
        for recipient in recipients:
            success, message_id, error = await self.send_email(recipient, subject, html_body, text_body)
            results.append((recipient, success, message_id, error))
        return results
