"""
Outgoing email.

Two backends: ``console`` writes the message to the structured log (development
and tests), ``smtp`` delivers through an SMTP relay in a worker thread.
"""

import asyncio
import smtplib
from email.message import EmailMessage
from typing import Optional

import structlog

from tourbook.core.settings import Settings, get_settings
from tourbook.db.models import User

logger = structlog.get_logger(__name__)


class Mailer:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _build(self, to: str, subject: str, text: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.settings.EMAIL_FROM
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text)
        return message

    def _send_smtp(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.settings.SMTP_HOST, self.settings.SMTP_PORT, timeout=30) as smtp:
            if self.settings.SMTP_USERNAME:
                smtp.starttls()
                smtp.login(self.settings.SMTP_USERNAME, self.settings.SMTP_PASSWORD)
            smtp.send_message(message)

    async def send(self, to: str, subject: str, text: str) -> None:
        message = self._build(to, subject, text)
        if self.settings.EMAIL_BACKEND == "smtp":
            await asyncio.to_thread(self._send_smtp, message)
        else:
            logger.info("email_console_backend", to=to, subject=subject, body=text)
        logger.info("email_sent", to=to, subject=subject, backend=self.settings.EMAIL_BACKEND)

    async def send_welcome(self, user: User, url: str) -> None:
        first_name = user.name.split(" ")[0]
        await self.send(
            user.email,
            "Welcome to the Tour Booking family!",
            f"Hi {first_name},\n\nWelcome aboard! Complete your profile here: {url}\n",
        )

    async def send_password_reset(self, user: User, url: str) -> None:
        first_name = user.name.split(" ")[0]
        minutes = self.settings.PASSWORD_RESET_EXPIRES_MINUTES
        await self.send(
            user.email,
            f"Your password reset token (valid for only {minutes} minutes)",
            f"Hi {first_name},\n\nForgot your password? Submit a PATCH request with your new "
            f"password and password_confirm to: {url}\n\n"
            "If you didn't forget your password, please ignore this email.\n",
        )


def get_mailer() -> Mailer:
    return Mailer()
