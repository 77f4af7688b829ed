"""Email delivery for the notification outbox via SMTP."""

import logging
from email.message import EmailMessage

import aiosmtplib

from staybook.core.config import Settings
from staybook.models.notification import NotificationOutbox
from staybook.models.user import User
from staybook.services.notifications import DeliveryError

logger = logging.getLogger(__name__)


class EmailSender:
    def __init__(self, settings: Settings):
        self._host = settings.smtp_host
        self._port = settings.smtp_port
        self._from = settings.smtp_from
        self._app_name = settings.app_name

    def build_message(self, notification: NotificationOutbox, user: User) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._from
        message["To"] = user.email
        message["Subject"] = f"{notification.title} | {self._app_name}"
        message.set_content(f"Hi {user.name},\n\n{notification.body}\n\n{self._app_name}")
        return message

    async def send(self, notification: NotificationOutbox, user: User) -> None:
        """Send a plain-text email via SMTP."""
        message = self.build_message(notification, user)
        try:
            await aiosmtplib.send(message, hostname=self._host, port=self._port)
        except (aiosmtplib.SMTPException, OSError) as exc:
            raise DeliveryError(f"SMTP delivery to {user.email} failed: {exc}") from exc
        logger.info("Email notification %s sent to %s", notification.id, user.email)
