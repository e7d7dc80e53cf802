"""SMTP delivery for transactional email."""

import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid

from ..core.config import EmailSettings
from ..utils.exceptions import ConfigurationMissing, NotificationDeliveryError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class SmtpEmailSender:
    """Send multipart (text + html) mail through an SMTP server"""

    def __init__(self, settings: EmailSettings, timeout: int = 30):
        if not settings.configured:
            raise ConfigurationMissing(
                "Email service not configured. Please set up email credentials in the admin panel."
            )
        self.settings = settings
        self.timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        if self.settings.secure:
            return smtplib.SMTP_SSL(
                self.settings.host,
                self.settings.port,
                timeout=self.timeout,
                context=ssl.create_default_context(),
            )
        server = smtplib.SMTP(self.settings.host, self.settings.port, timeout=self.timeout)
        server.ehlo()
        if server.has_extn("starttls"):
            server.starttls(context=ssl.create_default_context())
            server.ehlo()
        return server

    def send_mail(self, to: str, subject: str, text: str, html: str) -> str:
        """Send one message and return its Message-ID."""
        msg = MIMEMultipart("alternative")
        msg["From"] = self.settings.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=False)
        message_id = make_msgid()
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(text, "plain", "utf-8"))
        msg.attach(MIMEText(html, "html", "utf-8"))

        try:
            server = self._connect()
            try:
                server.login(self.settings.user, self.settings.password)
                server.send_message(msg)
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email delivery failed", host=self.settings.host, to=to, error=str(e))
            raise NotificationDeliveryError(f"Failed to send email: {e}") from e

        logger.info("Email sent", to=to, subject=subject, message_id=message_id)
        return message_id
