"""
Purchase confirmation notifier.

Best effort: callers completing a purchase catch NotificationDeliveryError
and ConfigurationMissing and carry on.
"""

from __future__ import annotations

import asyncio
from html import escape
from typing import Callable, Optional

from ..core.config import EmailSettings, SiteConfig, format_support_contact
from ..utils.exceptions import ConfigurationMissing
from ..utils.logger import get_logger
from .email import SmtpEmailSender

logger = get_logger(__name__)

CONFIRMATION_SUBJECT = "Please confirm your PayPal order receipt"
TEST_SUBJECT = "Email Configuration Test"

CONFIRMATION_TEXT = """\
Hi {buyer_name},

I hope you're doing well!

I'm kindly asking if you could please confirm the receipt of your order on PayPal. This will help release the pending funds on my side.

Here's how you can do it:

Log in to your PayPal account.

Go to Activity and find the transaction with this ID:
Transaction ID: {transaction_id}

Click Confirm Receipt (or Confirm Order Received).

Please let me know if you need any help. I'd really appreciate your support!

If you haven't received your content yet or have any questions, please contact me via Telegram: {support_contact}

Best regards,
{seller_name}
"""

CONFIRMATION_HTML = """\
<p>Hi {buyer_name},</p>
<p>I hope you're doing well!</p>
<p>I'm kindly asking if you could please confirm the receipt of your order on PayPal. This will help release the pending funds on my side.</p>
<p>Here's how you can do it:</p>
<ol>
  <li>Log in to your PayPal account.</li>
  <li>Go to Activity and find the transaction with this ID:<br/>
  <strong>Transaction ID: {transaction_id}</strong></li>
  <li>Click <strong>Confirm Receipt</strong> (or <strong>Confirm Order Received</strong>).</li>
</ol>
<p>Please let me know if you need any help. I'd really appreciate your support!</p>
<p><strong>Haven't received your content?</strong> If you're having any issues accessing your purchase or have any questions, please contact me via Telegram: {support_contact}</p>
<p>Best regards,<br/>
{seller_name}</p>
"""

TEST_TEXT = "If you received this email, your email configuration is working correctly!"

TEST_HTML = """\
<h2>Email Configuration Test</h2>
<p>This is a test email to verify your email configuration.</p>
<p>If you received this email, your email settings are working correctly!</p>
<hr>
<h3>Configuration Details:</h3>
<ul>
  <li><strong>SMTP Host:</strong> {host}</li>
  <li><strong>SMTP Port:</strong> {port}</li>
  <li><strong>Secure Connection:</strong> {secure}</li>
  <li><strong>Email User:</strong> {user}</li>
</ul>
<p>You can now send PayPal confirmation emails through your application.</p>
"""


class PurchaseNotifier:
    def __init__(
        self,
        settings: EmailSettings,
        telegram_username: str = "",
        sender_factory: Callable[[EmailSettings], SmtpEmailSender] = SmtpEmailSender,
    ):
        self.settings = settings
        self.telegram_username = telegram_username
        self.sender_factory = sender_factory

    @classmethod
    def from_site_config(
        cls,
        site_config: SiteConfig,
        sender_factory: Callable[[EmailSettings], SmtpEmailSender] = SmtpEmailSender,
    ) -> "PurchaseNotifier":
        return cls(
            site_config.email_settings(),
            telegram_username=site_config.telegram_username,
            sender_factory=sender_factory,
        )

    def _sender(self) -> SmtpEmailSender:
        if not self.settings.configured:
            raise ConfigurationMissing(
                "Email service not configured. Please set up email credentials in the admin panel."
            )
        return self.sender_factory(self.settings)

    async def send_purchase_confirmation(
        self,
        buyer_email: str,
        transaction_id: str,
        buyer_name: Optional[str] = None,
        seller_name: Optional[str] = None,
    ) -> str:
        """
        Ask the buyer to confirm receipt of their order.

        Returns the message id. Raises ValueError for a missing email or
        transaction id, ConfigurationMissing without credentials, and
        NotificationDeliveryError when SMTP fails.
        """
        if not buyer_email or not transaction_id:
            raise ValueError("Required parameters missing")
        sender = self._sender()

        values = {
            "buyer_name": buyer_name or "there",
            "transaction_id": transaction_id,
            "support_contact": format_support_contact(self.telegram_username),
            "seller_name": seller_name or "Seller",
        }
        text = CONFIRMATION_TEXT.format(**values)
        html = CONFIRMATION_HTML.format(**{k: escape(str(v)) for k, v in values.items()})

        message_id = await asyncio.to_thread(
            sender.send_mail, buyer_email, CONFIRMATION_SUBJECT, text, html
        )
        logger.info(
            "Purchase confirmation sent",
            transaction_id=transaction_id,
            message_id=message_id,
        )
        return message_id

    async def send_test_email(self, test_email: str) -> str:
        """Send the configuration diagnostic message; no purchase state involved."""
        if not test_email:
            raise ValueError("Test email address is required")
        sender = self._sender()
        html = TEST_HTML.format(
            host=escape(self.settings.host),
            port=self.settings.port,
            secure="Yes" if self.settings.secure else "No",
            user=escape(self.settings.user),
        )
        return await asyncio.to_thread(sender.send_mail, test_email, TEST_SUBJECT, TEST_TEXT, html)
