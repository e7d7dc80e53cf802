"""Transactional email for purchase confirmations."""

from .email import SmtpEmailSender
from .notifier import PurchaseNotifier

__all__ = ["PurchaseNotifier", "SmtpEmailSender"]
