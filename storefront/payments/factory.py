"""Wire a PaymentOrchestrator from process settings and the site configuration."""

from __future__ import annotations

from datetime import timedelta
from typing import Callable, Optional

from ..core.clock import Clock
from ..core.config import EmailSettings, Settings, SiteConfig
from ..notify import PurchaseNotifier, SmtpEmailSender
from ..stores.documents import DocumentStore
from ..utils.logger import get_logger
from .entitlements import EntitlementStore
from .orchestrator import PaymentOrchestrator
from .providers import CompletionVerifier, PayPalClient, StripeCheckout, StripeProvider

logger = get_logger(__name__)


def discovering_stripe(secret_key: str) -> StripeCheckout:
    """Stripe client that asks the account which payment methods it accepts."""
    return StripeCheckout(secret_key, discover_payment_methods=True)


def build_orchestrator(
    settings: Settings,
    site_config: SiteConfig,
    store: Optional[DocumentStore] = None,
    clock: Optional[Clock] = None,
    stripe_factory: Callable[[str], StripeProvider] = discovering_stripe,
    sender_factory: Callable[[EmailSettings], SmtpEmailSender] = SmtpEmailSender,
) -> PaymentOrchestrator:
    """
    Providers are only created when their credentials are present, so a
    site without PayPal keys simply cannot start a PayPal purchase.
    """
    checkout = settings.checkout

    paypal = None
    if site_config.paypal_client_id and site_config.paypal_client_secret:
        paypal = PayPalClient(
            site_config.paypal_client_id,
            site_config.paypal_client_secret,
            api_base=checkout.paypal_api_base,
        )

    stripe = stripe_factory(site_config.stripe_secret_key) if site_config.stripe_secret_key else None

    verifier = None
    if checkout.verify_stripe_completion:
        if isinstance(stripe, CompletionVerifier):
            verifier = stripe
        else:
            logger.warning("Stripe completion verification enabled but no verifier is available")

    logger.info(
        "Payment orchestrator configured",
        paypal=paypal is not None,
        stripe=stripe is not None,
        verify_stripe_completion=verifier is not None,
        countdown_seconds=checkout.countdown_seconds,
    )
    return PaymentOrchestrator(
        paypal=paypal,
        stripe=stripe,
        notifier=PurchaseNotifier.from_site_config(site_config, sender_factory=sender_factory),
        entitlements=EntitlementStore(store) if store is not None else None,
        verifier=verifier,
        site_config=site_config,
        base_url=settings.app.base_url,
        countdown=timedelta(seconds=checkout.countdown_seconds),
        clock=clock,
    )
