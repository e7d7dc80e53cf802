from datetime import timedelta

import pytest

from storefront.core.config import AppSettings, CheckoutSettings, Settings, SiteConfig
from storefront.payments import PaymentMethod, StripeCheckout, Video, build_orchestrator
from storefront.utils.exceptions import ConfigurationMissing

SITE_CONFIG = SiteConfig(
    site_name="MyVideos",
    paypal_client_id="client-id",
    paypal_client_secret="client-secret",
    stripe_secret_key="sk_test_123",
    email_host="smtp.test",
    email_user="shop@test.com",
    email_pass="app-password",
)


def make_settings(**checkout):
    return Settings(
        app=AppSettings(base_url="https://shop.test/"),
        checkout=CheckoutSettings(**checkout),
    )


def test_wires_checkout_settings(store, clock):
    settings = make_settings(
        countdown_seconds=3,
        paypal_api_base="https://api-m.paypal.com",
        verify_stripe_completion=True,
    )

    orchestrator = build_orchestrator(settings, SITE_CONFIG, store=store, clock=clock)

    assert orchestrator.base_url == "https://shop.test"
    assert orchestrator.countdown == timedelta(seconds=3)
    assert orchestrator.paypal.api_base == "https://api-m.paypal.com"
    assert isinstance(orchestrator.stripe, StripeCheckout)
    assert orchestrator.stripe.discover_payment_methods is True
    assert orchestrator.verifier is orchestrator.stripe
    assert orchestrator.entitlements is not None
    assert orchestrator.notifier.settings.host == "smtp.test"
    assert orchestrator.site_config.site_name == "MyVideos"


def test_verification_can_be_disabled(clock):
    settings = make_settings(verify_stripe_completion=False)
    orchestrator = build_orchestrator(settings, SITE_CONFIG, clock=clock)
    assert orchestrator.verifier is None
    assert orchestrator.entitlements is None


def test_missing_credentials_leave_providers_unconfigured(clock):
    orchestrator = build_orchestrator(make_settings(), SiteConfig(), clock=clock)
    video = Video(id="v1", title="Wellness Program", price="9.99")

    assert orchestrator.paypal is None
    assert orchestrator.stripe is None
    assert orchestrator.verifier is None
    with pytest.raises(ConfigurationMissing):
        orchestrator.start_purchase(PaymentMethod.PAYPAL, video)
    with pytest.raises(ConfigurationMissing):
        orchestrator.start_purchase(PaymentMethod.STRIPE, video)
