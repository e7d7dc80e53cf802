import asyncio
from pathlib import Path
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from storefront import __version__
from storefront.core.config import CheckoutSettings, Settings, StorageSettings
from storefront.payments import GENERIC_PRODUCT_NAMES, CheckoutSession
from storefront.stores import SITE_CONFIG_COLLECTION, JsonDocumentStore
from storefront.utils.exceptions import NotificationDeliveryError, PaymentProviderError
from web.app import create_app


class FakeStripe:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    async def create_checkout_session(self, amount_minor_units, currency, description, success_url, cancel_url):
        if self.error:
            raise self.error
        self.calls.append((amount_minor_units, currency, description, success_url, cancel_url))
        return CheckoutSession(id="cs_test_1", url="https://checkout.stripe.com/pay/cs_test_1")


class ApiHarness:
    def __init__(self, tmp_dir: Path, site_config=None, checkout=None):
        self.store = JsonDocumentStore(tmp_dir)
        if site_config is not None:
            asyncio.run(self.store.create_document(SITE_CONFIG_COLLECTION, "cfg", site_config))
        self.stripe = FakeStripe()
        self.stripe_keys = []
        self.sender = Mock()
        self.sender.send_mail.return_value = "<msg-1@smtp.test>"
        self.sender_factory = Mock(return_value=self.sender)
        app = create_app(
            settings=Settings(
                storage=StorageSettings(data_dir=str(tmp_dir)),
                checkout=checkout or CheckoutSettings(),
            ),
            store=self.store,
            stripe_factory=self._stripe_factory,
            sender_factory=self.sender_factory,
        )
        self.client = TestClient(app)

    def _stripe_factory(self, secret_key):
        self.stripe_keys.append(secret_key)
        return self.stripe


EMAIL_CONFIG = {
    "site_name": "VideosPlus",
    "email_host": "smtp.test",
    "email_port": 587,
    "email_user": "seller@test.com",
    "email_pass": "app-password",
    "telegram_username": "seller_support",
}

CHECKOUT_BODY = {
    "amount": 999,
    "currency": "usd",
    "name": "Learning Resources",
    "success_url": "https://videos.test/video/v1?payment_success=true",
    "cancel_url": "https://videos.test/video/v1?payment_canceled=true",
}


@pytest.mark.parametrize(
    "path", ["/api/create-checkout-session", "/api/send-paypal-confirmation", "/api/test-email-config"]
)
def test_post_only_endpoints_reject_get(tmp_path, path):
    harness = ApiHarness(tmp_path)
    res = harness.client.get(path)
    assert res.status_code == 405
    assert res.json() == {"error": "Method not allowed"}


class TestCreateCheckoutSession:
    def test_missing_parameters(self, tmp_path):
        harness = ApiHarness(tmp_path, {"stripe_secret_key": "sk_test_123"})
        res = harness.client.post("/api/create-checkout-session", json={"amount": 999})
        assert res.status_code == 400
        assert res.json() == {"error": "Missing required parameters"}

    def test_invalid_json_body(self, tmp_path):
        harness = ApiHarness(tmp_path, {"stripe_secret_key": "sk_test_123"})
        res = harness.client.post(
            "/api/create-checkout-session",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )
        assert res.status_code == 400

    def test_missing_secret_key(self, tmp_path):
        harness = ApiHarness(tmp_path)
        res = harness.client.post("/api/create-checkout-session", json=CHECKOUT_BODY)
        assert res.status_code == 500
        assert "Stripe secret key" in res.json()["error"]
        assert harness.stripe_keys == []

    def test_secret_key_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_env")
        harness = ApiHarness(tmp_path)
        res = harness.client.post("/api/create-checkout-session", json=CHECKOUT_BODY)
        assert res.status_code == 200, res.text
        assert harness.stripe_keys == ["sk_test_env"]

    def test_creates_session_with_generic_name(self, tmp_path):
        harness = ApiHarness(tmp_path, {"stripe_secret_key": "sk_test_123"})

        res = harness.client.post("/api/create-checkout-session", json=CHECKOUT_BODY)

        assert res.status_code == 200, res.text
        assert res.json()["sessionId"] == "cs_test_1"
        assert harness.stripe_keys == ["sk_test_123"]
        amount, currency, description, success_url, cancel_url = harness.stripe.calls[0]
        assert amount == 999
        assert currency == "usd"
        assert description in GENERIC_PRODUCT_NAMES
        assert description != "Learning Resources"
        assert success_url == CHECKOUT_BODY["success_url"]
        assert cancel_url == CHECKOUT_BODY["cancel_url"]

    def test_site_config_unreadable(self, tmp_path):
        harness = ApiHarness(tmp_path)
        (tmp_path / "site_config.json").write_text("{not json", encoding="utf-8")

        res = harness.client.post("/api/create-checkout-session", json=CHECKOUT_BODY)

        assert res.status_code == 500
        assert res.json()["error"] == "Failed to fetch Stripe credentials from site configuration"
        assert "details" in res.json()
        assert harness.stripe_keys == []

    def test_currency_defaults_to_checkout_setting(self, tmp_path):
        harness = ApiHarness(
            tmp_path, {"stripe_secret_key": "sk_test_123"}, checkout=CheckoutSettings(currency="EUR")
        )
        body = {k: v for k, v in CHECKOUT_BODY.items() if k != "currency"}

        res = harness.client.post("/api/create-checkout-session", json=body)

        assert res.status_code == 200, res.text
        assert harness.stripe.calls[0][1] == "eur"

    def test_provider_error(self, tmp_path):
        harness = ApiHarness(tmp_path, {"stripe_secret_key": "sk_test_123"})
        harness.stripe.error = PaymentProviderError("Invalid API Key provided", provider="stripe")

        res = harness.client.post("/api/create-checkout-session", json=CHECKOUT_BODY)

        assert res.status_code == 500
        assert res.json() == {"error": "Invalid API Key provided"}


class TestSendPayPalConfirmation:
    def test_missing_parameters(self, tmp_path):
        harness = ApiHarness(tmp_path, EMAIL_CONFIG)
        res = harness.client.post("/api/send-paypal-confirmation", json={"buyerEmail": "payer@example.com"})
        assert res.status_code == 400
        assert res.json() == {"error": "Required parameters missing"}

    def test_email_not_configured(self, tmp_path):
        harness = ApiHarness(tmp_path)
        res = harness.client.post(
            "/api/send-paypal-confirmation",
            json={"buyerEmail": "payer@example.com", "transactionId": "TX-1"},
        )
        assert res.status_code == 500
        assert "Email service not configured" in res.json()["error"]
        harness.sender_factory.assert_not_called()

    def test_sends_confirmation(self, tmp_path):
        harness = ApiHarness(tmp_path, EMAIL_CONFIG)

        res = harness.client.post(
            "/api/send-paypal-confirmation",
            json={
                "buyerEmail": "payer@example.com",
                "buyerName": "Ann",
                "transactionId": "3C679366HH908993F",
                "isCompany": "VideosPlus",
            },
        )

        assert res.status_code == 200, res.text
        assert res.json() == {"success": True, "messageId": "<msg-1@smtp.test>"}
        to, subject, text, html = harness.sender.send_mail.call_args.args
        assert to == "payer@example.com"
        assert "3C679366HH908993F" in text
        assert "@seller_support" in text
        settings = harness.sender_factory.call_args.args[0]
        assert settings.host == "smtp.test"

    def test_delivery_failure(self, tmp_path):
        harness = ApiHarness(tmp_path, EMAIL_CONFIG)
        harness.sender.send_mail.side_effect = NotificationDeliveryError("Failed to send email: timeout")

        res = harness.client.post(
            "/api/send-paypal-confirmation",
            json={"buyerEmail": "payer@example.com", "transactionId": "TX-1"},
        )

        assert res.status_code == 500
        assert res.json() == {"error": "Failed to send email: timeout", "success": False}


class TestEmailConfigCheck:
    def test_missing_address(self, tmp_path):
        harness = ApiHarness(tmp_path, EMAIL_CONFIG)
        res = harness.client.post("/api/test-email-config", json={})
        assert res.status_code == 400
        assert res.json() == {"error": "Test email address is required"}

    def test_sends_test_email(self, tmp_path):
        harness = ApiHarness(tmp_path, EMAIL_CONFIG)

        res = harness.client.post("/api/test-email-config", json={"testEmail": "admin@example.com"})

        assert res.status_code == 200, res.text
        body = res.json()
        assert body["success"] is True
        assert body["messageId"] == "<msg-1@smtp.test>"
        assert "admin@example.com" in body["message"]

    def test_email_not_configured(self, tmp_path):
        harness = ApiHarness(tmp_path)
        res = harness.client.post("/api/test-email-config", json={"testEmail": "admin@example.com"})
        assert res.status_code == 500


def test_crypto_wallets(tmp_path):
    harness = ApiHarness(
        tmp_path,
        {
            "telegram_username": "@seller",
            "crypto": ["BTC - Bitcoin\nbc1qexample", "BTC - Other\nbc1qother", "USDT - Tether\nTXYZ"],
        },
    )

    res = harness.client.get("/api/crypto-wallets")

    assert res.status_code == 200
    body = res.json()
    assert body["supportContact"] == "@seller"
    assert body["wallets"] == [
        {"code": "BTC", "name": "Bitcoin", "address": "bc1qexample"},
        {"code": "USDT", "name": "Tether", "address": "TXYZ"},
    ]


def test_health(tmp_path):
    res = ApiHarness(tmp_path).client.get("/api/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok", "version": __version__}
