"""
Payment provider clients.

PayPalClient talks to the PayPal Orders v2 REST API with requests.
StripeCheckout wraps the official stripe SDK for hosted Checkout Sessions.
Both expose async methods; the blocking HTTP calls run in a worker thread.
"""

from __future__ import annotations

import asyncio
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests
import stripe
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..utils.exceptions import ConfigurationMissing, PaymentProviderError
from ..utils.logger import get_logger
from .models import CaptureResult, CheckoutSession, format_amount

logger = get_logger(__name__)

PAYPAL_SANDBOX_API = "https://api-m.sandbox.paypal.com"
PAYPAL_LIVE_API = "https://api-m.paypal.com"


class PayPalProvider:
    """Order-based provider: create an order, capture it after buyer approval."""

    async def create_order(self, amount: Decimal, currency: str, description: str) -> str:
        raise NotImplementedError

    async def capture_order(self, order_id: str) -> CaptureResult:
        raise NotImplementedError


class StripeProvider:
    """Redirect-based provider: hosted checkout session."""

    async def create_checkout_session(
        self,
        amount_minor_units: int,
        currency: str,
        description: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        raise NotImplementedError

    async def redirect_to_checkout(self, session: CheckoutSession) -> str:
        raise NotImplementedError


class CompletionVerifier:
    """Server-side check that a provider reference really is paid."""

    async def verify_completion(self, reference: str) -> bool:
        raise NotImplementedError


class PayPalClient(PayPalProvider):
    """PayPal Orders v2 client with client-credentials auth"""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        api_base: str = PAYPAL_SANDBOX_API,
        timeout: Tuple[int, int] = (10, 30),
    ):
        if not client_id or not client_secret:
            raise ConfigurationMissing("PayPal client id and secret are required")
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        reraise=True,
    )
    def _fetch_access_token(self) -> Dict[str, Any]:
        response = self.session.post(
            f"{self.api_base}/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            raise PaymentProviderError(
                f"PayPal authentication failed: {self._error_message(response)}",
                provider="paypal",
                status_code=response.status_code,
            )
        return response.json()

    def _token(self) -> str:
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token
        try:
            payload = self._fetch_access_token()
        except requests.RequestException as e:
            raise PaymentProviderError(f"PayPal unreachable: {e}", provider="paypal")
        self._access_token = payload["access_token"]
        # refresh a minute early
        self._token_expires_at = time.monotonic() + max(int(payload.get("expires_in", 0)) - 60, 0)
        return self._access_token

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        details = body.get("details") or []
        if details and isinstance(details, list):
            issue = details[0].get("description") or details[0].get("issue")
            if issue:
                return f"{body.get('message', 'PayPal error')}: {issue}"
        return body.get("message") or body.get("error_description") or f"HTTP {response.status_code}"

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.api_base}{path}"
        headers = {
            "Authorization": f"Bearer {self._token()}",
            "Content-Type": "application/json",
        }
        logger.info("PayPal request", method=method, path=path)
        try:
            response = self.session.request(method, url, json=json, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error("PayPal request failed", path=path, error=str(e))
            raise PaymentProviderError(f"PayPal request failed: {e}", provider="paypal")
        if response.status_code >= 400:
            message = self._error_message(response)
            logger.error("PayPal error response", path=path, status_code=response.status_code, error=message)
            raise PaymentProviderError(message, provider="paypal", status_code=response.status_code)
        return response.json()

    def _create_order_sync(self, amount: Decimal, currency: str, description: str) -> str:
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "description": description,
                    "amount": {"currency_code": currency.upper(), "value": format_amount(amount)},
                }
            ],
        }
        result = self._request("POST", "/v2/checkout/orders", json=body)
        return result["id"]

    def _capture_order_sync(self, order_id: str) -> CaptureResult:
        result = self._request("POST", f"/v2/checkout/orders/{order_id}/capture", json={})
        return parse_capture(result, order_id)

    async def create_order(self, amount: Decimal, currency: str, description: str) -> str:
        return await asyncio.to_thread(self._create_order_sync, amount, currency, description)

    async def capture_order(self, order_id: str) -> CaptureResult:
        return await asyncio.to_thread(self._capture_order_sync, order_id)


def parse_capture(result: Dict[str, Any], order_id: str) -> CaptureResult:
    """Pull transaction id and payer details out of a capture response."""
    transaction_id = None
    for unit in result.get("purchase_units") or []:
        captures = (unit.get("payments") or {}).get("captures") or []
        if captures:
            transaction_id = captures[0].get("id")
            break
    payer = result.get("payer") or {}
    name = payer.get("name") or {}
    return CaptureResult(
        transaction_id=transaction_id or result.get("id") or order_id,
        order_id=result.get("id") or order_id,
        status=result.get("status", "COMPLETED"),
        payer_email=payer.get("email_address"),
        payer_name=name.get("given_name"),
    )


class StripeCheckout(StripeProvider, CompletionVerifier):
    """Stripe hosted Checkout using the official SDK"""

    def __init__(
        self,
        secret_key: str,
        payment_method_types: Sequence[str] = ("card",),
        discover_payment_methods: bool = False,
    ):
        if not secret_key:
            raise ConfigurationMissing("Stripe secret key not found in site configuration")
        self.secret_key = secret_key
        self.payment_method_types = list(payment_method_types) or ["card"]
        self.discover_payment_methods = discover_payment_methods

    def discover_payment_method_types(self) -> List[str]:
        """
        Payment method types the account can take, from its saved methods
        and capabilities. Falls back to card only if the lookup fails.
        """
        try:
            methods = stripe.PaymentMethod.list(limit=100, api_key=self.secret_key)
            types: List[str] = []
            for method in methods.data:
                if method.type not in types:
                    types.append(method.type)
            if not types:
                types.append("card")

            account = stripe.Account.retrieve(api_key=self.secret_key)
            capabilities = getattr(account, "capabilities", None)
            if getattr(capabilities, "card_payments", None) == "active" and "card" not in types:
                types.append("card")
            if getattr(capabilities, "transfers", None) == "active" and "sepa_debit" not in types:
                types.append("sepa_debit")
        except stripe.StripeError as e:
            logger.warning("Payment method discovery failed, using card only", error=str(e))
            return ["card"]

        logger.info("Available payment methods", payment_method_types=types)
        return types

    def _create_sync(
        self,
        amount_minor_units: int,
        currency: str,
        description: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        payment_method_types = (
            self.discover_payment_method_types()
            if self.discover_payment_methods
            else self.payment_method_types
        )
        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                payment_method_types=payment_method_types,
                line_items=[
                    {
                        "price_data": {
                            "currency": currency.lower(),
                            "product_data": {"name": description},
                            "unit_amount": int(round(amount_minor_units)),
                        },
                        "quantity": 1,
                    }
                ],
                mode="payment",
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except stripe.StripeError as e:
            message = getattr(e, "user_message", None) or str(e)
            logger.error("Stripe checkout session failed", error=message)
            raise PaymentProviderError(message, provider="stripe", status_code=getattr(e, "http_status", None))
        return CheckoutSession(id=session.id, url=getattr(session, "url", None))

    def _retrieve_payment_status(self, session_id: str) -> Optional[str]:
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            logger.error("Stripe session lookup failed", session_id=session_id, error=str(e))
            raise PaymentProviderError(str(e), provider="stripe", status_code=getattr(e, "http_status", None))
        return getattr(session, "payment_status", None)

    async def create_checkout_session(
        self,
        amount_minor_units: int,
        currency: str,
        description: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        return await asyncio.to_thread(
            self._create_sync, amount_minor_units, currency, description, success_url, cancel_url
        )

    async def redirect_to_checkout(self, session: CheckoutSession) -> str:
        if not session.url:
            raise PaymentProviderError("Checkout session has no hosted URL", provider="stripe")
        return session.url

    async def verify_completion(self, reference: str) -> bool:
        if not reference:
            return False
        status = await asyncio.to_thread(self._retrieve_payment_status, reference)
        return status == "paid"
