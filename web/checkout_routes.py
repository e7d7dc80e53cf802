"""
Checkout and notification endpoints used by the storefront front end.

Prefix: /api

Errors are returned as {"error": "..."} with 400 for missing fields and
500 for configuration or downstream failures.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from storefront import __version__
from storefront.core.config import load_site_config
from storefront.notify import PurchaseNotifier
from storefront.payments import pick_product_name
from storefront.stores import DocumentStore
from storefront.utils.exceptions import (
    ConfigurationMissing,
    NotificationDeliveryError,
    PaymentProviderError,
    PersistenceError,
)
from storefront.utils.logger import get_logger

from .deps import get_store

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["checkout"])


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@router.post("/create-checkout-session")
async def create_checkout_session(
    request: Request,
    store: DocumentStore = Depends(get_store),
) -> Any:
    """
    Create a Stripe Checkout Session.

    Request (JSON):
        amount (minor units), currency (default checkout.currency), name (real title, never sent),
        success_url, cancel_url

    Response:
        { "sessionId": "cs_...", "url": "https://checkout.stripe.com/..." }
    """
    body = await _json_body(request)
    amount = body.get("amount")
    success_url = body.get("success_url")
    cancel_url = body.get("cancel_url")
    if not amount or not success_url or not cancel_url:
        return _error(status.HTTP_400_BAD_REQUEST, "Missing required parameters")
    try:
        amount_minor_units = int(round(float(amount)))
    except (TypeError, ValueError):
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid amount")

    try:
        site_config = await load_site_config(store, strict=True)
    except PersistenceError as e:
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Failed to fetch Stripe credentials from site configuration",
            details=str(e),
        )
    if not site_config.stripe_secret_key:
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Stripe secret key not found in site configuration",
        )

    try:
        stripe = request.app.state.stripe_factory(site_config.stripe_secret_key)
        session = await stripe.create_checkout_session(
            amount_minor_units,
            body.get("currency") or request.app.state.settings.checkout.currency.lower(),
            pick_product_name(body.get("name")),
            success_url,
            cancel_url,
        )
    except (PaymentProviderError, ConfigurationMissing) as e:
        logger.error("Error creating checkout session", error=str(e))
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))

    return {"sessionId": session.id, "url": session.url}


@router.post("/send-paypal-confirmation")
async def send_paypal_confirmation(
    request: Request,
    store: DocumentStore = Depends(get_store),
) -> Any:
    """
    Email the buyer asking them to confirm receipt of their PayPal order.

    Request (JSON):
        buyerEmail, transactionId (required), buyerName, isCompany (seller name)
    """
    body = await _json_body(request)
    buyer_email = body.get("buyerEmail")
    transaction_id = body.get("transactionId")
    if not buyer_email or not transaction_id:
        return _error(status.HTTP_400_BAD_REQUEST, "Required parameters missing")

    site_config = await load_site_config(store)
    notifier = PurchaseNotifier.from_site_config(
        site_config, sender_factory=request.app.state.sender_factory
    )
    try:
        message_id = await notifier.send_purchase_confirmation(
            buyer_email=buyer_email,
            transaction_id=transaction_id,
            buyer_name=body.get("buyerName"),
            seller_name=body.get("isCompany") or None,
        )
    except ConfigurationMissing as e:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))
    except NotificationDeliveryError as e:
        logger.error("Error sending confirmation email", error=str(e))
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e), success=False)

    return {"success": True, "messageId": message_id}


@router.post("/test-email-config")
async def test_email_config(
    request: Request,
    store: DocumentStore = Depends(get_store),
) -> Any:
    """Send a diagnostic email with the configured SMTP settings."""
    body = await _json_body(request)
    test_email = body.get("testEmail")
    if not test_email:
        return _error(status.HTTP_400_BAD_REQUEST, "Test email address is required")

    site_config = await load_site_config(store)
    notifier = PurchaseNotifier.from_site_config(
        site_config, sender_factory=request.app.state.sender_factory
    )
    try:
        message_id = await notifier.send_test_email(test_email)
    except ConfigurationMissing as e:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))
    except NotificationDeliveryError as e:
        logger.error("Error sending test email", error=str(e))
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e), success=False)

    return {
        "success": True,
        "messageId": message_id,
        "message": f"Test email sent successfully to {test_email}",
    }


@router.get("/crypto-wallets")
async def crypto_wallets(store: DocumentStore = Depends(get_store)) -> Dict[str, Any]:
    """Configured wallets for manual crypto payment."""
    site_config = await load_site_config(store)
    return {
        "wallets": [wallet.model_dump() for wallet in site_config.crypto_wallets],
        "supportContact": site_config.support_contact,
    }


@router.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok", "version": __version__}
