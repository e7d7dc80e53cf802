"""Checkout: purchase models, providers and the payment orchestrator."""

from .entitlements import EntitlementStore
from .factory import build_orchestrator, discovering_stripe
from .models import (
    CaptureResult,
    CheckoutSession,
    PaymentMethod,
    PurchaseStatus,
    PurchaseTransaction,
    Video,
    format_amount,
    to_minor_units,
)
from .orchestrator import (
    CryptoPaymentInfo,
    PaymentOrchestrator,
    UnlockRegistry,
    VideoAccess,
)
from .product_names import GENERIC_PRODUCT_NAMES, pick_product_name
from .providers import (
    CompletionVerifier,
    PayPalClient,
    PayPalProvider,
    StripeCheckout,
    StripeProvider,
)

__all__ = [
    "CaptureResult",
    "CheckoutSession",
    "CompletionVerifier",
    "CryptoPaymentInfo",
    "EntitlementStore",
    "GENERIC_PRODUCT_NAMES",
    "PayPalClient",
    "PayPalProvider",
    "PaymentMethod",
    "PaymentOrchestrator",
    "PurchaseStatus",
    "PurchaseTransaction",
    "StripeCheckout",
    "StripeProvider",
    "UnlockRegistry",
    "Video",
    "VideoAccess",
    "build_orchestrator",
    "discovering_stripe",
    "format_amount",
    "pick_product_name",
    "to_minor_units",
]
