"""
Payment orchestrator: drives PayPal, Stripe and manual crypto purchases.

Each purchase attempt is a PurchaseTransaction moving through
idle -> initiated -> provider-pending -> completed | failed | canceled.
Completion is processed at most once per provider reference (PayPal order
id, Stripe checkout session id). On completion the video is unlocked for the
current browsing context, a purchase record is written and the buyer is
notified; neither of the last two can undo the completion.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Union

from ..core.clock import Clock, utcnow
from ..core.config import CryptoWallet, SiteConfig
from ..utils.exceptions import (
    ConfigurationMissing,
    InvalidPurchaseTransition,
    NotificationDeliveryError,
    PaymentProviderError,
)
from ..utils.logger import get_logger
from .entitlements import GUEST_PREFIX, EntitlementStore
from .models import (
    PaymentMethod,
    PurchaseStatus,
    PurchaseTransaction,
    Video,
    to_minor_units,
)
from .product_names import pick_product_name
from .providers import CompletionVerifier, PayPalProvider, StripeProvider

logger = get_logger(__name__)

STRIPE_COUNTDOWN = timedelta(seconds=10)
PURCHASE_MARKER_LIFETIME = timedelta(minutes=30)
COMPLETED_REFERENCE_LIMIT = 1024

# Stripe substitutes the literal {CHECKOUT_SESSION_ID} placeholder on redirect
STRIPE_SUCCESS_PATH = "/video/{video_id}?payment_success=true&session_id={{CHECKOUT_SESSION_ID}}"
STRIPE_CANCEL_PATH = "/video/{video_id}?payment_canceled=true"


class UnlockRegistry:
    """
    Videos unlocked in one browsing context, plus short-lived
    "just purchased" markers consumed on the next page open.
    """

    def __init__(
        self,
        marker_lifetime: timedelta = PURCHASE_MARKER_LIFETIME,
        clock: Optional[Clock] = None,
    ):
        self.marker_lifetime = marker_lifetime
        self.clock = clock or utcnow
        self._unlocked: Set[str] = set()
        self._markers: Dict[str, datetime] = {}

    def unlock(self, video_id: str) -> None:
        self._unlocked.add(video_id)

    def is_unlocked(self, video_id: str) -> bool:
        return video_id in self._unlocked

    def mark_purchased(self, video_id: str) -> None:
        self._markers[video_id] = self.clock()

    def consume_marker(self, video_id: str) -> bool:
        marked_at = self._markers.pop(video_id, None)
        if marked_at is None:
            return False
        return self.clock() - marked_at <= self.marker_lifetime


@dataclass
class VideoAccess:
    video_id: str
    unlocked: bool
    just_purchased: bool = False


@dataclass
class CryptoPaymentInfo:
    wallets: List[CryptoWallet] = field(default_factory=list)
    support_contact: str = "Contact support"


TickCallback = Callable[[int], None]
Sleep = Callable[[float], Awaitable[None]]


@dataclass
class _ReferenceLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class PaymentOrchestrator:
    def __init__(
        self,
        paypal: Optional[PayPalProvider] = None,
        stripe: Optional[StripeProvider] = None,
        notifier=None,
        entitlements: Optional[EntitlementStore] = None,
        verifier: Optional[CompletionVerifier] = None,
        site_config: Optional[SiteConfig] = None,
        unlocks: Optional[UnlockRegistry] = None,
        base_url: str = "http://localhost:8000",
        countdown: timedelta = STRIPE_COUNTDOWN,
        sleep: Sleep = asyncio.sleep,
        clock: Optional[Clock] = None,
        name_picker: Callable[[Optional[str]], str] = pick_product_name,
    ):
        self.paypal = paypal
        self.stripe = stripe
        self.notifier = notifier
        self.entitlements = entitlements
        self.verifier = verifier
        self.site_config = site_config or SiteConfig()
        self.clock = clock or utcnow
        self.unlocks = unlocks or UnlockRegistry(clock=self.clock)
        self.base_url = base_url.rstrip("/")
        self.countdown = countdown
        self.sleep = sleep
        self.name_picker = name_picker

        self.purchase_error: Optional[str] = None
        self.purchase_complete = False
        self.current: Optional[PurchaseTransaction] = None

        self._pending: Dict[str, PurchaseTransaction] = {}
        self._completed: "OrderedDict[str, PurchaseTransaction]" = OrderedDict()
        self._locks: Dict[str, _ReferenceLock] = {}

    def guest_identity(self) -> str:
        return f"{GUEST_PREFIX}{int(self.clock().timestamp() * 1000)}"

    def start_purchase(
        self,
        provider: Union[PaymentMethod, str],
        video: Video,
        buyer_identity: Optional[str] = None,
    ) -> PurchaseTransaction:
        """Open a purchase attempt. The provider-facing name is never the real title."""
        method = PaymentMethod(provider)
        if method == PaymentMethod.PAYPAL and self.paypal is None:
            raise ConfigurationMissing("PayPal is not configured")
        if method == PaymentMethod.STRIPE and self.stripe is None:
            raise ConfigurationMissing("Stripe is not configured")

        tx = self._new_transaction(method, video, buyer_identity)
        self.current = tx
        self.purchase_error = None
        self.purchase_complete = False
        logger.info(
            "Purchase started",
            purchase_id=tx.id,
            video_id=video.id,
            provider=method.value,
            buyer=tx.buyer_identity,
        )
        return tx

    def _new_transaction(
        self, method: PaymentMethod, video: Video, buyer_identity: Optional[str]
    ) -> PurchaseTransaction:
        tx = PurchaseTransaction(
            buyer_identity=buyer_identity or self.guest_identity(),
            video_id=video.id,
            price=video.price,
            currency=video.currency,
            provider=method,
            display_product_name=self.name_picker(video.title),
            created_at=self.clock(),
        )
        tx.transition(PurchaseStatus.INITIATED)
        return tx

    def _require(self, tx: PurchaseTransaction, method: PaymentMethod) -> None:
        if tx.provider != method:
            raise InvalidPurchaseTransition(
                f"Purchase {tx.id} uses {tx.provider.value}, not {method.value}"
            )
        if tx.status != PurchaseStatus.INITIATED:
            raise InvalidPurchaseTransition(
                f"Purchase {tx.id} is {tx.status.value}, expected initiated"
            )

    def _fail(self, tx: PurchaseTransaction, message: str) -> None:
        tx.error = message
        if not tx.is_terminal:
            tx.transition(PurchaseStatus.FAILED)
        self.purchase_error = message
        logger.error("Purchase failed", purchase_id=tx.id, provider=tx.provider.value, error=message)

    @asynccontextmanager
    async def _guard(self, reference: str) -> AsyncIterator[None]:
        """Serialize work on one provider reference; the lock is dropped once unused."""
        entry = self._locks.get(reference)
        if entry is None:
            entry = self._locks[reference] = _ReferenceLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._locks.pop(reference, None)

    # PayPal

    async def create_paypal_order(self, tx: PurchaseTransaction) -> str:
        """createOrder step: returns the PayPal order id."""
        self._require(tx, PaymentMethod.PAYPAL)
        try:
            order_id = await self.paypal.create_order(tx.price, tx.currency, tx.display_product_name)
        except PaymentProviderError as e:
            self._fail(tx, str(e))
            raise
        tx.provider_order_id = order_id
        tx.transition(PurchaseStatus.PROVIDER_PENDING)
        self._pending[order_id] = tx
        logger.info("PayPal order created", purchase_id=tx.id, order_id=order_id)
        return order_id

    async def approve_paypal_order(self, order_id: str) -> PurchaseTransaction:
        """
        onApprove step: capture the order and complete the purchase.

        A repeated approval for the same order returns the completed
        transaction without capturing or notifying again. Capture failures
        are not retried.
        """
        async with self._guard(order_id):
            done = self._completed.get(order_id)
            if done is not None:
                logger.warning("Duplicate PayPal approval ignored", order_id=order_id)
                return done

            tx = self._pending.get(order_id)
            if tx is None:
                raise InvalidPurchaseTransition(f"No pending purchase for PayPal order {order_id}")
            if tx.status != PurchaseStatus.PROVIDER_PENDING:
                raise InvalidPurchaseTransition(
                    f"Purchase {tx.id} is {tx.status.value}, cannot capture"
                )

            try:
                capture = await self.paypal.capture_order(order_id)
            except PaymentProviderError as e:
                self._pending.pop(order_id, None)
                self._fail(tx, str(e))
                raise

            tx.provider_transaction_id = capture.transaction_id
            tx.payer_email = capture.payer_email
            tx.payer_name = capture.payer_name
            await self._complete(tx, order_id)
            return tx

    # Stripe

    async def begin_stripe_checkout(
        self,
        tx: PurchaseTransaction,
        on_tick: Optional[TickCallback] = None,
        skip_countdown: bool = False,
    ) -> Optional[str]:
        """
        Run the pre-redirect countdown, then create the checkout session.

        Returns the hosted checkout URL, or None when the buyer canceled
        during the countdown (no provider call is made in that case).
        """
        self._require(tx, PaymentMethod.STRIPE)

        if not skip_countdown:
            remaining = int(self.countdown.total_seconds())
            try:
                while remaining > 0:
                    if tx.status == PurchaseStatus.CANCELED:
                        break
                    if on_tick:
                        on_tick(remaining)
                    await self.sleep(1)
                    remaining -= 1
            except asyncio.CancelledError:
                self.cancel_purchase(tx)
                raise

        if tx.status == PurchaseStatus.CANCELED:
            logger.info("Stripe checkout canceled before redirect", purchase_id=tx.id)
            return None

        success_url = self.base_url + STRIPE_SUCCESS_PATH.format(video_id=tx.video_id)
        cancel_url = self.base_url + STRIPE_CANCEL_PATH.format(video_id=tx.video_id)
        try:
            session = await self.stripe.create_checkout_session(
                to_minor_units(tx.price),
                tx.currency,
                tx.display_product_name,
                success_url,
                cancel_url,
            )
            url = await self.stripe.redirect_to_checkout(session)
        except PaymentProviderError as e:
            self._fail(tx, str(e))
            raise

        tx.provider_order_id = session.id
        tx.transition(PurchaseStatus.PROVIDER_PENDING)
        self._pending[session.id] = tx
        logger.info("Redirecting to Stripe checkout", purchase_id=tx.id, session_id=session.id)
        return url

    async def complete_stripe_return(
        self,
        video: Video,
        query_params: Mapping[str, str],
        buyer_identity: Optional[str] = None,
    ) -> Optional[PurchaseTransaction]:
        """
        Handle the buyer's return from Stripe's hosted page.

        Returns None unless the success flag is present. With a verifier
        configured, the checkout session must be confirmed paid before the
        purchase completes; otherwise the flag alone is trusted.
        """
        if query_params.get("payment_canceled") == "true":
            for reference, tx in list(self._pending.items()):
                if tx.video_id == video.id and tx.provider == PaymentMethod.STRIPE:
                    self._pending.pop(reference, None)
                    self.cancel_purchase(tx)
            return None
        if query_params.get("payment_success") != "true":
            return None

        session_id = query_params.get("session_id") or ""
        if not session_id:
            return self._reject_unidentified_return(video, buyer_identity)

        reference = session_id
        async with self._guard(reference):
            done = self._completed.get(reference)
            if done is not None:
                logger.warning("Duplicate Stripe return ignored", session_id=session_id)
                return done

            tx = self._pending.get(reference)
            if tx is None:
                # returning buyer in a fresh context
                tx = self._new_transaction(PaymentMethod.STRIPE, video, buyer_identity)
                tx.provider_order_id = session_id
                tx.transition(PurchaseStatus.PROVIDER_PENDING)
            self.current = tx

            if self.verifier is not None:
                try:
                    paid = await self.verifier.verify_completion(session_id)
                except PaymentProviderError as e:
                    self._pending.pop(reference, None)
                    self._fail(tx, str(e))
                    return tx
                if not paid:
                    self._pending.pop(reference, None)
                    self._fail(tx, "Payment could not be verified")
                    return tx
            else:
                logger.warning(
                    "Completing Stripe purchase without server-side verification",
                    video_id=video.id,
                    session_id=session_id,
                )

            tx.provider_transaction_id = session_id
            await self._complete(tx, reference)
            return tx

    def _reject_unidentified_return(
        self, video: Video, buyer_identity: Optional[str]
    ) -> PurchaseTransaction:
        """A success return without a checkout session id cannot be tied to a payment."""
        tx = next(
            (
                pending
                for pending in self._pending.values()
                if pending.video_id == video.id and pending.provider == PaymentMethod.STRIPE
            ),
            None,
        )
        if tx is None:
            tx = self._new_transaction(PaymentMethod.STRIPE, video, buyer_identity)
        else:
            self._pending.pop(tx.provider_order_id, None)
        self.current = tx
        self._fail(tx, "Missing checkout session id")
        return tx

    def cancel_purchase(self, tx: PurchaseTransaction) -> None:
        """Cancel an open attempt. Terminal transactions are left unchanged."""
        if tx.is_terminal:
            return
        if tx.status == PurchaseStatus.IDLE:
            raise InvalidPurchaseTransition(f"Purchase {tx.id} was never started")
        tx.transition(PurchaseStatus.CANCELED)
        logger.info("Purchase canceled", purchase_id=tx.id, provider=tx.provider.value)

    # completion

    async def _complete(self, tx: PurchaseTransaction, reference: str) -> None:
        tx.completed_at = self.clock()
        if not tx.provider_transaction_id:
            tx.provider_transaction_id = reference
        tx.transition(PurchaseStatus.COMPLETED)
        self._pending.pop(reference, None)
        self._completed[reference] = tx
        while len(self._completed) > COMPLETED_REFERENCE_LIMIT:
            self._completed.popitem(last=False)

        self.unlocks.unlock(tx.video_id)
        self.unlocks.mark_purchased(tx.video_id)
        self.purchase_complete = True
        self.purchase_error = None
        logger.info(
            "Purchase completed",
            purchase_id=tx.id,
            video_id=tx.video_id,
            provider=tx.provider.value,
            transaction_id=tx.provider_transaction_id,
        )

        if self.entitlements is not None:
            await self.entitlements.record(tx)
        await self._notify(tx)

    async def _notify(self, tx: PurchaseTransaction) -> Optional[str]:
        if self.notifier is None or not tx.payer_email:
            return None
        try:
            return await self.notifier.send_purchase_confirmation(
                buyer_email=tx.payer_email,
                transaction_id=tx.provider_transaction_id,
                buyer_name=tx.payer_name,
                seller_name=self.site_config.site_name,
            )
        except (NotificationDeliveryError, ConfigurationMissing) as e:
            logger.warning(
                "Purchase confirmation not sent",
                purchase_id=tx.id,
                reason=type(e).__name__,
                error=str(e),
            )
            return None

    # access

    def has_purchased(self, video_id: str) -> bool:
        return self.unlocks.is_unlocked(video_id)

    def open_video(self, video_id: str) -> VideoAccess:
        """Access state when a video page is opened; consumes the success marker."""
        just_purchased = self.unlocks.consume_marker(video_id)
        if just_purchased:
            self.unlocks.unlock(video_id)
        return VideoAccess(
            video_id=video_id,
            unlocked=self.unlocks.is_unlocked(video_id),
            just_purchased=just_purchased,
        )

    async def restore_access(self, video_id: str, buyer_identity: Optional[str]) -> bool:
        """Re-unlock a video from a recorded purchase (authenticated buyers only)."""
        if self.entitlements is None:
            return False
        if not await self.entitlements.has_entitlement(buyer_identity, video_id):
            return False
        self.unlocks.unlock(video_id)
        logger.info("Access restored from purchase record", video_id=video_id, buyer=buyer_identity)
        return True

    def crypto_wallets(self) -> CryptoPaymentInfo:
        return CryptoPaymentInfo(
            wallets=self.site_config.crypto_wallets,
            support_contact=self.site_config.support_contact,
        )
