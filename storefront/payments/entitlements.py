"""Durable purchase records ("buyer X paid for video Y")."""

from __future__ import annotations

from typing import Any, Dict, Optional

from ..stores.documents import PURCHASES_COLLECTION, DocumentStore
from ..utils.exceptions import PersistenceError
from ..utils.logger import get_logger
from .models import PurchaseStatus, PurchaseTransaction, format_amount

logger = get_logger(__name__)

GUEST_PREFIX = "guest-"


def is_guest(buyer_identity: Optional[str]) -> bool:
    return not buyer_identity or buyer_identity.startswith(GUEST_PREFIX)


class EntitlementStore:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def record(self, tx: PurchaseTransaction) -> Optional[Dict[str, Any]]:
        """
        Write the purchase record for a completed transaction.

        Best effort: a store failure is logged and None is returned.
        """
        if tx.status != PurchaseStatus.COMPLETED:
            raise ValueError(f"Purchase {tx.id} is not completed")
        fields = {
            "buyerIdentity": tx.buyer_identity,
            "videoId": tx.video_id,
            "provider": tx.provider.value,
            "providerTransactionId": tx.provider_transaction_id,
            "amount": format_amount(tx.price),
            "currency": tx.currency,
            "completedAt": tx.completed_at.isoformat() if tx.completed_at else None,
        }
        try:
            document = await self.store.create_document(PURCHASES_COLLECTION, tx.id, fields)
        except PersistenceError as e:
            logger.error("Failed to record purchase", purchase_id=tx.id, error=str(e))
            return None
        logger.info("Purchase recorded", purchase_id=tx.id, video_id=tx.video_id)
        return document

    async def has_entitlement(self, buyer_identity: Optional[str], video_id: str) -> bool:
        """Guests never have restorable entitlements; store errors count as no."""
        if is_guest(buyer_identity):
            return False
        try:
            documents = await self.store.list_documents(
                PURCHASES_COLLECTION,
                {"buyerIdentity": buyer_identity, "videoId": video_id},
            )
        except PersistenceError as e:
            logger.error("Entitlement lookup failed", video_id=video_id, error=str(e))
            return False
        return bool(documents)
