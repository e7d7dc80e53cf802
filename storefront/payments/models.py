"""Purchase and checkout models."""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, Optional, Set
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from ..core.clock import utcnow
from ..utils.exceptions import InvalidPurchaseTransition


class PaymentMethod(str, Enum):
    PAYPAL = "paypal"
    STRIPE = "stripe"
    CRYPTO_MANUAL = "crypto-manual"


class PurchaseStatus(str, Enum):
    IDLE = "idle"
    INITIATED = "initiated"
    PROVIDER_PENDING = "provider-pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


_ALLOWED_TRANSITIONS: Dict[PurchaseStatus, Set[PurchaseStatus]] = {
    PurchaseStatus.IDLE: {PurchaseStatus.INITIATED},
    PurchaseStatus.INITIATED: {
        PurchaseStatus.PROVIDER_PENDING,
        PurchaseStatus.FAILED,
        PurchaseStatus.CANCELED,
    },
    PurchaseStatus.PROVIDER_PENDING: {
        PurchaseStatus.COMPLETED,
        PurchaseStatus.FAILED,
        PurchaseStatus.CANCELED,
    },
}


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def to_minor_units(amount: Decimal) -> int:
    """9.99 -> 999, rounded half-up."""
    return int((_to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_amount(amount: Decimal) -> str:
    """Two-decimal string as PayPal expects ("9.99")."""
    return str(_to_decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class Video(BaseModel):
    """Catalog entry being purchased."""

    id: str
    title: str
    price: Decimal
    currency: str = "USD"
    product_link: Optional[str] = None

    @field_validator("price", mode="before")
    @classmethod
    def _price(cls, value: Any) -> Decimal:
        price = _to_decimal(value)
        if price < 0:
            raise ValueError("price must not be negative")
        return price


class CaptureResult(BaseModel):
    transaction_id: str
    order_id: str
    status: str = "COMPLETED"
    payer_email: Optional[str] = None
    payer_name: Optional[str] = None


class CheckoutSession(BaseModel):
    id: str
    url: Optional[str] = None


class PurchaseTransaction(BaseModel):
    """One purchase attempt. Not persisted; see EntitlementStore for the durable record."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    buyer_identity: str
    video_id: str
    price: Decimal
    currency: str = "USD"
    provider: PaymentMethod
    display_product_name: str
    status: PurchaseStatus = PurchaseStatus.IDLE
    provider_order_id: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    payer_email: Optional[str] = None
    payer_name: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def transition(self, new_status: PurchaseStatus) -> None:
        if new_status not in _ALLOWED_TRANSITIONS.get(self.status, set()):
            raise InvalidPurchaseTransition(
                f"Cannot move purchase {self.id} from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            PurchaseStatus.COMPLETED,
            PurchaseStatus.FAILED,
            PurchaseStatus.CANCELED,
        )
