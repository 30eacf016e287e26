import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from provenance.models.listing import Currency

SaleStatus = Literal["pending_payment", "paid", "completed", "cancelled", "refunded"]

# State machine: pending_payment -> paid -> completed
#                pending_payment -> cancelled
#                paid -> refunded
SALE_TRANSITIONS: dict[str, dict[str, str]] = {
    "purchase": {"from": "pending_payment", "to": "paid"},
    "complete": {"from": "paid", "to": "completed"},
    "cancel": {"from": "pending_payment", "to": "cancelled"},
    "refund": {"from": "paid", "to": "refunded"},
}
ACTIVE_SALE_STATUSES = ("pending_payment", "paid")
ABANDONED_SALE_STATUSES = ("cancelled", "refunded")


def utcnow():
    return datetime.now(timezone.utc)


class Sale(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    sale_id: str  # backend tracking id, unique
    on_chain_sale_id: str  # may be a provisional placeholder until the wallet reports the record
    listing_id: str
    seller_address: str
    seller_hash: str
    buyer_address: str | None = None
    buyer_hash: str | None = None
    tag_hash: str
    tag_commitment: str
    price: int
    currency: Currency
    status: SaleStatus = "pending_payment"

    create_sale_tx_id: str
    buy_sale_tx_id: str | None = None
    complete_sale_tx_id: str | None = None
    cancel_tx_id: str | None = None
    refund_tx_id: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
    paid_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime = Field(default_factory=utcnow)
