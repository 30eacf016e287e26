import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

Condition = Literal["new", "like_new", "good", "fair"]
Currency = Literal["aleo", "usdcx"]
ListingStatus = Literal["active", "reserved", "sold", "delisted"]

OPEN_LISTING_STATUSES = ("active", "reserved")


def utcnow():
    return datetime.now(timezone.utc)


class Listing(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tag_commitment: str  # opaque chain commitment of tag_hash, lookup key only
    tag_hash: str
    brand_address: str
    brand_name: str
    model_id: int
    title: str
    description: str = ""
    condition: Condition
    image_url: str | None = None
    price: int = Field(..., gt=0)  # microcredits (aleo) or token units (usdcx)
    currency: Currency
    seller_hash: str  # never leaves the registry
    status: ListingStatus = "active"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    on_chain_minted: bool = False
    on_chain_stolen: bool = False
    last_verified_at: datetime = Field(default_factory=utcnow)
