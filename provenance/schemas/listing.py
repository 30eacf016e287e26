from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from provenance.models.listing import Condition, Currency, Listing, ListingStatus

SortKey = Literal["newest", "oldest", "price_asc", "price_desc"]


class ListingCreateRequest(BaseModel):
    tag_commitment: str = Field(..., min_length=1, max_length=256)
    tag_hash: str = Field(..., min_length=1, max_length=256)
    model_id: int = Field(..., ge=0)
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    condition: Condition
    image_url: str | None = Field(default=None, max_length=500)
    price: int = Field(..., gt=0)
    currency: Currency
    brand_address: str | None = None


class ListingUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    condition: Condition | None = None
    image_url: str | None = Field(default=None, max_length=500)
    price: int | None = Field(default=None, gt=0)


class BrowseFilters(BaseModel):
    brand: str | None = None  # case-insensitive partial match on brand_name
    model_id: int | None = None
    currency: Currency | None = None
    min_price: int | None = Field(default=None, ge=0)
    max_price: int | None = Field(default=None, ge=0)
    conditions: list[Condition] = []
    status: str = "active,reserved"  # comma list, or "all"
    sort: SortKey = "newest"
    page: int = Field(default=1, ge=1)
    page_size: int | None = Field(default=None, ge=1)


class ListingPublic(BaseModel):
    """Listing as shown outside the registry. Carries no seller identity."""

    id: str
    tag_commitment: str
    tag_hash: str
    brand_address: str
    brand_name: str
    model_id: int
    title: str
    description: str
    condition: Condition
    image_url: str | None = None
    price: int
    currency: Currency
    status: ListingStatus
    created_at: datetime
    updated_at: datetime
    on_chain_minted: bool
    on_chain_stolen: bool
    last_verified_at: datetime

    @classmethod
    def from_listing(cls, listing: Listing) -> "ListingPublic":
        return cls.model_validate(listing.model_dump(exclude={"seller_hash"}))


class ListingPage(BaseModel):
    listings: list[ListingPublic]
    total: int
    page: int
    total_pages: int
    privacy_notice: str = (
        "Listings show only seller-disclosed metadata. Owner identity is never revealed."
    )


class ListingVerification(BaseModel):
    tag_commitment: str
    minted: bool
    stolen: bool
    backend_registered: bool = True
    verified_at: datetime
    source: str = "on-chain"
