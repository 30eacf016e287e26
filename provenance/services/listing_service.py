"""Resale listings: create, edit, delist, browse and on-chain re-verification.

Seller identity is kept only as sha256(address) and never leaves this module;
every returned listing is a `ListingPublic`.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any

from provenance.config import Settings, settings as default_settings
from provenance.core.boundary import service_boundary
from provenance.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    ListingNotFoundError,
    NotFoundError,
)
from provenance.core.hashing import hash_address
from provenance.models import Listing
from provenance.schemas.listing import (
    BrowseFilters,
    ListingCreateRequest,
    ListingPage,
    ListingPublic,
    ListingUpdateRequest,
    ListingVerification,
)
from provenance.services.chain_service import STOLEN_COMMITMENTS, TAG_UNIQUENESS, ChainVerifier
from provenance.services.event_service import EventLog
from provenance.storage.snapshot_store import ProvenanceStore

logger = logging.getLogger(__name__)

LISTING_STATUSES = ("active", "reserved", "sold", "delisted")


def _short(value: str, n: int = 16) -> str:
    return value if len(value) <= n else value[:n] + "..."


class Marketplace:
    def __init__(
        self,
        store: ProvenanceStore,
        verifier: ChainVerifier,
        events: EventLog,
        cfg: Settings | None = None,
    ):
        self.store = store
        self.verifier = verifier
        self.events = events
        self.settings = cfg or default_settings

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_listing(self, listing_id: str) -> Listing:
        listing = self.store.get_listing(listing_id)
        if listing is None:
            raise ListingNotFoundError(listing_id)
        return listing

    def _require_owner(self, listing: Listing, seller: str, action: str) -> None:
        if listing.seller_hash != hash_address(seller):
            raise ForbiddenError(f"Only the listing owner can {action} this listing")

    def _check_commitment_free(self, tag_commitment: str) -> None:
        if self.store.get_listing_by_commitment(tag_commitment) is not None:
            raise ConflictError("An active listing already exists for this item")

    def _check_no_open_sale(self, listing: Listing, action: str) -> None:
        if self.store.get_active_sale_for_listing(listing.id) is not None:
            raise ConflictError(f"Cannot {action} a listing with an open sale")

    def _resolve_brand(self, seller: str, req: ListingCreateRequest) -> tuple[str, str]:
        """Return (brand_name, brand_address) for a new listing."""
        own = self.store.get_brand(seller)
        explicit = self.store.get_brand(req.brand_address) if req.brand_address else None
        artifact = self.store.get_artifact(req.tag_hash)
        from_artifact = self.store.get_brand(artifact.brand_address) if artifact else None

        for brand in (own, explicit, from_artifact):
            if brand is not None:
                name = brand.display_name
                break
        else:
            name = self.settings.unknown_brand_name

        if req.brand_address:
            address = req.brand_address
        elif own is not None:
            address = seller
        elif artifact is not None:
            address = artifact.brand_address
        else:
            # a non-brand seller address must not appear on a listing
            address = ""
        return name, address

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @service_boundary
    async def create_listing(
        self, seller: str, request: ListingCreateRequest | dict[str, Any]
    ) -> ListingPublic:
        req = ListingCreateRequest.model_validate(request)
        self._check_commitment_free(req.tag_commitment)

        minted, stolen = await self.verifier.read_flags(
            req.tag_commitment, TAG_UNIQUENESS, STOLEN_COMMITMENTS,
        )
        if stolen:
            raise BadRequestError("This item is reported stolen and cannot be listed")
        if not minted:
            logger.warning(
                "Tag commitment %s not found on chain, listing anyway", _short(req.tag_commitment),
            )

        # Another listing for this commitment may have landed during the oracle reads.
        self._check_commitment_free(req.tag_commitment)

        brand_name, brand_address = self._resolve_brand(seller, req)
        now = datetime.now(timezone.utc)
        listing = Listing(
            tag_commitment=req.tag_commitment,
            tag_hash=req.tag_hash,
            brand_address=brand_address,
            brand_name=brand_name,
            model_id=req.model_id,
            title=req.title,
            description=req.description,
            condition=req.condition,
            image_url=req.image_url or None,
            price=req.price,
            currency=req.currency,
            seller_hash=hash_address(seller),
            created_at=now,
            updated_at=now,
            on_chain_minted=minted,
            on_chain_stolen=False,
            last_verified_at=now,
        )
        self.store.set_listing(listing)
        self.events.append("listing", {
            "listing_id": listing.id,
            "tag_commitment": req.tag_commitment,
            "action": "created",
        })
        logger.info("Created listing %s for commitment %s", listing.id, _short(req.tag_commitment))
        return ListingPublic.from_listing(listing)

    @service_boundary
    async def update_listing(
        self, listing_id: str, seller: str, request: ListingUpdateRequest | dict[str, Any]
    ) -> ListingPublic:
        req = ListingUpdateRequest.model_validate(request)
        listing = self._require_listing(listing_id)
        self._require_owner(listing, seller, "update")

        changes = req.model_dump(exclude_unset=True)
        for field in ("title", "condition", "price"):
            if field in changes and changes[field] is None:
                raise BadRequestError(f"{field} cannot be cleared")
        if "description" in changes and changes["description"] is None:
            changes["description"] = ""

        for field, value in changes.items():
            setattr(listing, field, value)
        listing.updated_at = datetime.now(timezone.utc)
        self.store.set_listing(listing)
        self.events.append("listing", {
            "listing_id": listing.id,
            "action": "updated",
            "fields": sorted(changes),
        })
        logger.info("Updated listing %s fields=%s", listing.id, sorted(changes))
        return ListingPublic.from_listing(listing)

    @service_boundary
    async def delist_listing(self, listing_id: str, seller: str) -> ListingPublic:
        listing = self._require_listing(listing_id)
        self._require_owner(listing, seller, "delist")
        self._check_no_open_sale(listing, "delist")

        listing.status = "delisted"
        listing.updated_at = datetime.now(timezone.utc)
        self.store.set_listing(listing)
        self.events.append("listing", {"listing_id": listing.id, "action": "delisted"})
        logger.info("Delisted listing %s", listing.id)
        return ListingPublic.from_listing(listing)

    @service_boundary
    async def record_direct_sale(
        self, buyer: str, tag_hash: str, tx_id: str, payment_method: str = "escrow"
    ) -> ListingPublic:
        """Close the open listing for *tag_hash* after an on-chain purchase outside the sale flow."""
        if not tag_hash or not tx_id:
            raise BadRequestError("tag_hash and tx_id are required")
        listing = self.store.get_listing_by_tag_hash(tag_hash)
        if listing is None:
            raise NotFoundError("No active listing found for this item")
        self._check_no_open_sale(listing, "sell")

        if self.settings.require_payment_confirmation:
            await self.verifier.confirm_hard(tx_id, "direct sale")

        listing = self.store.get_listing_by_tag_hash(tag_hash)
        if listing is None:
            raise NotFoundError("No active listing found for this item")
        self._check_no_open_sale(listing, "sell")

        buyer_hash = hash_address(buyer)
        listing.status = "sold"
        listing.updated_at = datetime.now(timezone.utc)
        self.store.set_listing(listing)

        artifact = self.store.get_artifact(tag_hash)
        if artifact is not None:
            artifact.owner_hash = buyer_hash
            artifact.last_update_tx_id = tx_id
            self.store.set_artifact(artifact)

        self.events.append("listing", {
            "listing_id": listing.id,
            "action": "sold",
            "tag_hash": tag_hash,
            "tx_id": tx_id,
            "payment_method": payment_method,
            "buyer_hash": buyer_hash,
        })
        logger.info("Listing %s sold directly via %s tx=%s", listing.id, payment_method, tx_id)
        return ListingPublic.from_listing(listing)

    @service_boundary
    async def refresh_verification(self, listing_id: str) -> ListingVerification:
        listing = self._require_listing(listing_id)

        minted, stolen = await self.verifier.read_flags(
            listing.tag_commitment, TAG_UNIQUENESS, STOLEN_COMMITMENTS,
        )

        listing = self._require_listing(listing_id)
        now = datetime.now(timezone.utc)
        listing.on_chain_minted = minted
        listing.on_chain_stolen = stolen
        listing.last_verified_at = now
        self.store.set_listing(listing)
        self.events.append("listing", {
            "listing_id": listing.id,
            "action": "verified",
            "minted": minted,
            "stolen": stolen,
        })
        return ListingVerification(
            tag_commitment=listing.tag_commitment,
            minted=minted,
            stolen=stolen,
            verified_at=now,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @service_boundary
    async def get_listing(self, listing_id: str) -> ListingPublic:
        listing = self.store.get_listing(listing_id)
        if listing is None or listing.status == "delisted":
            raise ListingNotFoundError(listing_id)
        return ListingPublic.from_listing(listing)

    @service_boundary
    async def listings_for_seller(self, seller: str) -> list[ListingPublic]:
        own = self.store.listings_by_seller(hash_address(seller))
        own.sort(key=lambda listing: listing.created_at, reverse=True)
        return [ListingPublic.from_listing(listing) for listing in own]

    @service_boundary
    async def browse(self, filters: BrowseFilters | dict[str, Any] | None = None) -> ListingPage:
        f = BrowseFilters.model_validate(filters or {})
        results = self.store.all_listings()

        if f.status.strip().lower() != "all":
            wanted = {s.strip() for s in f.status.split(",") if s.strip()}
            unknown = wanted - set(LISTING_STATUSES)
            if unknown:
                raise BadRequestError(f"Unknown listing status: {', '.join(sorted(unknown))}")
            results = [listing for listing in results if listing.status in wanted]

        if f.brand:
            needle = f.brand.lower()
            results = [listing for listing in results if needle in listing.brand_name.lower()]
        if f.model_id is not None:
            results = [listing for listing in results if listing.model_id == f.model_id]
        if f.currency:
            results = [listing for listing in results if listing.currency == f.currency]
        if f.min_price is not None:
            results = [listing for listing in results if listing.price >= f.min_price]
        if f.max_price is not None:
            results = [listing for listing in results if listing.price <= f.max_price]
        if f.conditions:
            results = [listing for listing in results if listing.condition in f.conditions]

        # sorted() is stable, including with reverse=True
        if f.sort == "price_asc":
            results = sorted(results, key=lambda listing: listing.price)
        elif f.sort == "price_desc":
            results = sorted(results, key=lambda listing: listing.price, reverse=True)
        elif f.sort == "oldest":
            results = sorted(results, key=lambda listing: listing.created_at)
        else:
            results = sorted(results, key=lambda listing: listing.created_at, reverse=True)

        page_size = min(f.page_size or self.settings.browse_default_page_size, self.settings.browse_max_page_size)
        total = len(results)
        total_pages = max(1, math.ceil(total / page_size))
        offset = (f.page - 1) * page_size
        page = results[offset:offset + page_size]

        return ListingPage(
            listings=[ListingPublic.from_listing(listing) for listing in page],
            total=total,
            page=f.page,
            total_pages=total_pages,
        )
