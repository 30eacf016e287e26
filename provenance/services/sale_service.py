"""Escrowed sale lifecycle bound to a listing.

    pending_payment --purchase--> paid --complete--> completed
    pending_payment --cancel----> cancelled
    paid -----------refund------> refunded

Each transition touches Sale, then Listing, then (on completion) Artifact as
separate store writes. The event appended last carries the ids needed to
reconcile a partially applied transition.
"""

import logging
from datetime import datetime, timezone

from provenance.config import Settings, settings as default_settings
from provenance.core.boundary import service_boundary
from provenance.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InvalidSaleStateError,
    ListingNotFoundError,
    NotFoundError,
    SaleNotFoundError,
)
from provenance.core.hashing import hash_address
from provenance.models import Sale
from provenance.models.listing import OPEN_LISTING_STATUSES
from provenance.models.sale import SALE_TRANSITIONS
from provenance.schemas.sale import (
    OnChainIdUpdate,
    OnChainSaleState,
    SaleStatusView,
    SaleSummary,
    SaleView,
)
from provenance.services.chain_service import SALE_ACTIVE, SALE_PAID, ChainVerifier
from provenance.services.event_service import EventLog
from provenance.storage.snapshot_store import ProvenanceStore

logger = logging.getLogger(__name__)


class SaleCoordinator:
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

    def _require_sale(self, sale_id: str) -> Sale:
        sale = self.store.get_sale_by_sale_id(sale_id)
        if sale is None:
            raise SaleNotFoundError(sale_id)
        return sale

    @staticmethod
    def _require_state(sale: Sale, transition: str) -> None:
        expected = SALE_TRANSITIONS[transition]["from"]
        if sale.status != expected:
            raise InvalidSaleStateError(sale.status, expected)

    @staticmethod
    def _require_seller(sale: Sale, seller: str, action: str) -> None:
        if sale.seller_hash != hash_address(seller):
            raise ForbiddenError(f"Only the seller can {action} a sale")

    def _move_listing(
        self,
        listing_id: str,
        status: str,
        now: datetime,
        from_statuses: tuple[str, ...] = ("reserved",),
    ) -> None:
        """Move the sale's listing to *status* only from a state the sale still owns.

        A listing that cannot be reopened because another listing now holds
        its tag commitment is delisted instead.
        """
        listing = self.store.get_listing(listing_id)
        if listing is None:
            logger.warning("Listing %s missing while moving it to %s", listing_id, status)
            return
        if listing.status not in from_statuses:
            logger.warning(
                "Listing %s is %s, leaving it instead of moving it to %s",
                listing_id, listing.status, status,
            )
            return
        if status == "active":
            holder = self.store.get_listing_by_commitment(listing.tag_commitment, exclude_id=listing.id)
            if holder is not None:
                logger.warning(
                    "Listing %s not reopened, commitment is held by listing %s", listing_id, holder.id,
                )
                status = "delisted"
        listing.status = status
        listing.updated_at = now
        self.store.set_listing(listing)

    def _record(self, sale: Sale, action: str, tx_id: str, **extra) -> None:
        self.events.append("listing", {
            "sale_id": sale.sale_id,
            "listing_id": sale.listing_id,
            "action": action,
            "tx_id": tx_id,
            **extra,
        })

    def _check_creatable(self, seller: str, listing_id: str, sale_id: str):
        listing = self.store.get_listing(listing_id)
        if listing is None:
            raise ListingNotFoundError(listing_id)
        if listing.seller_hash != hash_address(seller):
            raise ForbiddenError("Only the listing owner can create a sale")
        if listing.status not in OPEN_LISTING_STATUSES:
            raise BadRequestError(f"Listing is {listing.status}, cannot create sale")
        if self.store.get_active_sale_for_listing(listing_id) is not None:
            raise ConflictError("An active sale already exists for this listing")
        if self.store.get_sale_by_sale_id(sale_id) is not None:
            raise ConflictError(f"Sale id {sale_id} is already in use")
        return listing

    def _summary(self, sale: Sale) -> SaleSummary:
        listing = self.store.get_listing(sale.listing_id)
        view = SaleView.from_sale(sale).model_dump()
        if listing is not None:
            view["title"] = listing.title
        return SaleSummary.model_validate(view)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @service_boundary
    async def create_sale(
        self,
        seller: str,
        listing_id: str,
        sale_id: str,
        on_chain_sale_id: str,
        create_sale_tx_id: str,
    ) -> SaleView:
        if not sale_id or not on_chain_sale_id or not create_sale_tx_id:
            raise BadRequestError("sale_id, on_chain_sale_id and create_sale_tx_id are required")

        listing = self._check_creatable(seller, listing_id, sale_id)
        now = datetime.now(timezone.utc)
        sale = Sale(
            sale_id=sale_id,
            on_chain_sale_id=on_chain_sale_id,
            listing_id=listing.id,
            seller_address=seller,
            seller_hash=listing.seller_hash,
            tag_hash=listing.tag_hash,
            tag_commitment=listing.tag_commitment,
            price=listing.price,
            currency=listing.currency,
            create_sale_tx_id=create_sale_tx_id,
            created_at=now,
            updated_at=now,
        )
        self.store.set_sale(sale)
        self._move_listing(listing.id, "reserved", now, from_statuses=OPEN_LISTING_STATUSES)
        self._record(sale, "sale_created", create_sale_tx_id)
        logger.info("Created sale %s for listing %s", sale_id, listing.id)
        return SaleView.from_sale(sale)

    @service_boundary
    async def purchase(self, buyer: str, sale_id: str, buy_sale_tx_id: str) -> SaleView:
        if not buy_sale_tx_id:
            raise BadRequestError("buy_sale_tx_id is required")
        buyer_hash = hash_address(buyer)

        def check() -> Sale:
            sale = self._require_sale(sale_id)
            self._require_state(sale, "purchase")
            if sale.seller_hash == buyer_hash:
                raise BadRequestError("Seller cannot buy their own item")
            return sale

        check()
        if self.settings.require_payment_confirmation:
            await self.verifier.confirm_hard(buy_sale_tx_id, "payment")
        sale = check()

        now = datetime.now(timezone.utc)
        sale.status = SALE_TRANSITIONS["purchase"]["to"]
        sale.buyer_address = buyer
        sale.buyer_hash = buyer_hash
        sale.buy_sale_tx_id = buy_sale_tx_id
        sale.paid_at = now
        sale.updated_at = now
        self.store.set_sale(sale)
        self._record(sale, "sale_paid", buy_sale_tx_id, buyer_hash=buyer_hash)
        logger.info("Purchase recorded for sale %s buyer=%s...", sale_id, buyer_hash[:16])
        return SaleView.from_sale(sale)

    @service_boundary
    async def complete(
        self,
        seller: str,
        sale_id: str,
        complete_sale_tx_id: str,
        buyer_address: str | None = None,
    ) -> SaleView:
        if not complete_sale_tx_id:
            raise BadRequestError("complete_sale_tx_id is required")
        sale = self._require_sale(sale_id)
        self._require_seller(sale, seller, "complete")
        self._require_state(sale, "complete")

        now = datetime.now(timezone.utc)
        sale.status = SALE_TRANSITIONS["complete"]["to"]
        sale.complete_sale_tx_id = complete_sale_tx_id
        sale.completed_at = now
        sale.updated_at = now
        self.store.set_sale(sale)

        self._move_listing(sale.listing_id, "sold", now)

        recipient = buyer_address or sale.buyer_address
        artifact = self.store.get_artifact(sale.tag_hash)
        if artifact is not None and recipient:
            artifact.owner_hash = hash_address(recipient)
            artifact.last_update_tx_id = complete_sale_tx_id
            self.store.set_artifact(artifact)
        elif artifact is None:
            logger.info("Sale %s completed for unregistered tag, no ownership update", sale_id)

        self._record(sale, "sale_completed", complete_sale_tx_id)
        logger.info("Sale %s completed tx=%s", sale_id, complete_sale_tx_id)
        return SaleView.from_sale(sale)

    @service_boundary
    async def cancel(self, seller: str, sale_id: str, cancel_tx_id: str) -> SaleView:
        if not cancel_tx_id:
            raise BadRequestError("cancel_tx_id is required")
        sale = self._require_sale(sale_id)
        self._require_seller(sale, seller, "cancel")
        self._require_state(sale, "cancel")

        now = datetime.now(timezone.utc)
        sale.status = SALE_TRANSITIONS["cancel"]["to"]
        sale.cancel_tx_id = cancel_tx_id
        sale.updated_at = now
        self.store.set_sale(sale)
        self._move_listing(sale.listing_id, "delisted", now)
        self._record(sale, "sale_cancelled", cancel_tx_id)
        logger.info("Sale %s cancelled", sale_id)
        return SaleView.from_sale(sale)

    @service_boundary
    async def refund(self, buyer: str, sale_id: str, refund_tx_id: str) -> SaleView:
        if not refund_tx_id:
            raise BadRequestError("refund_tx_id is required")
        sale = self._require_sale(sale_id)
        buyer_hash = hash_address(buyer)
        if sale.buyer_hash != buyer_hash:
            raise ForbiddenError("Only the buyer can refund")
        self._require_state(sale, "refund")

        now = datetime.now(timezone.utc)
        sale.status = SALE_TRANSITIONS["refund"]["to"]
        sale.refund_tx_id = refund_tx_id
        sale.updated_at = now
        self.store.set_sale(sale)
        self._move_listing(sale.listing_id, "active", now)
        self._record(sale, "sale_refunded", refund_tx_id, buyer_hash=buyer_hash)
        logger.info("Sale %s refunded by buyer=%s...", sale_id, buyer_hash[:16])
        return SaleView.from_sale(sale)

    @service_boundary
    async def update_on_chain_sale_id(self, seller: str, listing_id: str, new_id: str) -> OnChainIdUpdate:
        """Replace a provisional on-chain sale id once the wallet reports the real record."""
        if not listing_id or not new_id:
            raise BadRequestError("listing_id and on_chain_sale_id are required")
        sale = self.store.get_latest_sale_for_listing(listing_id)
        if sale is None:
            raise NotFoundError("No sale found for this listing")
        self._require_seller(sale, seller, "update")

        if not sale.on_chain_sale_id.startswith(self.settings.provisional_sale_prefix):
            return OnChainIdUpdate(updated=False, message="Sale already has a confirmed on-chain sale id")

        sale.on_chain_sale_id = new_id
        sale.updated_at = datetime.now(timezone.utc)
        self.store.set_sale(sale)
        self._record(sale, "on_chain_id_updated", sale.create_sale_tx_id)
        logger.info("Updated on-chain sale id for listing %s", listing_id)
        return OnChainIdUpdate(updated=True, message="On-chain sale id updated")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @service_boundary
    async def get_sale_status(self, sale_id: str, sale_commitment: str | None = None) -> SaleStatusView:
        sale = self._require_sale(sale_id)
        on_chain = OnChainSaleState()
        if sale_commitment:
            active, paid = await self.verifier.read_flags(sale_commitment, SALE_ACTIVE, SALE_PAID)
            on_chain = OnChainSaleState(active=active, paid=paid)
        view = SaleView.from_sale(sale).model_dump()
        return SaleStatusView.model_validate({**view, "on_chain": on_chain})

    @service_boundary
    async def sale_for_listing(self, listing_id: str) -> SaleView | None:
        sale = self.store.get_latest_sale_for_listing(listing_id)
        return SaleView.from_sale(sale) if sale is not None else None

    @service_boundary
    async def sales_for_seller(self, seller: str) -> list[SaleSummary]:
        return [self._summary(s) for s in self.store.sales_by_seller(hash_address(seller))]

    @service_boundary
    async def pending_completions(self, seller: str) -> list[SaleSummary]:
        return [self._summary(s) for s in self.store.pending_completions(hash_address(seller))]
