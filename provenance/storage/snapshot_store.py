"""Durable keyed store for the provenance registry.

State lives in memory and every mutation is visible immediately to the
calling coroutine. Durability is a full JSON snapshot written by a single
background writer:

    mutation -> generation += 1 -> writer task (one at a time)
             -> serialise current state -> temp file + fsync -> os.replace

Only the newest snapshot matters, so generations queued while a write is in
flight are coalesced into the next pass. A crash mid-write leaves the
previous snapshot intact.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from provenance.core.async_tasks import fire_and_forget
from provenance.models import (
    Artifact,
    Brand,
    EventLogEntry,
    Listing,
    ResaleProof,
    Sale,
    StolenTagRecord,
)
from provenance.models.listing import OPEN_LISTING_STATUSES
from provenance.models.sale import ABANDONED_SALE_STATUSES, ACTIVE_SALE_STATUSES

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class StoreData(BaseModel):
    version: int = SNAPSHOT_VERSION
    brands: dict[str, Brand] = Field(default_factory=dict)
    artifacts: dict[str, Artifact] = Field(default_factory=dict)
    stolen_tags: dict[str, StolenTagRecord] = Field(default_factory=dict)
    listings: dict[str, Listing] = Field(default_factory=dict)
    sales: dict[str, Sale] = Field(default_factory=dict)
    proofs: dict[str, ResaleProof] = Field(default_factory=dict)
    nonces: dict[str, str] = Field(default_factory=dict)
    events: list[EventLogEntry] = Field(default_factory=list)

    @field_validator("proofs", mode="before")
    @classmethod
    def _key_legacy_proof_list(cls, value: Any) -> Any:
        # Older snapshots kept proofs as an append-only list.
        if isinstance(value, list):
            return {p["token"]: p for p in value if isinstance(p, dict) and "token" in p}
        return value


def _atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* via a same-directory temp file and os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _load(path: Path) -> StoreData:
    if not path.exists():
        return StoreData()
    try:
        return StoreData.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Could not load snapshot %s, starting from an empty registry: %s", path, exc)
        return StoreData()


class ProvenanceStore:
    """Single-writer snapshot store. Construct with `ProvenanceStore.open(path)`."""

    def __init__(self, path: Path, data: StoreData):
        self._path = path
        self._data = data
        self._generation = 0
        self._persisted_generation = 0
        self._writer: asyncio.Task | None = None
        self._closed = False

    @classmethod
    def open(cls, path: str | os.PathLike) -> ProvenanceStore:
        path = Path(path)
        store = cls(path, _load(path))
        logger.info(
            "Opened provenance store %s (%d artifacts, %d listings, %d sales)",
            path, len(store._data.artifacts), len(store._data.listings), len(store._data.sales),
        )
        return store

    async def close(self) -> None:
        if self._closed:
            return
        await self.flush()
        self._closed = True

    @property
    def path(self) -> Path:
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dirty(self) -> bool:
        return self._persisted_generation < self._generation

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _serialize(self) -> str:
        return self._data.model_dump_json(indent=2)

    def _changed(self) -> None:
        self._generation += 1
        if self._closed:
            logger.warning("Mutation after close on %s; writing snapshot synchronously", self._path)
            self._write_now()
            return
        if self._writer is not None and not self._writer.done():
            return
        writer = fire_and_forget(self._drain(), task_name="provenance-store-persist")
        if writer is None:
            self._write_now()
        else:
            self._writer = writer

    async def _drain(self) -> None:
        while self._persisted_generation < self._generation:
            generation = self._generation
            payload = self._serialize()
            try:
                await asyncio.to_thread(_atomic_write_text, self._path, payload)
            except Exception:
                logger.exception("Failed to persist snapshot generation %d to %s", generation, self._path)
            self._persisted_generation = generation

    def _write_now(self) -> None:
        generation = self._generation
        try:
            _atomic_write_text(self._path, self._serialize())
        except Exception:
            logger.exception("Failed to persist snapshot generation %d to %s", generation, self._path)
        self._persisted_generation = generation

    async def flush(self) -> None:
        """Wait until the newest generation has been handed to disk."""
        while self.dirty:
            writer = self._writer
            if writer is None or writer.done():
                self._write_now()
                break
            await asyncio.wait({writer})

    # ------------------------------------------------------------------
    # Brands
    # ------------------------------------------------------------------

    def get_brand(self, address: str) -> Brand | None:
        brand = self._data.brands.get(address)
        return brand.model_copy(deep=True) if brand else None

    def set_brand(self, brand: Brand) -> None:
        self._data.brands[brand.address] = brand.model_copy(deep=True)
        self._changed()

    def all_brands(self) -> list[Brand]:
        return [b.model_copy(deep=True) for b in self._data.brands.values()]

    # ------------------------------------------------------------------
    # Artifacts and stolen registry
    # ------------------------------------------------------------------

    def get_artifact(self, tag_hash: str) -> Artifact | None:
        artifact = self._data.artifacts.get(tag_hash)
        return artifact.model_copy(deep=True) if artifact else None

    def set_artifact(self, artifact: Artifact) -> None:
        self._data.artifacts[artifact.tag_hash] = artifact.model_copy(deep=True)
        self._changed()

    def all_artifacts(self) -> list[Artifact]:
        return [a.model_copy(deep=True) for a in self._data.artifacts.values()]

    def artifacts_by_brand(self, brand_address: str) -> list[Artifact]:
        return [
            a.model_copy(deep=True)
            for a in self._data.artifacts.values()
            if a.brand_address == brand_address
        ]

    def artifacts_by_owner_hash(self, owner_hash: str) -> list[Artifact]:
        return [
            a.model_copy(deep=True)
            for a in self._data.artifacts.values()
            if a.owner_hash == owner_hash
        ]

    def mark_tag_stolen(self, record: StolenTagRecord) -> None:
        self._data.stolen_tags[record.tag_hash] = record.model_copy(deep=True)
        self._changed()

    def get_stolen_record(self, tag_hash: str) -> StolenTagRecord | None:
        record = self._data.stolen_tags.get(tag_hash)
        return record.model_copy(deep=True) if record else None

    def is_tag_stolen(self, tag_hash: str) -> bool:
        return tag_hash in self._data.stolen_tags

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def get_listing(self, listing_id: str) -> Listing | None:
        listing = self._data.listings.get(listing_id)
        return listing.model_copy(deep=True) if listing else None

    def set_listing(self, listing: Listing) -> None:
        self._data.listings[listing.id] = listing.model_copy(deep=True)
        self._changed()

    def all_listings(self) -> list[Listing]:
        """All listings in creation order."""
        return [listing.model_copy(deep=True) for listing in self._data.listings.values()]

    def get_listing_by_commitment(self, tag_commitment: str, exclude_id: str | None = None) -> Listing | None:
        for listing in self._data.listings.values():
            if listing.id == exclude_id:
                continue
            if listing.tag_commitment == tag_commitment and listing.status != "delisted":
                return listing.model_copy(deep=True)
        return None

    def get_listing_by_tag_hash(self, tag_hash: str) -> Listing | None:
        for listing in self._data.listings.values():
            if listing.tag_hash == tag_hash and listing.status in OPEN_LISTING_STATUSES:
                return listing.model_copy(deep=True)
        return None

    def listings_by_seller(self, seller_hash: str) -> list[Listing]:
        return [
            listing.model_copy(deep=True)
            for listing in self._data.listings.values()
            if listing.seller_hash == seller_hash
        ]

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    def get_sale(self, sale_pk: str) -> Sale | None:
        sale = self._data.sales.get(sale_pk)
        return sale.model_copy(deep=True) if sale else None

    def set_sale(self, sale: Sale) -> None:
        self._data.sales[sale.id] = sale.model_copy(deep=True)
        self._changed()

    def all_sales(self) -> list[Sale]:
        return [s.model_copy(deep=True) for s in self._data.sales.values()]

    def get_sale_by_sale_id(self, sale_id: str) -> Sale | None:
        for sale in self._data.sales.values():
            if sale.sale_id == sale_id:
                return sale.model_copy(deep=True)
        return None

    def get_active_sale_for_listing(self, listing_id: str) -> Sale | None:
        for sale in self._data.sales.values():
            if sale.listing_id == listing_id and sale.status in ACTIVE_SALE_STATUSES:
                return sale.model_copy(deep=True)
        return None

    def get_latest_sale_for_listing(self, listing_id: str) -> Sale | None:
        """Newest sale for a listing that was not cancelled or refunded."""
        for sale in reversed(list(self._data.sales.values())):
            if sale.listing_id == listing_id and sale.status not in ABANDONED_SALE_STATUSES:
                return sale.model_copy(deep=True)
        return None

    def sales_by_seller(self, seller_hash: str) -> list[Sale]:
        return [
            s.model_copy(deep=True)
            for s in self._data.sales.values()
            if s.seller_hash == seller_hash
        ]

    def pending_completions(self, seller_hash: str) -> list[Sale]:
        return [
            s.model_copy(deep=True)
            for s in self._data.sales.values()
            if s.seller_hash == seller_hash and s.status == "paid"
        ]

    # ------------------------------------------------------------------
    # Resale proofs
    # ------------------------------------------------------------------

    def get_proof(self, token: str) -> ResaleProof | None:
        proof = self._data.proofs.get(token)
        return proof.model_copy(deep=True) if proof else None

    def add_proof(self, proof: ResaleProof) -> None:
        self._data.proofs[proof.token] = proof.model_copy(deep=True)
        self._changed()

    # ------------------------------------------------------------------
    # Auth nonces
    # ------------------------------------------------------------------

    def get_nonce(self, address: str) -> str | None:
        return self._data.nonces.get(address)

    def set_nonce(self, address: str, nonce: str) -> None:
        self._data.nonces[address] = nonce
        self._changed()

    def clear_nonce(self, address: str) -> None:
        if self._data.nonces.pop(address, None) is not None:
            self._changed()

    # ------------------------------------------------------------------
    # Event log
    # ------------------------------------------------------------------

    def append_event(self, entry: EventLogEntry) -> None:
        self._data.events.append(entry)
        self._changed()

    def events(self, limit: int | None = None) -> list[EventLogEntry]:
        """Entries oldest-first; `limit` keeps only the newest N."""
        if limit is None:
            return list(self._data.events)
        if limit <= 0:
            return []
        return self._data.events[-limit:]

    def last_event(self) -> EventLogEntry | None:
        return self._data.events[-1] if self._data.events else None

    def event_count(self) -> int:
        return len(self._data.events)
