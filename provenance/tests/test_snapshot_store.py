"""Tests for ProvenanceStore: read-your-writes, snapshot persistence, recovery."""

import json
from unittest.mock import patch

from provenance.models import Artifact, Brand, EventLogEntry, Listing, Sale
from provenance.storage import snapshot_store
from provenance.storage.snapshot_store import ProvenanceStore


def _listing(**overrides) -> Listing:
    data = {
        "tag_commitment": "1field",
        "tag_hash": "tag1",
        "brand_address": "brand1",
        "brand_name": "Acme",
        "model_id": 7,
        "title": "Watch",
        "condition": "good",
        "price": 100,
        "currency": "aleo",
        "seller_hash": "s" * 64,
    }
    data.update(overrides)
    return Listing(**data)


def _sale(**overrides) -> Sale:
    data = {
        "sale_id": "sale1",
        "on_chain_sale_id": "pending_x",
        "listing_id": "listing-1",
        "seller_address": "seller1",
        "seller_hash": "s" * 64,
        "tag_hash": "tag1",
        "tag_commitment": "1field",
        "price": 100,
        "currency": "aleo",
        "create_sale_tx_id": "tx4",
    }
    data.update(overrides)
    return Sale(**data)


# ---------------------------------------------------------------------------
# In-memory semantics
# ---------------------------------------------------------------------------


async def test_mutation_visible_immediately(store):
    store.set_brand(Brand(address="brand1", display_name="Acme"))
    assert store.get_brand("brand1").display_name == "Acme"


async def test_accessors_return_copies(store):
    store.set_brand(Brand(address="brand1", display_name="Acme"))
    brand = store.get_brand("brand1")
    brand.display_name = "Tampered"
    assert store.get_brand("brand1").display_name == "Acme"


async def test_listing_by_commitment_ignores_delisted(store):
    store.set_listing(_listing(id="a", status="delisted"))
    assert store.get_listing_by_commitment("1field") is None

    store.set_listing(_listing(id="b"))
    assert store.get_listing_by_commitment("1field").id == "b"
    assert store.get_listing_by_commitment("1field", exclude_id="b") is None


async def test_listing_by_tag_hash_only_open(store):
    store.set_listing(_listing(id="a", status="sold"))
    assert store.get_listing_by_tag_hash("tag1") is None
    store.set_listing(_listing(id="b", tag_commitment="2field", status="reserved"))
    assert store.get_listing_by_tag_hash("tag1").id == "b"


async def test_latest_sale_for_listing_skips_abandoned(store):
    store.set_sale(_sale(id="pk1", sale_id="old", status="completed"))
    store.set_sale(_sale(id="pk2", sale_id="new", status="cancelled"))
    assert store.get_latest_sale_for_listing("listing-1").sale_id == "old"
    assert store.get_sale("pk2").sale_id == "new"
    assert store.get_active_sale_for_listing("listing-1") is None


async def test_pending_completions_only_paid(store):
    store.set_sale(_sale(id="pk1", sale_id="a", status="paid"))
    store.set_sale(_sale(id="pk2", sale_id="b", status="pending_payment"))
    assert [s.sale_id for s in store.pending_completions("s" * 64)] == ["a"]


async def test_events_limit_keeps_newest(store):
    for i in range(5):
        store.append_event(EventLogEntry(type="mint", data={"i": i}))
    assert [e.data["i"] for e in store.events(2)] == [3, 4]
    assert store.events(0) == []
    assert store.event_count() == 5


async def test_clear_missing_nonce_is_noop(store):
    store.clear_nonce("nobody")
    assert not store.dirty


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


async def test_restart_round_trip(store_path):
    store = ProvenanceStore.open(store_path)
    store.set_brand(Brand(address="brand1", display_name="Acme"))
    store.set_artifact(Artifact(
        tag_hash="tag1", brand_address="brand1", model_id=7,
        created_tx_id="tx1", last_update_tx_id="tx1", owner_hash="o" * 64,
    ))
    store.set_listing(_listing(id="listing-1"))
    store.set_sale(_sale(id="pk1"))
    await store.close()

    reopened = ProvenanceStore.open(store_path)
    assert reopened.all_brands() == store.all_brands()
    assert reopened.all_artifacts() == store.all_artifacts()
    assert reopened.all_listings() == store.all_listings()
    assert reopened.all_sales() == store.all_sales()


async def test_queued_writes_are_coalesced(store):
    real_write = snapshot_store._atomic_write_text
    calls = []

    def counting_write(path, content):
        calls.append(content)
        real_write(path, content)

    with patch.object(snapshot_store, "_atomic_write_text", side_effect=counting_write):
        for i in range(50):
            store.set_brand(Brand(address=f"brand{i}", display_name=f"Brand {i}"))
        await store.flush()

    assert len(calls) == 1
    assert len(json.loads(calls[0])["brands"]) == 50
    assert not store.dirty


async def test_flush_is_noop_when_clean(store):
    with patch.object(snapshot_store, "_atomic_write_text") as write:
        await store.flush()
    write.assert_not_called()


def test_writes_synchronously_without_event_loop(store_path):
    store = ProvenanceStore.open(store_path)
    store.set_brand(Brand(address="brand1", display_name="Acme"))

    assert store_path.exists()
    assert not store.dirty
    assert "brand1" in json.loads(store_path.read_text())["brands"]


def test_failed_write_keeps_previous_snapshot(store_path, caplog):
    store = ProvenanceStore.open(store_path)
    store.set_brand(Brand(address="brand1", display_name="Acme"))
    before = store_path.read_text()

    with patch.object(snapshot_store.os, "replace", side_effect=OSError("disk full")):
        store.set_brand(Brand(address="brand2", display_name="Other"))

    assert store_path.read_text() == before
    assert list(store_path.parent.glob("*.tmp")) == []
    assert "Failed to persist snapshot" in caplog.text
    # the in-memory state still has the write
    assert store.get_brand("brand2") is not None


def test_corrupt_snapshot_starts_empty(store_path, caplog):
    store_path.write_text("{not json")
    store = ProvenanceStore.open(store_path)
    assert store.all_brands() == []
    assert "Could not load snapshot" in caplog.text


def test_legacy_proof_list_is_keyed_by_token(store_path):
    store_path.write_text(json.dumps({
        "proofs": [
            {"token": "t1", "tag_hash": "tag1", "tx_id": "tx9", "created_at": "2025-01-01T00:00:00Z"},
        ],
    }))
    store = ProvenanceStore.open(store_path)
    assert store.get_proof("t1").tx_id == "tx9"


async def test_mutation_after_close_still_persists(store_path, caplog):
    store = ProvenanceStore.open(store_path)
    await store.close()
    store.set_brand(Brand(address="late", display_name="Late"))

    assert "Mutation after close" in caplog.text
    assert "late" in json.loads(store_path.read_text())["brands"]
