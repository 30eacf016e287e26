"""Shared fixtures for the provenance registry test suite.

Each test gets its own snapshot file under tmp_path and an in-process fake
chain oracle, so nothing touches the network or a shared data directory.
"""

import asyncio
import uuid

import pytest

from provenance.config import Settings
from provenance.runtime import ProvenanceRuntime
from provenance.services.chain_service import STOLEN_COMMITMENTS, TAG_UNIQUENESS
from provenance.storage.snapshot_store import ProvenanceStore


class FakeChainOracle:
    """ChainOracle double: accepts every transaction unless told otherwise."""

    def __init__(self):
        self.rejected: set[str] = set()
        self.mappings: dict[tuple[str, str], str] = {}
        self.fail = False
        self.delay = 0.0
        self.tx_calls: list[str] = []
        self.mapping_calls: list[tuple[str, str, str]] = []

    def reject(self, *tx_ids: str) -> None:
        self.rejected.update(tx_ids)

    def set_flag(self, mapping_name: str, key: str, value: bool = True) -> None:
        self.mappings[(mapping_name, key)] = "true" if value else "false"

    async def _maybe_stall(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("explorer unreachable")

    async def is_transaction_accepted(self, tx_id: str) -> bool:
        self.tx_calls.append(tx_id)
        await self._maybe_stall()
        return tx_id not in self.rejected

    async def read_mapping(self, program_id: str, mapping_name: str, key: str) -> str | None:
        self.mapping_calls.append((program_id, mapping_name, key))
        await self._maybe_stall()
        return self.mappings.get((mapping_name, key))


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def test_settings():
    return Settings(
        environment="test",
        oracle_timeout_seconds=0.2,
        require_payment_confirmation=True,
    )


@pytest.fixture
def oracle():
    return FakeChainOracle()


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "provenance.json"


@pytest.fixture
async def store(store_path):
    s = ProvenanceStore.open(store_path)
    yield s
    await s.close()


@pytest.fixture
async def runtime(store_path, oracle, test_settings):
    rt = ProvenanceRuntime.open(store_path, oracle=oracle, cfg=test_settings)
    yield rt
    await rt.close()


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def make_brand(runtime):
    """Factory fixture: register a brand and return it."""

    async def _make(address: str = "brand1", display_name: str = "Acme"):
        return await runtime.artifacts.register_brand(address, display_name)

    return _make


@pytest.fixture
def make_artifact(runtime, make_brand):
    """Factory fixture: mint an artifact, registering its brand first if needed."""

    async def _make(
        tag_hash: str | None = None,
        brand_address: str = "brand1",
        model_id: int = 7,
        owner: str = "owner1",
        tx_id: str = "tx1",
    ):
        if runtime.store.get_brand(brand_address) is None:
            await make_brand(brand_address)
        return await runtime.artifacts.mint_artifact(
            tag_hash or f"tag-{_new_id()[:8]}", brand_address, model_id, "serial1", owner, tx_id,
        )

    return _make


@pytest.fixture
def make_listing(runtime, oracle):
    """Factory fixture: create a listing whose commitment is minted on chain."""

    async def _make(seller: str = "seller1", tag_hash: str = "tag1", **overrides):
        commitment = overrides.pop("tag_commitment", None) or f"{uuid.uuid4().int % 10**12}field"
        oracle.set_flag(TAG_UNIQUENESS, commitment)
        oracle.set_flag(STOLEN_COMMITMENTS, commitment, False)
        request = {
            "tag_commitment": commitment,
            "tag_hash": tag_hash,
            "model_id": 7,
            "title": "Acme Chronograph",
            "description": "Boxed, papers included",
            "condition": "like_new",
            "price": 100,
            "currency": "aleo",
            **overrides,
        }
        return await runtime.marketplace.create_listing(seller, request)

    return _make


@pytest.fixture
def make_sale(runtime, make_listing):
    """Factory fixture: listing + sale in pending_payment. Returns (listing, sale)."""

    async def _make(seller: str = "seller1", sale_id: str | None = None, tag_hash: str = "tag1"):
        listing = await make_listing(seller=seller, tag_hash=tag_hash)
        sale = await runtime.sales.create_sale(
            seller, listing.id, sale_id or f"sale-{_new_id()[:8]}", "pending_x", "tx4",
        )
        return listing, sale

    return _make
