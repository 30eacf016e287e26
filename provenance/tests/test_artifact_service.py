"""Tests for ArtifactLedger: brands, minting, transfers, theft reports, proofs."""

import asyncio

import pytest

from provenance.core.exceptions import (
    BadRequestError,
    ChainUnavailableError,
    ConflictError,
    ErrorKind,
    ForbiddenError,
    NotFoundError,
)
from provenance.core.hashing import hash_address
from provenance.services.chain_service import STOLEN_COMMITMENTS, TAG_UNIQUENESS

CHAIN_TX = "at1" + "a" * 58


# ---------------------------------------------------------------------------
# Brands
# ---------------------------------------------------------------------------


async def test_register_brand_twice_conflicts(runtime, make_brand):
    await make_brand("brand1", "Acme")
    with pytest.raises(ConflictError):
        await make_brand("brand1", "Acme Again")


async def test_register_brand_appends_event(runtime, make_brand):
    await make_brand("brand1", "Acme")
    [event] = runtime.events.recent()
    assert event.type == "mint"
    assert event.data["action"] == "brand_registered"


async def test_list_brands(runtime, make_brand):
    await make_brand("brand1", "Acme")
    await make_brand("brand2", "Globex")
    assert [b.display_name for b in await runtime.artifacts.list_brands()] == ["Acme", "Globex"]


async def test_register_brand_rejects_blank_name(runtime):
    with pytest.raises(BadRequestError):
        await runtime.artifacts.register_brand("brand1", "   ")


async def test_brand_profile_counts(runtime, make_artifact):
    await make_artifact("tag1")
    await make_artifact("tag2")
    await runtime.artifacts.report_stolen("tag2", "tx2", "reporter1")

    profile = await runtime.artifacts.brand_profile("brand1")
    assert profile.total_artifacts == 2
    assert profile.stolen_count == 1


async def test_brand_profile_unknown_brand(runtime):
    with pytest.raises(NotFoundError):
        await runtime.artifacts.brand_profile("nobody")


async def test_brand_authorized_checks_both_mappings(runtime, oracle):
    oracle.set_flag("authorized_brands", "brand1")
    status = await runtime.artifacts.brand_authorized_on_chain("brand1")
    assert status.authorized
    assert status.program_id == runtime.settings.program_id


# ---------------------------------------------------------------------------
# Minting (scenario A)
# ---------------------------------------------------------------------------


async def test_scenario_a_mint_then_read(runtime, make_brand):
    await make_brand("brand1", "Acme")
    await runtime.artifacts.mint_artifact("tag1", "brand1", 7, "serial1", "owner1", "tx1")

    status = await runtime.artifacts.get_artifact_status("tag1")
    assert status.authentic is True
    assert status.stolen is False
    assert status.model_id == 7
    assert status.message == "This item is authentic and registered"


async def test_mint_stores_owner_hash_only(runtime, make_artifact):
    view = await make_artifact("tag1", owner="owner1")
    stored = runtime.store.get_artifact("tag1")

    assert stored.owner_hash == hash_address("owner1")
    assert "owner_hash" not in view.model_dump()
    await runtime.store.flush()
    assert "owner1" not in runtime.store.path.read_text()


async def test_duplicate_mint_conflicts(runtime, make_artifact):
    await make_artifact("tag1")
    with pytest.raises(ConflictError) as exc_info:
        await make_artifact("tag1")
    assert exc_info.value.kind is ErrorKind.CONFLICT
    assert exc_info.value.status_code == 409


async def test_mint_requires_registered_brand(runtime):
    with pytest.raises(ForbiddenError):
        await runtime.artifacts.mint_artifact("tag1", "ghost", 7, "serial1", "owner1", "tx1")


@pytest.mark.parametrize("model_id", ["7", 7.0, True, -1])
async def test_mint_rejects_bad_model_id(runtime, make_brand, model_id):
    await make_brand()
    with pytest.raises(BadRequestError):
        await runtime.artifacts.mint_artifact("tag1", "brand1", model_id, "serial1", "owner1", "tx1")
    assert runtime.store.get_artifact("tag1") is None


async def test_mint_unconfirmed_chain_tx_only_warns(runtime, make_brand, oracle, caplog):
    await make_brand()
    oracle.reject(CHAIN_TX)
    await runtime.artifacts.mint_artifact("tag1", "brand1", 7, "serial1", "owner1", CHAIN_TX)

    assert runtime.store.get_artifact("tag1") is not None
    assert "not yet confirmed" in caplog.text


async def test_mint_with_provisional_tx_skips_oracle(runtime, make_brand, oracle):
    await make_brand()
    await runtime.artifacts.mint_artifact("tag1", "brand1", 7, "serial1", "owner1", "shield_123")
    assert oracle.tx_calls == []


async def test_concurrent_mints_of_same_tag_one_wins(runtime, make_brand, oracle):
    await make_brand()
    oracle.delay = 0.01
    results = await asyncio.gather(
        runtime.artifacts.mint_artifact("tag1", "brand1", 7, "s", "owner1", CHAIN_TX),
        runtime.artifacts.mint_artifact("tag1", "brand1", 7, "s", "owner2", CHAIN_TX),
        return_exceptions=True,
    )
    assert sum(isinstance(r, ConflictError) for r in results) == 1
    mints = [e for e in runtime.events.recent() if e.data.get("tag_hash") == "tag1"]
    assert len(mints) == 1


# ---------------------------------------------------------------------------
# Transfers and theft (scenario B)
# ---------------------------------------------------------------------------


async def test_scenario_b_stolen_survives_transfer(runtime, make_artifact):
    await make_artifact("tag1")
    report = await runtime.artifacts.report_stolen("tag1", "tx2", "reporter1")
    assert report.stolen is True

    await runtime.artifacts.transfer_artifact("tag1", "owner2", "tx3")

    artifact = runtime.store.get_artifact("tag1")
    assert artifact.stolen is True
    assert artifact.owner_hash == hash_address("owner2")
    assert artifact.last_update_tx_id == "tx3"


async def test_transfer_unknown_artifact(runtime):
    with pytest.raises(NotFoundError):
        await runtime.artifacts.transfer_artifact("missing", "owner2", "tx3")


async def test_transfer_requires_confirmed_tx(runtime, make_artifact, oracle):
    await make_artifact("tag1")
    oracle.reject("tx3")
    with pytest.raises(BadRequestError):
        await runtime.artifacts.transfer_artifact("tag1", "owner2", "tx3")
    assert runtime.store.get_artifact("tag1").owner_hash == hash_address("owner1")


async def test_transfer_oracle_down_is_unavailable(runtime, make_artifact, oracle):
    await make_artifact("tag1")
    oracle.fail = True
    with pytest.raises(ChainUnavailableError) as exc_info:
        await runtime.artifacts.transfer_artifact("tag1", "owner2", "tx3")
    assert exc_info.value.status_code == 503


async def test_transfer_oracle_timeout_is_unavailable(runtime, make_artifact, oracle):
    await make_artifact("tag1")
    oracle.delay = 1.0
    with pytest.raises(ChainUnavailableError):
        await runtime.artifacts.transfer_artifact("tag1", "owner2", "tx3")


async def test_transfer_event_records_hash_not_address(runtime, make_artifact):
    await make_artifact("tag1")
    await runtime.artifacts.transfer_artifact("tag1", "owner2", "tx3")
    event = runtime.events.recent()[-1]
    assert event.type == "transfer"
    assert event.data["to_hash"] == hash_address("owner2")
    assert "owner2" not in event.data.values()


async def test_report_stolen_is_idempotent(runtime, make_artifact):
    await make_artifact("tag1")
    for tx in ("tx2", "tx2", "tx5"):
        await runtime.artifacts.report_stolen("tag1", tx, "reporter1")

    check = await runtime.artifacts.check_stolen("tag1")
    assert check.stolen
    assert check.tx_id == "tx5"
    assert runtime.store.get_artifact("tag1").stolen


async def test_report_stolen_unknown_tag_without_metadata(runtime):
    await runtime.artifacts.report_stolen("loose", "tx2", "reporter1")

    assert runtime.store.get_artifact("loose") is None
    status = await runtime.artifacts.get_artifact_status("loose")
    assert status.status == "unknown"
    assert status.stolen is True


async def test_report_stolen_creates_artifact_from_metadata(runtime):
    await runtime.artifacts.report_stolen(
        "tag9", "tx2", "reporter1", model_id=3, brand_address="brand1", serial_hash="serial9",
    )
    artifact = runtime.store.get_artifact("tag9")
    assert artifact.stolen
    assert artifact.model_id == 3
    assert artifact.owner_hash == hash_address("reporter1")


async def test_stolen_status_message(runtime, make_artifact):
    await make_artifact("tag1")
    await runtime.artifacts.report_stolen("tag1", "tx2", "reporter1")
    status = await runtime.artifacts.get_artifact_status("tag1")
    assert status.status == "stolen"
    assert status.message == "WARNING: This item has been reported stolen"


async def test_artifacts_owned_by(runtime, make_artifact):
    await make_artifact("tag1", owner="alice")
    await make_artifact("tag2", owner="bob")
    owned = await runtime.artifacts.artifacts_owned_by("alice")
    assert [a.tag_hash for a in owned] == ["tag1"]


async def test_commitment_lookups(runtime, oracle):
    oracle.set_flag(TAG_UNIQUENESS, "5field")
    oracle.mappings[(STOLEN_COMMITMENTS, "5field")] = '"true"'

    exists = await runtime.artifacts.commitment_exists_on_chain("5field")
    stolen = await runtime.artifacts.commitment_stolen_on_chain("5field")
    assert exists.exists and stolen.stolen
    assert not (await runtime.artifacts.commitment_exists_on_chain("6field")).exists


# ---------------------------------------------------------------------------
# Resale proofs
# ---------------------------------------------------------------------------


async def test_verify_proof_success_and_lookup(runtime, make_artifact):
    await make_artifact("tag1")
    result = await runtime.artifacts.verify_proof("tag1", "tok1", "tx8")
    assert result.valid
    assert result.artifact.model_id == 7

    looked_up = await runtime.artifacts.lookup_proof("tok1")
    assert looked_up.valid
    assert "owner_hash" not in looked_up.model_dump()["artifact"]
    assert runtime.events.recent()[-1].type == "proof"


async def test_verify_proof_unknown_artifact(runtime):
    result = await runtime.artifacts.verify_proof("missing", "tok1", "tx8")
    assert not result.valid
    assert result.reason == "Artifact not found"


async def test_verify_proof_stolen_artifact(runtime, make_artifact):
    await make_artifact("tag1")
    await runtime.artifacts.report_stolen("tag1", "tx2", "reporter1")
    result = await runtime.artifacts.verify_proof("tag1", "tok1", "tx8")
    assert not result.valid
    assert runtime.store.get_proof("tok1") is None


async def test_verify_proof_unconfirmed_tx(runtime, make_artifact, oracle):
    await make_artifact("tag1")
    oracle.reject("tx8")
    result = await runtime.artifacts.verify_proof("tag1", "tok1", "tx8")
    assert not result.valid


async def test_verify_proof_oracle_down_fails_closed(runtime, make_artifact, oracle):
    await make_artifact("tag1")
    oracle.fail = True
    result = await runtime.artifacts.verify_proof("tag1", "tok1", "tx8")
    assert not result.valid


async def test_verify_proof_token_reuse(runtime, make_artifact):
    await make_artifact("tag1")
    await make_artifact("tag2")
    await runtime.artifacts.verify_proof("tag1", "tok1", "tx8")
    before = runtime.store.event_count()

    replay = await runtime.artifacts.verify_proof("tag1", "tok1", "tx8")
    hijack = await runtime.artifacts.verify_proof("tag2", "tok1", "tx8")

    assert replay.valid
    assert not hijack.valid
    assert hijack.reason == "Proof token already in use"
    assert runtime.store.event_count() == before


async def test_lookup_unknown_proof(runtime):
    result = await runtime.artifacts.lookup_proof("nope")
    assert not result.valid
    assert result.artifact is None
