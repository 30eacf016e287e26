"""Brand registration, artifact minting, transfers, theft reports and resale proofs.

Chain confirmation policy per operation:

    mint           soft  (unconfirmed -> warning, proceed)
    stolen report  soft
    transfer       hard  (unconfirmed -> BadRequest, oracle down -> Unavailable)
    resale proof   hard, but fails closed with valid=False instead of raising
"""

import logging

from provenance.core.boundary import service_boundary
from provenance.core.exceptions import (
    ArtifactNotFoundError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from provenance.core.hashing import hash_address
from provenance.models import Artifact, Brand, ResaleProof, StolenTagRecord
from provenance.schemas.artifact import (
    ArtifactStatus,
    ArtifactView,
    BrandChainStatus,
    BrandProfile,
    CommitmentExistence,
    CommitmentStolenStatus,
    ProofArtifact,
    ProofResult,
    StolenCheck,
    StolenReport,
)
from provenance.services.chain_service import (
    STOLEN_COMMITMENTS,
    TAG_UNIQUENESS,
    ChainVerifier,
    Confirmation,
)
from provenance.services.event_service import EventLog
from provenance.storage.snapshot_store import ProvenanceStore

logger = logging.getLogger(__name__)

MAX_DISPLAY_NAME = 100


def _require(value: str | None, name: str) -> str:
    if value is None or not str(value).strip():
        raise BadRequestError(f"{name} is required")
    return value


class ArtifactLedger:
    def __init__(self, store: ProvenanceStore, verifier: ChainVerifier, events: EventLog):
        self.store = store
        self.verifier = verifier
        self.events = events

    # ------------------------------------------------------------------
    # Brands
    # ------------------------------------------------------------------

    @service_boundary
    async def register_brand(self, address: str, display_name: str) -> Brand:
        _require(address, "address")
        display_name = _require(display_name, "display_name").strip()
        if len(display_name) > MAX_DISPLAY_NAME:
            raise BadRequestError(f"display_name must be at most {MAX_DISPLAY_NAME} characters")

        if self.store.get_brand(address) is not None:
            raise ConflictError("Brand already registered")

        brand = Brand(address=address, display_name=display_name)
        self.store.set_brand(brand)
        self.events.append("mint", {
            "action": "brand_registered",
            "address": address,
            "display_name": display_name,
        })
        logger.info("Registered brand %r", display_name)
        return brand

    @service_boundary
    async def list_brands(self) -> list[Brand]:
        return self.store.all_brands()

    @service_boundary
    async def brand_profile(self, address: str) -> BrandProfile:
        brand = self.store.get_brand(address)
        if brand is None:
            raise NotFoundError("Brand not found")
        artifacts = self.store.artifacts_by_brand(address)
        return BrandProfile(
            brand=brand,
            total_artifacts=len(artifacts),
            stolen_count=sum(1 for a in artifacts if a.stolen),
        )

    @service_boundary
    async def brand_authorized_on_chain(self, address: str) -> BrandChainStatus:
        authorized = await self.verifier.brand_authorized(address)
        return BrandChainStatus(
            address=address,
            authorized=authorized,
            program_id=self.verifier.settings.program_id,
        )

    # ------------------------------------------------------------------
    # Mint / transfer / stolen
    # ------------------------------------------------------------------

    def _check_mintable(self, tag_hash: str, brand_address: str) -> None:
        if self.store.get_brand(brand_address) is None:
            raise ForbiddenError("Only registered brands can mint artifacts")
        if self.store.get_artifact(tag_hash) is not None:
            raise ConflictError("Artifact with this tag already exists")

    @service_boundary
    async def mint_artifact(
        self,
        tag_hash: str,
        brand_address: str,
        model_id: int,
        serial_hash: str,
        initial_owner: str,
        tx_id: str,
    ) -> ArtifactView:
        _require(tag_hash, "tag_hash")
        _require(initial_owner, "initial_owner")
        _require(tx_id, "tx_id")
        if not isinstance(model_id, int) or isinstance(model_id, bool) or model_id < 0:
            raise BadRequestError("model_id must be a non-negative integer")

        self._check_mintable(tag_hash, brand_address)
        await self.verifier.confirm_soft(tx_id, "mint")
        # The oracle await may have let another mint of this tag through.
        self._check_mintable(tag_hash, brand_address)

        artifact = Artifact(
            tag_hash=tag_hash,
            brand_address=brand_address,
            model_id=model_id,
            serial_hash=serial_hash or "",
            created_tx_id=tx_id,
            last_update_tx_id=tx_id,
            owner_hash=hash_address(initial_owner),
        )
        self.store.set_artifact(artifact)
        self.events.append("mint", {
            "tag_hash": tag_hash,
            "brand_address": brand_address,
            "model_id": model_id,
            "tx_id": tx_id,
        })
        logger.info("Minted artifact %s (model %d) tx=%s", tag_hash, model_id, tx_id)
        return ArtifactView.from_artifact(artifact)

    @service_boundary
    async def transfer_artifact(self, tag_hash: str, to_address: str, tx_id: str) -> ArtifactView:
        _require(to_address, "to_address")
        _require(tx_id, "tx_id")
        if self.store.get_artifact(tag_hash) is None:
            raise ArtifactNotFoundError(tag_hash)

        await self.verifier.confirm_hard(tx_id, "transfer")

        artifact = self.store.get_artifact(tag_hash)
        if artifact is None:
            raise ArtifactNotFoundError(tag_hash)
        to_hash = hash_address(to_address)
        artifact.owner_hash = to_hash
        artifact.last_update_tx_id = tx_id
        self.store.set_artifact(artifact)
        self.events.append("transfer", {"tag_hash": tag_hash, "to_hash": to_hash, "tx_id": tx_id})
        logger.info("Transferred artifact %s tx=%s", tag_hash, tx_id)
        return ArtifactView.from_artifact(artifact)

    @service_boundary
    async def report_stolen(
        self,
        tag_hash: str,
        tx_id: str,
        reported_by: str,
        *,
        model_id: int | None = None,
        brand_address: str | None = None,
        serial_hash: str | None = None,
    ) -> StolenReport:
        """Mark a tag stolen. Repeat reports overwrite the registry row and never fail."""
        _require(tag_hash, "tag_hash")
        _require(tx_id, "tx_id")
        _require(reported_by, "reported_by")

        await self.verifier.confirm_soft(tx_id, "stolen report")

        artifact = self.store.get_artifact(tag_hash)
        if artifact is None and model_id is not None and brand_address:
            artifact = Artifact(
                tag_hash=tag_hash,
                brand_address=brand_address,
                model_id=model_id,
                serial_hash=serial_hash or "",
                created_tx_id=tx_id,
                last_update_tx_id=tx_id,
                owner_hash=hash_address(reported_by),
            )
            logger.info("Created artifact %s from stolen report metadata (model %d)", tag_hash, artifact.model_id)

        self.store.mark_tag_stolen(StolenTagRecord(tag_hash=tag_hash, tx_id=tx_id, reported_by=reported_by))

        if artifact is not None:
            artifact.stolen = True
            artifact.last_update_tx_id = tx_id
            self.store.set_artifact(artifact)

        self.events.append("stolen", {"tag_hash": tag_hash, "tx_id": tx_id, "reported_by": reported_by})
        logger.info("Tag %s reported stolen tx=%s", tag_hash, tx_id)
        return StolenReport(tag_hash=tag_hash)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @service_boundary
    async def get_artifact_status(self, tag_hash: str) -> ArtifactStatus:
        artifact = self.store.get_artifact(tag_hash)
        if artifact is None:
            return ArtifactStatus(
                status="unknown",
                authentic=False,
                stolen=self.store.is_tag_stolen(tag_hash),
                message="No artifact found with this tag",
            )
        stolen = artifact.stolen or self.store.is_tag_stolen(tag_hash)
        return ArtifactStatus(
            status="stolen" if stolen else "authentic",
            authentic=True,
            stolen=stolen,
            brand_address=artifact.brand_address,
            model_id=artifact.model_id,
            minted_at=artifact.minted_at,
            message=(
                "WARNING: This item has been reported stolen"
                if stolen
                else "This item is authentic and registered"
            ),
        )

    @service_boundary
    async def check_stolen(self, tag_hash: str) -> StolenCheck:
        record = self.store.get_stolen_record(tag_hash)
        artifact = self.store.get_artifact(tag_hash)
        result = StolenCheck(stolen=record is not None, tag_hash=tag_hash)
        if record is not None:
            result.reported_at = record.reported_at
            result.tx_id = record.tx_id
            result.reported_by = record.reported_by
        if artifact is not None:
            result.model_id = artifact.model_id
            result.brand_address = artifact.brand_address
            result.minted_at = artifact.minted_at
        return result

    @service_boundary
    async def artifacts_owned_by(self, owner_address: str) -> list[ArtifactView]:
        owned = self.store.artifacts_by_owner_hash(hash_address(owner_address))
        return [ArtifactView.from_artifact(a) for a in owned]

    @service_boundary
    async def commitment_stolen_on_chain(self, commitment: str) -> CommitmentStolenStatus:
        stolen = await self.verifier.read_flag(STOLEN_COMMITMENTS, commitment)
        return CommitmentStolenStatus(commitment=commitment, stolen=stolen)

    @service_boundary
    async def commitment_exists_on_chain(self, commitment: str) -> CommitmentExistence:
        exists = await self.verifier.read_flag(TAG_UNIQUENESS, commitment)
        return CommitmentExistence(commitment=commitment, exists=exists)

    # ------------------------------------------------------------------
    # Resale proofs
    # ------------------------------------------------------------------

    @staticmethod
    def _proof_artifact(artifact: Artifact) -> ProofArtifact:
        return ProofArtifact(
            tag_hash=artifact.tag_hash,
            brand_address=artifact.brand_address,
            model_id=artifact.model_id,
            minted_at=artifact.minted_at,
            stolen=artifact.stolen,
        )

    def _proof_precheck(self, tag_hash: str, token: str, tx_id: str) -> ProofResult | None:
        """Fail-closed checks shared before and after the oracle query."""
        artifact = self.store.get_artifact(tag_hash)
        if artifact is None:
            return ProofResult(valid=False, reason="Artifact not found")
        if artifact.stolen:
            return ProofResult(valid=False, reason="Cannot verify proof for stolen item")
        existing = self.store.get_proof(token)
        if existing is not None:
            if existing.tag_hash != tag_hash or existing.tx_id != tx_id:
                return ProofResult(valid=False, reason="Proof token already in use")
            return ProofResult(valid=True, artifact=self._proof_artifact(artifact))
        return None

    @service_boundary
    async def verify_proof(self, tag_hash: str, token: str, tx_id: str) -> ProofResult:
        """Check a resale proof. Never raises for domain failures; returns valid=False."""
        if not tag_hash or not token or not tx_id:
            return ProofResult(valid=False, reason="tag_hash, token and tx_id are required")

        early = self._proof_precheck(tag_hash, token, tx_id)
        if early is not None:
            return early

        if await self.verifier.check(tx_id) is not Confirmation.CONFIRMED:
            return ProofResult(valid=False, reason="Proof transaction not found or not accepted")

        early = self._proof_precheck(tag_hash, token, tx_id)
        if early is not None:
            return early

        artifact = self.store.get_artifact(tag_hash)
        self.store.add_proof(ResaleProof(
            token=token,
            tag_hash=tag_hash,
            owner_hash=artifact.owner_hash or "",
            tx_id=tx_id,
        ))
        self.events.append("proof", {"tag_hash": tag_hash, "token": token, "tx_id": tx_id})
        return ProofResult(valid=True, artifact=self._proof_artifact(artifact))

    @service_boundary
    async def lookup_proof(self, token: str) -> ProofResult:
        proof = self.store.get_proof(token)
        if proof is None:
            return ProofResult(valid=False, reason="Proof not found")
        artifact = self.store.get_artifact(proof.tag_hash)
        return ProofResult(
            valid=True,
            artifact=self._proof_artifact(artifact) if artifact is not None else None,
        )
