from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from provenance.models import Artifact, Brand


class ArtifactView(BaseModel):
    """Artifact without the owner digest."""

    tag_hash: str
    brand_address: str
    model_id: int
    serial_hash: str
    created_tx_id: str
    minted_at: datetime
    stolen: bool
    last_update_tx_id: str

    @classmethod
    def from_artifact(cls, artifact: Artifact) -> "ArtifactView":
        return cls.model_validate(artifact.model_dump(exclude={"owner_hash"}))


class ArtifactStatus(BaseModel):
    status: Literal["unknown", "authentic", "stolen"]
    authentic: bool
    stolen: bool
    brand_address: str | None = None
    model_id: int | None = None
    minted_at: datetime | None = None
    message: str


class StolenCheck(BaseModel):
    stolen: bool
    tag_hash: str
    reported_at: datetime | None = None
    tx_id: str | None = None
    reported_by: str | None = None
    model_id: int | None = None
    brand_address: str | None = None
    minted_at: datetime | None = None


class StolenReport(BaseModel):
    stolen: bool = True
    tag_hash: str


class ProofArtifact(BaseModel):
    tag_hash: str
    brand_address: str
    model_id: int
    minted_at: datetime
    stolen: bool


class ProofResult(BaseModel):
    valid: bool
    reason: str | None = None
    artifact: ProofArtifact | None = None


class BrandProfile(BaseModel):
    brand: Brand
    total_artifacts: int
    stolen_count: int


class CommitmentStolenStatus(BaseModel):
    commitment: str
    stolen: bool
    source: str = "on-chain"


class CommitmentExistence(BaseModel):
    commitment: str
    exists: bool
    source: str = "on-chain"


class BrandChainStatus(BaseModel):
    address: str
    authorized: bool
    program_id: str
