from datetime import datetime, timezone

from pydantic import BaseModel, Field


def utcnow():
    return datetime.now(timezone.utc)


class Artifact(BaseModel):
    tag_hash: str
    brand_address: str
    model_id: int
    serial_hash: str = ""
    created_tx_id: str
    minted_at: datetime = Field(default_factory=utcnow)
    stolen: bool = False  # monotonic: never flips back to False
    last_update_tx_id: str
    owner_hash: str | None = None  # sha256(owner address); raw address is never stored


class StolenTagRecord(BaseModel):
    """Stolen-registry row; may exist for tags the registry never minted."""

    tag_hash: str
    reported_at: datetime = Field(default_factory=utcnow)
    tx_id: str
    reported_by: str


class ResaleProof(BaseModel):
    token: str
    tag_hash: str
    owner_hash: str = ""
    tx_id: str
    created_at: datetime = Field(default_factory=utcnow)
