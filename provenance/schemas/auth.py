from typing import Literal

from pydantic import BaseModel

from provenance.models import Brand


class NonceChallenge(BaseModel):
    nonce: str
    message: str
    timestamp: int


class SessionGrant(BaseModel):
    token: str
    address: str
    role: Literal["brand", "user"]
    brand: Brand | None = None
