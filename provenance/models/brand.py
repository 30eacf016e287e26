from datetime import datetime, timezone

from pydantic import BaseModel, Field


def utcnow():
    return datetime.now(timezone.utc)


class Brand(BaseModel):
    address: str
    display_name: str
    created_at: datetime = Field(default_factory=utcnow)
