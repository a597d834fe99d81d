from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from schemapilot.models.page import SchemaStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheEntry(BaseModel):
    """Last-known analysis outcome of one page URL."""

    schema_status: SchemaStatus
    title: str = ""
    existing_schema: Optional[Any] = None
    last_checked_at: datetime = Field(default_factory=_utcnow)
