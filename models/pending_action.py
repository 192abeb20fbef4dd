"""SQLModel table for actions waiting to be replayed against the API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


STATUS_PENDING = "pending"
STATUS_SYNCING = "syncing"
STATUS_FAILED = "failed"


class PendingActionEntry(SQLModel, table=True):
    __tablename__ = "pendingaction"

    seq: Optional[int] = Field(default=None, primary_key=True)
    id: str = Field(index=True, unique=True)
    kind: str = Field(index=True)
    payload: str
    created_at: datetime = Field(default_factory=utc_now, index=True)
    attempts: int = Field(default=0)
    status: str = Field(default=STATUS_PENDING, index=True)
    terminal: bool = Field(default=False)
    last_error: Optional[str] = None
    last_status_code: Optional[int] = None
    updated_at: datetime = Field(default_factory=utc_now)


__all__ = [
    "PendingActionEntry",
    "STATUS_FAILED",
    "STATUS_PENDING",
    "STATUS_SYNCING",
]
