"""
AuditEnvelope -- the who/when metadata carried by every persisted entity.

The ORM mixin ``AuditedBase`` (db/base.py) stores these columns once for all
models; ``AuditEnvelope`` is the immutable read-side view of them, so
reporting and API layers never handle the columns one by one.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class AuditEnvelope:
    """Immutable audit metadata for one entity."""

    created_at: datetime | None
    created_by: UUID
    updated_at: datetime | None
    updated_by: UUID | None
    is_deleted: bool = False
    deleted_at: datetime | None = None
    deleted_by: UUID | None = None

    @property
    def last_actor(self) -> UUID:
        """Most recent actor to touch the entity."""
        if self.is_deleted and self.deleted_by is not None:
            return self.deleted_by
        return self.updated_by or self.created_by
