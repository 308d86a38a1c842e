from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .records import EditableRecord


@dataclass(frozen=True, slots=True)
class ConflictDecision:
    """Outcome of a version check whose client timestamp no longer matches the store."""

    has_conflict: bool
    local_timestamp: datetime
    server_timestamp: datetime
    server_snapshot: EditableRecord
