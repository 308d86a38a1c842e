from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Union

from ...domain.exceptions import RecordNotFoundError
from ...domain.models import ConflictDecision, EditableRecord, RecordKind
from ...domain.ports.persistence import RecordRepository
from ...services.version_guard import VersionGuard

logger = logging.getLogger(__name__)


class RecordService:
    """CRUD over the career records. Updates go through the version guard."""

    def __init__(self, records: RecordRepository, guard: VersionGuard) -> None:
        self._records = records
        self._guard = guard

    def create(self, kind: RecordKind, user_id: str, values: Dict[str, Any]) -> EditableRecord:
        record = self._records.create_record(kind, user_id, values)
        logger.info("Created %s record %s for user %s", kind.value, record.id, user_id)
        return record

    def list(self, kind: RecordKind, user_id: str) -> List[EditableRecord]:
        return self._records.list_records(kind, user_id)

    def get(self, kind: RecordKind, user_id: str, record_id: str) -> EditableRecord:
        record = self._records.get_record(kind, user_id, record_id)
        if record is None:
            raise RecordNotFoundError(kind.value, record_id)
        return record

    def update(
        self,
        kind: RecordKind,
        user_id: str,
        record_id: str,
        client_updated_at: datetime,
        changes: Dict[str, Any],
    ) -> Union[EditableRecord, ConflictDecision]:
        return self._guard.check_and_apply(kind, user_id, record_id, client_updated_at, changes)

    def delete(self, kind: RecordKind, user_id: str, record_id: str) -> None:
        if not self._records.delete_record(kind, user_id, record_id):
            raise RecordNotFoundError(kind.value, record_id)
