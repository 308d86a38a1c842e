"""Optimistic concurrency control for the editable career records."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Union

from ..domain.clock import Clock, ensure_utc, utc_now
from ..domain.exceptions import RecordNotFoundError
from ..domain.models import ConflictDecision, EditableRecord, RecordKind
from ..domain.ports.persistence import RecordRepository

logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)


def detect_conflict(record: EditableRecord, client_timestamp: datetime) -> Optional[ConflictDecision]:
    """
    Compare the client's last-seen version token with the stored one.

    Any difference is a conflict, including a client timestamp older or newer
    than the stored one: the token is compared for equality, never ordered.
    """
    local = ensure_utc(client_timestamp)
    server = ensure_utc(record.updated_at)
    if local == server:
        return None
    return ConflictDecision(
        has_conflict=True,
        local_timestamp=local,
        server_timestamp=server,
        server_snapshot=record,
    )


def next_version(previous: datetime, now: datetime) -> datetime:
    """New version token, strictly after ``previous`` even when the clock has not moved."""
    now = ensure_utc(now)
    previous = ensure_utc(previous)
    if now <= previous:
        return previous + _TICK
    return now


class VersionGuard:
    """Applies record mutations only when the client saw the latest version."""

    def __init__(self, records: RecordRepository, *, clock: Clock = utc_now) -> None:
        self._records = records
        self._clock = clock

    def check_and_apply(
        self,
        kind: RecordKind,
        user_id: str,
        record_id: str,
        client_timestamp: datetime,
        mutation: Dict[str, Any],
    ) -> Union[EditableRecord, ConflictDecision]:
        """
        Apply ``mutation`` to the record if ``client_timestamp`` matches its version.

        The comparison and the write happen inside a single storage transaction.

        Returns:
            The updated record, or a ConflictDecision carrying the server snapshot

        Raises:
            RecordNotFoundError: If the record does not exist for this user
        """
        with self._records.lock_record(kind, user_id, record_id) as locked:
            current = locked.record
            if current is None:
                raise RecordNotFoundError(kind.value, record_id)
            conflict = detect_conflict(current, client_timestamp)
            if conflict is not None:
                logger.info(
                    "Version conflict on %s record %s (client=%s server=%s)",
                    kind.value,
                    record_id,
                    conflict.local_timestamp.isoformat(),
                    conflict.server_timestamp.isoformat(),
                )
                return conflict
            return locked.apply(mutation, next_version(current.updated_at, self._clock()))
