"""In-memory metadata store."""

from __future__ import annotations

import copy
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import uuid4

from surveyx.errors import UniqueViolation
from surveyx.models.submission import MetadataRecord, RecordStatus, SubmissionKind
from surveyx.store.base import newest_first


class InMemoryMetadataStore:
    """Thread-safe dict-backed MetadataStore.

    ``enforce_unique=False`` models a store populated before the
    uniqueness constraint existed, where orphaned duplicates can
    accumulate and only reconciliation removes them.

    Records handed out are copies; callers cannot mutate stored state
    without going through the store.
    """

    def __init__(self, enforce_unique: bool = True) -> None:
        self._records: Dict[str, MetadataRecord] = {}
        self._lock = threading.RLock()
        self._sequence = 0
        self.enforce_unique = enforce_unique

    def insert(self, record: MetadataRecord) -> str:
        with self._lock:
            if self.enforce_unique and self._live(
                record.resource_id, record.identity, record.kind,
            ):
                raise UniqueViolation(
                    record.resource_id, record.identity, record.kind.value,
                )
            stored = copy.deepcopy(record)
            if not stored.record_id:
                stored.record_id = f"rec_{uuid4().hex[:12]}"
            if stored.record_id in self._records:
                raise ValueError(f"Record ID already exists: {stored.record_id}")
            self._sequence += 1
            stored.sequence = self._sequence
            if stored.created_utc is None:
                stored.created_utc = datetime.now(timezone.utc)
            stored.updated_utc = stored.created_utc
            self._records[stored.record_id] = stored
            return stored.record_id

    def query(
        self,
        resource_id: str,
        identity: str,
        kind: Optional[SubmissionKind] = None,
    ) -> List[MetadataRecord]:
        with self._lock:
            found = [
                r for r in self._records.values()
                if r.resource_id == resource_id
                and r.identity.lower() == identity.lower()
                and (kind is None or r.kind == kind)
            ]
            return [copy.deepcopy(r) for r in newest_first(found)]

    def delete(self, record_id: str) -> None:
        with self._lock:
            self._records.pop(record_id, None)

    def mark_confirmed(
        self,
        record_id: str,
        signature: str,
        now: Optional[datetime] = None,
    ) -> MetadataRecord:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise ValueError(f"Unknown record ID: {record_id}")
            if record.status != RecordStatus.CONFIRMED:
                record.transition_to(RecordStatus.CONFIRMED)
            record.signature = signature
            record.updated_utc = now or datetime.now(timezone.utc)
            return copy.deepcopy(record)

    def get(self, record_id: str) -> Optional[MetadataRecord]:
        with self._lock:
            record = self._records.get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def list_by_resource(
        self,
        resource_id: str,
        kind: Optional[SubmissionKind] = None,
    ) -> List[MetadataRecord]:
        with self._lock:
            found = [
                r for r in self._records.values()
                if r.resource_id == resource_id and (kind is None or r.kind == kind)
            ]
            return [copy.deepcopy(r) for r in newest_first(found)]

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def _live(self, resource_id: str, identity: str, kind: SubmissionKind) -> bool:
        return any(
            r.resource_id == resource_id
            and r.identity.lower() == identity.lower()
            and r.kind == kind
            for r in self._records.values()
        )
