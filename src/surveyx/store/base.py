"""Off-chain metadata store contract.

The store holds the discoverable projection of submissions. Its
uniqueness constraint on (resource_id, identity, kind) over live
records is the final arbiter of duplicate submissions; the duplicate
guard's read is only a fast path in front of it.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, runtime_checkable

from surveyx.models.submission import MetadataRecord, SubmissionKind


@runtime_checkable
class MetadataStore(Protocol):

    def insert(self, record: MetadataRecord) -> str:
        """Persist a new record and return its id.

        Raises UniqueViolation if a live record exists for the same key
        and the store enforces uniqueness.
        """
        ...

    def query(
        self,
        resource_id: str,
        identity: str,
        kind: Optional[SubmissionKind] = None,
    ) -> List[MetadataRecord]:
        """Live records for (resource, identity), newest first."""
        ...

    def delete(self, record_id: str) -> None:
        """Delete a record. Deleting a missing id is not an error."""
        ...

    def mark_confirmed(
        self,
        record_id: str,
        signature: str,
        now: Optional[datetime] = None,
    ) -> MetadataRecord:
        """Promote a pending record once its transaction confirmed."""
        ...

    def get(self, record_id: str) -> Optional[MetadataRecord]:
        ...

    def list_by_resource(
        self,
        resource_id: str,
        kind: Optional[SubmissionKind] = None,
    ) -> List[MetadataRecord]:
        """All live records for a resource, newest first."""
        ...


def newest_first(records: List[MetadataRecord]) -> List[MetadataRecord]:
    """Order by creation time, then insertion sequence, newest first."""
    return sorted(
        records,
        key=lambda r: (r.created_utc.timestamp() if r.created_utc else 0.0, r.sequence),
        reverse=True,
    )
