"""Pre-write guards.

All three are read-mostly checks that run before the speculative
metadata write. A guard failure ends the attempt with nothing to
compensate.

- BalanceGuard: the identity can afford the anchoring transaction.
- DuplicateGuard: no live submission exists for the key; collapses
  orphaned duplicates left by earlier crashed attempts.
- CapacityGuard: the target survey exists and still accepts responses.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from surveyx.errors import AlreadySubmitted, InsufficientFunds, ResourceUnavailable
from surveyx.ledger.base import LedgerClient
from surveyx.models.submission import SubmissionKind, SubmissionRequest
from surveyx.store.base import MetadataStore

logger = logging.getLogger(__name__)


class BalanceGuard:
    """Rejects identities whose balance is below the configured minimum."""

    def __init__(self, ledger: LedgerClient, minimum_balance: int) -> None:
        if minimum_balance < 0:
            raise ValueError("minimum_balance must be non-negative")
        self._ledger = ledger
        self._minimum_balance = minimum_balance

    @property
    def minimum_balance(self) -> int:
        return self._minimum_balance

    def check(self, identity: str) -> int:
        """Return the balance, or raise InsufficientFunds."""
        balance = self._ledger.get_balance(identity)
        if balance < self._minimum_balance:
            raise InsufficientFunds(identity, balance, self._minimum_balance)
        return balance


class DuplicateGuard:
    """Detects prior submissions and reconciles orphaned duplicates.

    The newest record (by creation time, then insertion sequence) is
    the one that survives reconciliation.
    """

    def __init__(self, store: MetadataStore) -> None:
        self._store = store

    def check(self, resource_id: str, identity: str, kind: SubmissionKind) -> None:
        """Return if nothing is live for the key; raise AlreadySubmitted otherwise."""
        existing = self._store.query(resource_id, identity, kind)
        if not existing:
            return
        keep = existing[0]
        deleted: List[str] = []
        if len(existing) > 1:
            deleted = self._collapse(existing)
        raise AlreadySubmitted(
            resource_id, identity,
            existing_record_id=keep.record_id,
            reconciled=len(deleted),
        )

    def reconcile(
        self,
        resource_id: str,
        identity: str,
        kind: SubmissionKind,
    ) -> List[str]:
        """Collapse duplicates for the key to one record. Returns deleted ids."""
        existing = self._store.query(resource_id, identity, kind)
        if len(existing) < 2:
            return []
        return self._collapse(existing)

    def _collapse(self, existing) -> List[str]:
        keep, orphans = existing[0], existing[1:]
        deleted: List[str] = []
        for orphan in orphans:
            try:
                self._store.delete(orphan.record_id)
            except Exception as exc:
                logger.warning(
                    "Could not delete orphaned record %s (%s); left for the next attempt",
                    orphan.record_id, exc,
                )
                continue
            deleted.append(orphan.record_id)
        if deleted:
            logger.warning(
                "Reconciled %d orphaned %s record(s) for (%s, %s); kept %s",
                len(deleted), keep.kind.value, keep.resource_id, keep.identity,
                keep.record_id,
            )
        return deleted


class CapacityGuard:
    """Checks that a survey exists and has room for another response.

    Only responses are limited. A survey's capacity is the
    ``max_responses`` stored in its definition record's details.
    """

    def __init__(self, store: MetadataStore) -> None:
        self._store = store

    def check(self, request: SubmissionRequest) -> Optional[int]:
        """Return the remaining capacity, or None when unlimited."""
        if request.kind != SubmissionKind.SUBMIT_RESPONSE:
            return None
        surveys = self._store.list_by_resource(
            request.resource_id, SubmissionKind.CREATE_SURVEY,
        )
        if not surveys:
            raise ResourceUnavailable(f"Survey not found: {request.resource_id}")
        limit = surveys[0].details.get("max_responses")
        if limit is None:
            return None
        max_responses = int(limit)
        responses = self._store.list_by_resource(
            request.resource_id, SubmissionKind.SUBMIT_RESPONSE,
        )
        if len(responses) >= max_responses:
            raise ResourceUnavailable(
                f"Survey {request.resource_id} is full "
                f"({len(responses)}/{max_responses} responses)"
            )
        return max_responses - len(responses)
