"""Off-chain metadata writer — the speculative half of the saga."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from surveyx.errors import AlreadySubmitted, UniqueViolation
from surveyx.models.submission import (
    CiphertextEnvelope,
    LedgerTransaction,
    MetadataRecord,
    SubmissionRequest,
)
from surveyx.store.base import MetadataStore

logger = logging.getLogger(__name__)


class MetadataWriter:
    """Writes PENDING records and promotes them once anchored."""

    def __init__(self, store: MetadataStore) -> None:
        self._store = store

    def write(
        self,
        request: SubmissionRequest,
        envelope: CiphertextEnvelope,
        now: Optional[datetime] = None,
    ) -> MetadataRecord:
        """Insert a PENDING record for the request.

        A lost race against a concurrent attempt for the same key
        surfaces as AlreadySubmitted; nothing was written, so there is
        nothing to compensate.
        """
        now = now or datetime.now(timezone.utc)
        record = MetadataRecord(
            record_id="",
            resource_id=request.resource_id,
            identity=request.identity,
            kind=request.kind,
            computation_offset=envelope.computation_offset,
            ciphertext_commitment=envelope.commitment,
            ciphertext_hex=envelope.ciphertext.hex(),
            ephemeral_public_key_hex=envelope.ephemeral_public_key.hex(),
            nonce_hex=envelope.nonce.hex(),
            details=dict(request.details),
            created_utc=now,
        )
        try:
            record_id = self._store.insert(record)
        except UniqueViolation as exc:
            raise AlreadySubmitted(request.resource_id, request.identity) from exc

        logger.info(
            "Wrote pending %s record %s for (%s, %s)",
            request.kind.value, record_id, request.resource_id, request.identity,
        )
        stored = self._store.get(record_id)
        if stored is None:
            record.record_id = record_id
            return record
        return stored

    def promote(
        self,
        record: MetadataRecord,
        transaction: LedgerTransaction,
        now: Optional[datetime] = None,
    ) -> MetadataRecord:
        """Mark the record CONFIRMED. Never fails the submission.

        The ledger already holds the transaction; a record left PENDING
        is still correct, only less informative.
        """
        try:
            return self._store.mark_confirmed(
                record.record_id, transaction.signature, now=now,
            )
        except Exception as exc:
            logger.warning(
                "Could not promote record %s after transaction %s: %s",
                record.record_id, transaction.signature, exc,
            )
            return record
