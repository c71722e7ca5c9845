"""Submission models — requests, envelopes, metadata records, transactions.

The MetadataRecord is the off-chain projection of a submission. It is
written speculatively (PENDING) before the ledger confirms and promoted
to CONFIRMED once the anchoring transaction lands. The LedgerTransaction
is the system of record: a MetadataRecord must never outlive a failed or
absent transaction.

State machine (MetadataRecord):
    PENDING → CONFIRMED
    PENDING → (deleted by compensator or reconciler)
"""

from __future__ import annotations

import enum
import hashlib
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional


class SubmissionKind(str, enum.Enum):
    """What is being submitted. Each kind queues the MPC computation
    definition of the same name."""
    CREATE_SURVEY = "create_survey"
    SUBMIT_RESPONSE = "submit_response"


class RecordStatus(str, enum.Enum):
    """Visibility state of an off-chain record.

    PENDING records are discoverable but not yet anchored. Readers must
    not treat "discoverable" as "confirmed".
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"


RECORD_TRANSITIONS: Dict[RecordStatus, frozenset] = {
    RecordStatus.PENDING: frozenset({RecordStatus.CONFIRMED}),
    RecordStatus.CONFIRMED: frozenset(),
}


class ConfirmationState(str, enum.Enum):
    """Ledger-reported state of a submitted transaction."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class SubmissionRequest:
    """One logical create/submit action. Never persisted."""
    identity: str
    resource_id: str
    kind: SubmissionKind
    payload: Mapping[str, Any]
    details: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.identity or not self.identity.strip():
            raise ValueError("identity must not be blank")
        if not self.resource_id or not self.resource_id.strip():
            raise ValueError("resource_id must not be blank")
        if not isinstance(self.payload, Mapping):
            raise ValueError("payload must be a mapping")


@dataclass(frozen=True)
class CiphertextEnvelope:
    """Encrypted payload plus everything the executor needs to open it."""
    ciphertext: bytes
    ephemeral_public_key: bytes
    nonce: bytes
    computation_offset: int

    @property
    def commitment(self) -> str:
        """SHA-256 commitment over the ciphertext."""
        return "sha256:" + hashlib.sha256(self.ciphertext).hexdigest()

    @property
    def nonce_u128(self) -> int:
        """Nonce as the little-endian u128 carried on the ledger."""
        return int.from_bytes(self.nonce, "little")


@dataclass(frozen=True)
class SealedPayload:
    """Envelope plus the transient shared key.

    The key stays with the submitter so it can open the computation
    result. It is never written to the store or the ledger.
    """
    envelope: CiphertextEnvelope
    shared_key: bytes = field(repr=False)


@dataclass
class MetadataRecord:
    """Discoverable off-chain record of one submission.

    Mutable — status moves PENDING → CONFIRMED. Validated against
    RECORD_TRANSITIONS.
    """
    record_id: str
    resource_id: str
    identity: str
    kind: SubmissionKind
    computation_offset: int
    ciphertext_commitment: str
    ciphertext_hex: str
    ephemeral_public_key_hex: str
    nonce_hex: str
    status: RecordStatus = RecordStatus.PENDING
    details: Dict[str, Any] = field(default_factory=dict)
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None
    signature: Optional[str] = None
    sequence: int = 0

    @property
    def is_confirmed(self) -> bool:
        return self.status == RecordStatus.CONFIRMED

    def transition_to(self, new_status: RecordStatus) -> None:
        """Transition to a new status, validating the transition is legal."""
        allowed = RECORD_TRANSITIONS.get(self.status, frozenset())
        if new_status not in allowed:
            raise ValueError(
                f"Invalid record transition: {self.status.value} → {new_status.value}"
            )
        self.status = new_status


@dataclass
class LedgerTransaction:
    """A signed, submitted anchoring transaction."""
    signature: str
    computation_offset: int
    program_id: str
    state: ConfirmationState = ConfirmationState.PENDING
    submitted_utc: Optional[datetime] = None
    confirmed_utc: Optional[datetime] = None


@dataclass(frozen=True)
class ComputationResult:
    """Asynchronous MPC outcome, keyed by computation offset."""
    computation_offset: int
    output: bytes
    nonce: bytes
    resource_id: str = ""
    received_utc: Optional[datetime] = None


@dataclass(frozen=True)
class SubmissionOutcome:
    """Durable result of a successful coordinator run."""
    record: MetadataRecord
    transaction: LedgerTransaction
    envelope: CiphertextEnvelope
    shared_key: bytes = field(repr=False)
    result: Optional["Future[Optional[ComputationResult]]"] = None
