"""Error taxonomy for the encrypted-submission coordinator.

Every terminal failure of a submission attempt is a SubmissionError with
a stable ``code`` (for request-handling code and the service facade) and
a ``post_write`` flag. Post-write errors occur after the off-chain record
was written, so the coordinator always runs the compensator before
propagating them.

    pre-write:   InsufficientFunds, EncryptionUnavailable,
                 AlreadySubmitted, ResourceUnavailable
    post-write:  SigningRejected, SubmissionRejected, ConfirmationTimeout
    report-only: CompensationFailed
"""

from __future__ import annotations

from typing import Optional


class SubmissionError(Exception):
    """Base class for terminal submission failures."""

    code = "submission_error"
    post_write = False


class InsufficientFunds(SubmissionError):
    """The identity cannot cover the anchoring transaction."""

    code = "insufficient_funds"

    def __init__(self, identity: str, balance: int, required: int) -> None:
        self.identity = identity
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient balance for {identity}: have {balance}, "
            f"need at least {required}"
        )


class EncryptionUnavailable(SubmissionError):
    """The executor public key could not be obtained."""

    code = "encryption_unavailable"


class AlreadySubmitted(SubmissionError):
    """A live submission already exists for (resource, identity, kind).

    ``reconciled`` counts orphaned records removed while detecting the
    duplicate.
    """

    code = "already_submitted"

    def __init__(
        self,
        resource_id: str,
        identity: str,
        existing_record_id: Optional[str] = None,
        reconciled: int = 0,
    ) -> None:
        self.resource_id = resource_id
        self.identity = identity
        self.existing_record_id = existing_record_id
        self.reconciled = reconciled
        super().__init__(
            f"{identity} has already submitted to {resource_id}"
        )


class ResourceUnavailable(SubmissionError):
    """The target survey is missing or no longer accepts responses."""

    code = "resource_unavailable"


class SigningRejected(SubmissionError):
    """The signer declined (or could not) sign the transaction."""

    code = "signing_rejected"
    post_write = True


class SubmissionRejected(SubmissionError):
    """The ledger rejected or reverted the transaction."""

    code = "submission_rejected"
    post_write = True

    def __init__(self, message: str, signature: Optional[str] = None) -> None:
        self.signature = signature
        super().__init__(message)


class ConfirmationTimeout(SubmissionError):
    """Submitted but not confirmed within the bounded wait."""

    code = "confirmation_timeout"
    post_write = True

    def __init__(self, message: str, signature: Optional[str] = None) -> None:
        self.signature = signature
        super().__init__(message)


class CompensationFailed(SubmissionError):
    """A compensating delete failed. Logged and reported, never raised
    over the original error."""

    code = "compensation_failed"

    def __init__(self, record_id: str, reason: str) -> None:
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Could not delete record {record_id}: {reason}")


class StoreError(Exception):
    """Base class for metadata store failures."""


class UniqueViolation(StoreError):
    """Insert collided with a live record for the same key."""

    def __init__(self, resource_id: str, identity: str, kind: str) -> None:
        self.resource_id = resource_id
        self.identity = identity
        self.kind = kind
        super().__init__(
            f"Live {kind} record already exists for "
            f"({resource_id}, {identity})"
        )
