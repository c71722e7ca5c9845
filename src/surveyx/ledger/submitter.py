"""On-chain submitter — anchors an envelope and waits for confirmation.

Steps:
1. Derive the program accounts (pure, deterministic).
2. Assemble the submit instruction.
3. Ask the identity's signer for a signature.
4. Broadcast.
5. Block until confirmed or the bounded wait elapses.

A wait that times out is not taken at face value: the ledger is
queried again before the attempt is declared timed out, so a
transaction that lands just after the wait is reported as a success
instead of being compensated away. The grace confirmation before that
re-check only applies to the default wait; a caller-supplied timeout
(a deadline) gets a non-blocking re-check.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from surveyx.config import LedgerParams
from surveyx.crypto.derivation import ProgramAccounts, derive_program_accounts
from surveyx.errors import ConfirmationTimeout, SigningRejected, SubmissionRejected
from surveyx.ledger.base import LedgerClient, TransactionSigner
from surveyx.ledger.instruction import build_submit_instruction
from surveyx.models.submission import (
    CiphertextEnvelope,
    ConfirmationState,
    LedgerTransaction,
    SubmissionKind,
)

logger = logging.getLogger(__name__)


class OnChainSubmitter:
    """Builds, signs, broadcasts, and confirms submit transactions."""

    def __init__(
        self,
        ledger: LedgerClient,
        signer: TransactionSigner,
        params: LedgerParams,
        confirmation_timeout: float = 60.0,
        recheck_timeout: float = 0.0,
    ) -> None:
        self._ledger = ledger
        self._signer = signer
        self._params = params
        self._confirmation_timeout = confirmation_timeout
        self._recheck_timeout = recheck_timeout

    @property
    def program_id(self) -> str:
        return self._params.program_id

    @property
    def confirmation_timeout(self) -> float:
        return self._confirmation_timeout

    def accounts_for(self, computation_offset: int, kind: SubmissionKind) -> ProgramAccounts:
        return derive_program_accounts(
            program_id=self._params.program_id,
            executor_program_id=self._params.executor_program_id,
            cluster_offset=self._params.cluster_offset,
            computation_offset=computation_offset,
            kind=kind,
        )

    def submit(
        self,
        envelope: CiphertextEnvelope,
        identity: str,
        kind: SubmissionKind,
        timeout: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> LedgerTransaction:
        """Anchor the envelope. Returns a CONFIRMED LedgerTransaction.

        ``timeout`` bounds the total confirmation wait, re-check included.

        Raises SigningRejected, SubmissionRejected or ConfirmationTimeout.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        wait = self._confirmation_timeout if timeout is None else timeout

        if self._signer.address.lower() != identity.lower():
            raise SigningRejected(
                f"Signer {self._signer.address} cannot sign for {identity}"
            )

        accounts = self.accounts_for(envelope.computation_offset, kind)
        instruction = build_submit_instruction(accounts, identity, kind, envelope)
        try:
            transaction = self._ledger.build_transaction(instruction, identity)
        except SubmissionRejected:
            raise
        except ValueError as exc:
            raise SubmissionRejected(f"Transaction could not be built: {exc}") from exc

        signed = self._signer.sign(transaction)
        signature = self._ledger.submit(signed)
        logger.info(
            "Submitted %s transaction %s (offset %d)",
            kind.value, signature, envelope.computation_offset,
        )

        record = LedgerTransaction(
            signature=signature,
            computation_offset=envelope.computation_offset,
            program_id=accounts.program,
            submitted_utc=now,
        )

        state = self._ledger.confirm(signature, wait)
        if state == ConfirmationState.PENDING:
            grace = self._recheck_timeout if timeout is None else 0.0
            state = self._recheck(signature, grace)

        if state == ConfirmationState.FAILED:
            record.state = ConfirmationState.FAILED
            raise SubmissionRejected(
                f"Transaction {signature} failed on the ledger", signature=signature,
            )
        if state != ConfirmationState.CONFIRMED:
            raise ConfirmationTimeout(
                f"Transaction {signature} not confirmed within {wait:.1f}s",
                signature=signature,
            )

        record.state = ConfirmationState.CONFIRMED
        record.confirmed_utc = datetime.now(timezone.utc)
        logger.info("Transaction %s confirmed", signature)
        return record

    def _recheck(self, signature: str, grace: float) -> ConfirmationState:
        """Query the ledger again after a timed-out wait."""
        logger.warning(
            "Confirmation wait for %s timed out; re-checking ledger state", signature,
        )
        if grace > 0:
            state = self._ledger.confirm(signature, grace)
            if state != ConfirmationState.PENDING:
                return state
        return self._ledger.confirmation_state(signature)
