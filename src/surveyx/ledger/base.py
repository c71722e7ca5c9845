"""Ledger and signer contracts.

The submitter never talks to a concrete chain client. Anything that
satisfies LedgerClient can anchor submissions; anything that satisfies
TransactionSigner can authorise them. Adding a backend means
implementing these Protocols, with zero changes to the coordinator.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Protocol, runtime_checkable

from surveyx.ledger.instruction import Instruction
from surveyx.models.submission import ConfirmationState


@dataclass(frozen=True)
class SignedTransaction:
    """Serialised, signed transaction ready for broadcast."""
    raw: bytes
    tx_hash: str
    sender: str


@runtime_checkable
class TransactionSigner(Protocol):
    """Wallet abstraction. ``sign`` raises SigningRejected on decline."""

    @property
    def address(self) -> str:
        ...

    def sign(self, transaction: Dict[str, Any]) -> SignedTransaction:
        ...


@runtime_checkable
class LedgerClient(Protocol):
    """Read balances, broadcast transactions, and track confirmation."""

    def get_balance(self, identity: str) -> int:
        """Balance in the ledger's base unit."""
        ...

    def build_transaction(self, instruction: Instruction, payer: str) -> Dict[str, Any]:
        """Unsigned transaction carrying the instruction."""
        ...

    def submit(self, signed: SignedTransaction) -> str:
        """Broadcast and return the signature (transaction hash).

        Raises SubmissionRejected on ledger-level validation failure.
        """
        ...

    def confirm(self, signature: str, timeout: float) -> ConfirmationState:
        """Block up to ``timeout`` seconds; PENDING means not yet final."""
        ...

    def confirmation_state(self, signature: str) -> ConfirmationState:
        """Non-blocking lookup of the current state."""
        ...
