"""In-process ledger for local development and tests.

Keeps balances and broadcast transactions in memory. Transactions are
signed by real eth_account signers, so the wire bytes match what a
node would receive. Behaviour of the next broadcasts can be scripted
to exercise every failure path of the saga:

    ledger.script("reject")    # next submit raises SubmissionRejected
    ledger.script("revert")    # next transaction confirms as FAILED
    ledger.script("stall")     # never confirms
    ledger.script("late")      # times out, then confirms on re-check
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from surveyx.errors import SubmissionRejected
from surveyx.ledger.base import SignedTransaction
from surveyx.ledger.instruction import Instruction
from surveyx.models.submission import ConfirmationState


BEHAVIOURS = ("confirm", "reject", "revert", "stall", "late")


@dataclass
class BroadcastRecord:
    signature: str
    sender: str
    raw: bytes
    behaviour: str
    state: ConfirmationState = ConfirmationState.PENDING
    confirm_calls: int = 0


@dataclass
class InMemoryLedger:
    chain_id: int = 11155111
    gas: int = 300_000
    gas_price: int = 2_000_000_000
    balances: Dict[str, int] = field(default_factory=dict)
    broadcasts: Dict[str, BroadcastRecord] = field(default_factory=dict)
    built: List[Dict[str, Any]] = field(default_factory=list)
    balance_queries: int = 0

    def __post_init__(self) -> None:
        self._lock = threading.RLock()
        self._script: List[str] = []
        self._nonces: Dict[str, int] = {}

    def fund(self, identity: str, amount: int) -> None:
        with self._lock:
            key = identity.lower()
            self.balances[key] = self.balances.get(key, 0) + amount

    def script(self, *behaviours: str) -> None:
        """Queue behaviours for the next broadcasts, in order."""
        for behaviour in behaviours:
            if behaviour not in BEHAVIOURS:
                raise ValueError(f"Unknown ledger behaviour: {behaviour}")
        with self._lock:
            self._script.extend(behaviours)

    def get_balance(self, identity: str) -> int:
        with self._lock:
            self.balance_queries += 1
            return self.balances.get(identity.lower(), 0)

    def build_transaction(self, instruction: Instruction, payer: str) -> Dict[str, Any]:
        with self._lock:
            nonce = self._nonces.get(payer.lower(), 0)
            tx = {
                "to": instruction.program_id,
                "value": 0,
                "gas": self.gas,
                "gasPrice": self.gas_price,
                "nonce": nonce,
                "chainId": self.chain_id,
                "data": instruction.calldata(),
            }
            self.built.append(tx)
            return tx

    def submit(self, signed: SignedTransaction) -> str:
        with self._lock:
            behaviour = self._script.pop(0) if self._script else "confirm"
            if behaviour == "reject":
                raise SubmissionRejected("Ledger rejected transaction: invalid account data")
            if signed.tx_hash in self.broadcasts:
                raise SubmissionRejected(f"Transaction {signed.tx_hash} already processed")
            sender = signed.sender.lower()
            fee = self.gas * self.gas_price
            if self.balances.get(sender, 0) < fee:
                raise SubmissionRejected("Ledger rejected transaction: insufficient funds for fee")
            self.balances[sender] -= fee
            self._nonces[sender] = self._nonces.get(sender, 0) + 1
            self.broadcasts[signed.tx_hash] = BroadcastRecord(
                signature=signed.tx_hash,
                sender=sender,
                raw=signed.raw,
                behaviour=behaviour,
            )
            return signed.tx_hash

    def confirm(self, signature: str, timeout: float) -> ConfirmationState:
        with self._lock:
            record = self._get(signature)
            record.confirm_calls += 1
            if record.behaviour == "confirm":
                record.state = ConfirmationState.CONFIRMED
            elif record.behaviour == "revert":
                record.state = ConfirmationState.FAILED
            elif record.behaviour == "late" and record.confirm_calls > 1:
                record.state = ConfirmationState.CONFIRMED
            return record.state

    def confirmation_state(self, signature: str) -> ConfirmationState:
        with self._lock:
            record = self._get(signature)
            if record.behaviour == "late":
                record.state = ConfirmationState.CONFIRMED
            return record.state

    def confirmed(self) -> List[BroadcastRecord]:
        with self._lock:
            return [
                r for r in self.broadcasts.values()
                if r.state == ConfirmationState.CONFIRMED
            ]

    def _get(self, signature: str) -> BroadcastRecord:
        record = self.broadcasts.get(signature)
        if record is None:
            raise ValueError(f"Unknown transaction: {signature}")
        return record

    def get(self, signature: str) -> Optional[BroadcastRecord]:
        with self._lock:
            return self.broadcasts.get(signature)
