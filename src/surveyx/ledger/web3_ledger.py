"""Ethereum-compatible ledger backend.

Submissions are anchored as ordinary transactions to the survey
program's address with the submit instruction in the data field. The
executor watches for them, queues the MPC job named by the computation
definition, and later emits a ResponseEvent log carrying the sealed
output for the computation offset.

web3 and eth_account are imported inside the adapters, so the rest of
the package (and its tests) never open a network connection.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from surveyx.config import LedgerParams
from surveyx.crypto.derivation import MXE_SEED, address_bytes, derive_address
from surveyx.errors import EncryptionUnavailable, SigningRejected, SubmissionRejected
from surveyx.ledger.base import SignedTransaction
from surveyx.ledger.instruction import Instruction
from surveyx.models.submission import ComputationResult, ConfirmationState

logger = logging.getLogger(__name__)

RESPONSE_EVENT_SIGNATURE = "ResponseEvent(uint64,bytes16,bytes)"


def _connect(rpc_url: str):
    from web3 import Web3, HTTPProvider

    return Web3(HTTPProvider(rpc_url))


class Web3Ledger:
    """LedgerClient over a JSON-RPC endpoint."""

    def __init__(self, rpc_url: str, params: LedgerParams, poll_latency: float = 0.5) -> None:
        self._w3 = _connect(rpc_url)
        self._params = params
        self._poll_latency = poll_latency

    def get_balance(self, identity: str) -> int:
        return int(self._w3.eth.get_balance(self._w3.to_checksum_address(identity)))

    def build_transaction(self, instruction: Instruction, payer: str) -> Dict[str, Any]:
        sender = self._w3.to_checksum_address(payer)
        return {
            "to": self._w3.to_checksum_address(instruction.program_id),
            "value": 0,
            "gas": self._params.gas,
            "gasPrice": self._w3.to_wei(self._params.gas_price_gwei, "gwei"),
            "nonce": self._w3.eth.get_transaction_count(sender),
            "chainId": self._params.chain_id,
            "data": instruction.calldata(),
        }

    def submit(self, signed: SignedTransaction) -> str:
        from web3.exceptions import Web3Exception

        try:
            tx_hash = self._w3.eth.send_raw_transaction(signed.raw)
        except (ValueError, Web3Exception) as exc:
            raise SubmissionRejected(f"Ledger rejected transaction: {exc}") from exc
        return self._w3.to_hex(tx_hash)

    def confirm(self, signature: str, timeout: float) -> ConfirmationState:
        from web3.exceptions import TimeExhausted

        try:
            receipt = self._w3.eth.wait_for_transaction_receipt(
                signature, timeout=timeout, poll_latency=self._poll_latency,
            )
        except TimeExhausted:
            return ConfirmationState.PENDING
        return self._receipt_state(receipt)

    def confirmation_state(self, signature: str) -> ConfirmationState:
        from web3.exceptions import TransactionNotFound

        try:
            receipt = self._w3.eth.get_transaction_receipt(signature)
        except TransactionNotFound:
            return ConfirmationState.PENDING
        return self._receipt_state(receipt)

    def explorer_url(self, signature: str) -> str:
        if not self._params.explorer_tx_url:
            return ""
        return f"{self._params.explorer_tx_url}{signature}"

    @staticmethod
    def _receipt_state(receipt: Any) -> ConfirmationState:
        if receipt is None:
            return ConfirmationState.PENDING
        return ConfirmationState.CONFIRMED if receipt["status"] == 1 else ConfirmationState.FAILED


class LocalAccountSigner:
    """TransactionSigner backed by a local private key."""

    def __init__(self, private_key: str) -> None:
        from eth_account import Account

        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    def sign(self, transaction: Dict[str, Any]) -> SignedTransaction:
        try:
            signed = self._account.sign_transaction(transaction)
        except (TypeError, ValueError) as exc:
            raise SigningRejected(f"Transaction could not be signed: {exc}") from exc
        return SignedTransaction(
            raw=bytes(signed.raw_transaction),
            tx_hash="0x" + bytes(signed.hash).hex(),
            sender=self._account.address,
        )


class PromptingSigner:
    """Asks the operator to approve each transaction before delegating.

    Declining raises SigningRejected, the same as a wallet's "reject".
    """

    def __init__(self, inner, prompt=input) -> None:
        self._inner = inner
        self._prompt = prompt

    @property
    def address(self) -> str:
        return self._inner.address

    def sign(self, transaction: Dict[str, Any]) -> SignedTransaction:
        answer = self._prompt(
            f"Sign transaction from {self.address} to {transaction.get('to')} "
            f"({len(transaction.get('data', b''))} bytes)? [y/N] "
        )
        if answer.strip().lower() not in ("y", "yes"):
            raise SigningRejected("User declined to sign the transaction")
        return self._inner.sign(transaction)


class ChainKeyService:
    """Reads the executor's X25519 key from its MXE account storage.

    The MXE account keeps the 32-byte public key in storage slot 0.
    An all-zero slot means the executor has not published a key yet.
    """

    def __init__(self, rpc_url: str, params: LedgerParams) -> None:
        self._w3 = _connect(rpc_url)
        self._mxe_address = derive_address(
            params.executor_program_id, [MXE_SEED, address_bytes(params.program_id)],
        )

    def get_executor_public_key(self) -> bytes:
        try:
            raw = bytes(self._w3.eth.get_storage_at(self._mxe_address, 0))
        except Exception as exc:
            raise EncryptionUnavailable(
                f"Executor key lookup at {self._mxe_address} failed: {exc}"
            ) from exc
        if not any(raw):
            raise EncryptionUnavailable(
                f"Executor key not published at {self._mxe_address}"
            )
        return raw


class Web3ResultChannel:
    """Polls ResponseEvent logs for a computation offset.

    Event layout: topic1 = offset (uint64, left-padded); data = 16-byte
    nonce followed by the sealed output.
    """

    def __init__(self, rpc_url: str, params: LedgerParams, from_block: Any = "earliest") -> None:
        self._w3 = _connect(rpc_url)
        self._program = self._w3.to_checksum_address(params.program_id)
        self._topic = self._w3.keccak(text=RESPONSE_EVENT_SIGNATURE)
        self._from_block = from_block

    def poll(self, computation_offset: int) -> Optional[ComputationResult]:
        offset_topic = b"\x00" * 24 + computation_offset.to_bytes(8, "big")
        logs = self._w3.eth.get_logs({
            "address": self._program,
            "fromBlock": self._from_block,
            "toBlock": "latest",
            "topics": [self._w3.to_hex(self._topic), self._w3.to_hex(offset_topic)],
        })
        if not logs:
            return None
        data = bytes(logs[-1]["data"])
        if len(data) < 16:
            logger.warning(
                "Malformed ResponseEvent for offset %d (%d bytes)",
                computation_offset, len(data),
            )
            return None
        return ComputationResult(
            computation_offset=computation_offset,
            output=data[16:],
            nonce=data[:16],
            received_utc=datetime.now(timezone.utc),
        )
