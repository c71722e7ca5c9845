"""Ledger layer — contracts, instruction assembly, submitter, backends."""

from surveyx.ledger.base import LedgerClient, SignedTransaction, TransactionSigner
from surveyx.ledger.memory import InMemoryLedger
from surveyx.ledger.submitter import OnChainSubmitter

__all__ = [
    "InMemoryLedger",
    "LedgerClient",
    "OnChainSubmitter",
    "SignedTransaction",
    "TransactionSigner",
]
