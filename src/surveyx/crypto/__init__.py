"""Cryptographic primitives — payload sealing and account derivation."""

from surveyx.crypto.derivation import ProgramAccounts, derive_program_accounts
from surveyx.crypto.encryptor import PayloadEncryptor, StaticKeyService

__all__ = [
    "PayloadEncryptor",
    "ProgramAccounts",
    "StaticKeyService",
    "derive_program_accounts",
]
