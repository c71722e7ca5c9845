"""Submit instruction assembly.

Wire layout of ``Instruction.data``:

    discriminator        8 bytes   sha256("global:<computation name>")[:8]
    computation_offset   8 bytes   u64 little-endian
    ciphertext_len       4 bytes   u32 little-endian
    ciphertext           N bytes
    ephemeral_pub_key   32 bytes
    nonce               16 bytes   u128 little-endian

``Instruction.calldata()`` prefixes the account table (u8 count, then
per account: 20-byte address and a flags byte, bit 0 = writable,
bit 1 = signer) so the program can check every derived account.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from typing import Tuple

from surveyx.crypto.derivation import ProgramAccounts, address_bytes
from surveyx.models.submission import CiphertextEnvelope, SubmissionKind


WRITABLE = 0x01
SIGNER = 0x02


@dataclass(frozen=True)
class AccountMeta:
    address: str
    is_writable: bool = False
    is_signer: bool = False

    @property
    def flags(self) -> int:
        return (WRITABLE if self.is_writable else 0) | (SIGNER if self.is_signer else 0)


@dataclass(frozen=True)
class Instruction:
    program_id: str
    accounts: Tuple[AccountMeta, ...]
    data: bytes

    def calldata(self) -> bytes:
        table = bytearray([len(self.accounts)])
        for meta in self.accounts:
            table += address_bytes(meta.address)
            table.append(meta.flags)
        return bytes(table) + self.data


def discriminator(computation_name: str) -> bytes:
    return hashlib.sha256(f"global:{computation_name}".encode("utf-8")).digest()[:8]


def encode_submit_data(kind: SubmissionKind, envelope: CiphertextEnvelope) -> bytes:
    if len(envelope.ephemeral_public_key) != 32:
        raise ValueError("Ephemeral public key must be 32 bytes")
    if len(envelope.nonce) != 16:
        raise ValueError("Nonce must be 16 bytes")
    return b"".join([
        discriminator(kind.value),
        struct.pack("<Q", envelope.computation_offset),
        struct.pack("<I", len(envelope.ciphertext)),
        envelope.ciphertext,
        envelope.ephemeral_public_key,
        envelope.nonce_u128.to_bytes(16, "little"),
    ])


def decode_submit_data(data: bytes) -> dict:
    """Inverse of encode_submit_data, for audit tooling and ledger
    backends that inspect instructions."""
    if len(data) < 20:
        raise ValueError("Instruction data too short")
    offset = struct.unpack_from("<Q", data, 8)[0]
    length = struct.unpack_from("<I", data, 16)[0]
    start = 20
    end = start + length
    if len(data) != end + 48:
        raise ValueError("Instruction data length mismatch")
    return {
        "discriminator": data[:8],
        "computation_offset": offset,
        "ciphertext": data[start:end],
        "ephemeral_public_key": data[end:end + 32],
        "nonce": data[end + 32:end + 48],
    }


def build_submit_instruction(
    accounts: ProgramAccounts,
    payer: str,
    kind: SubmissionKind,
    envelope: CiphertextEnvelope,
) -> Instruction:
    """Assemble the single instruction that queues the computation."""
    metas = (
        AccountMeta(payer, is_writable=True, is_signer=True),
        AccountMeta(accounts.mxe),
        AccountMeta(accounts.mempool, is_writable=True),
        AccountMeta(accounts.executing_pool, is_writable=True),
        AccountMeta(accounts.computation, is_writable=True),
        AccountMeta(accounts.comp_def),
        AccountMeta(accounts.cluster, is_writable=True),
    )
    return Instruction(
        program_id=accounts.program,
        accounts=metas,
        data=encode_submit_data(kind, envelope),
    )
