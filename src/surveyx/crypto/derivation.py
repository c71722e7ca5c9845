"""Deterministic account derivation for the executor program.

Every account the submit instruction references is derived from
(program id, seed bytes) alone. No I/O, no randomness: the same
computation offset always yields the same computation account, so a
retried attempt addresses the same queued job.

Derivation is CREATE2-shaped:

    address = keccak256(0xff || program || keccak256(seeds) || ACCOUNT_CODE_HASH)[12:]

where ``seeds`` is the concatenation of length-prefixed seed strings
(u16 LE length, then the bytes), so distinct seed lists never collide.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Sequence

from web3 import Web3

from surveyx.models.submission import SubmissionKind


ACCOUNT_CODE_HASH = Web3.keccak(b"surveyx.derived-account.v1")

MXE_SEED = b"MXEAccount"
MEMPOOL_SEED = b"Mempool"
EXECPOOL_SEED = b"Execpool"
COMPUTATION_SEED = b"ComputationAccount"
COMP_DEF_SEED = b"ComputationDefinitionAccount"
CLUSTER_SEED = b"Cluster"

U64_MAX = (1 << 64) - 1


def address_bytes(address: str) -> bytes:
    """Decode a 0x-prefixed 20-byte hex address."""
    raw = address[2:] if address.startswith(("0x", "0X")) else address
    try:
        decoded = bytes.fromhex(raw)
    except ValueError:
        raise ValueError(f"Not a hex address: {address!r}") from None
    if len(decoded) != 20:
        raise ValueError(f"Address must be 20 bytes, got {len(decoded)}: {address!r}")
    return decoded


def derive_address(program_id: str, seeds: Sequence[bytes]) -> str:
    """Derive a checksummed account address from a program id and seeds."""
    encoded = bytearray()
    for seed in seeds:
        if len(seed) > 0xFFFF:
            raise ValueError("Seed too long")
        encoded += len(seed).to_bytes(2, "little")
        encoded += seed
    salt = Web3.keccak(bytes(encoded))
    digest = Web3.keccak(b"\xff" + address_bytes(program_id) + salt + ACCOUNT_CODE_HASH)
    return Web3.to_checksum_address(digest[12:])


def comp_def_offset(computation_name: str) -> int:
    """Offset of a computation definition: first 4 bytes of
    sha256(name), read as a little-endian u32."""
    digest = hashlib.sha256(computation_name.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "little")


def computation_offset_bytes(offset: int) -> bytes:
    if not 0 <= offset <= U64_MAX:
        raise ValueError(f"Computation offset out of u64 range: {offset}")
    return offset.to_bytes(8, "little")


@dataclass(frozen=True)
class ProgramAccounts:
    """Accounts referenced by one submit instruction."""
    program: str
    mxe: str
    mempool: str
    executing_pool: str
    computation: str
    comp_def: str
    cluster: str


def derive_program_accounts(
    program_id: str,
    executor_program_id: str,
    cluster_offset: int,
    computation_offset: int,
    kind: SubmissionKind,
) -> ProgramAccounts:
    """Derive every account the submit instruction needs.

    The fixed accounts (MXE, mempool, executing pool, cluster) depend
    only on configuration; the computation account depends on the
    offset; the computation definition depends on the submission kind.
    """
    program = address_bytes(program_id)
    checksummed = Web3.to_checksum_address(program)
    return ProgramAccounts(
        program=checksummed,
        mxe=derive_address(executor_program_id, [MXE_SEED, program]),
        mempool=derive_address(executor_program_id, [MEMPOOL_SEED, program]),
        executing_pool=derive_address(executor_program_id, [EXECPOOL_SEED, program]),
        computation=derive_address(
            executor_program_id,
            [COMPUTATION_SEED, program, computation_offset_bytes(computation_offset)],
        ),
        comp_def=derive_address(
            executor_program_id,
            [COMP_DEF_SEED, program, comp_def_offset(kind.value).to_bytes(4, "little")],
        ),
        cluster=derive_address(
            executor_program_id,
            [CLUSTER_SEED, cluster_offset.to_bytes(4, "little")],
        ),
    )
