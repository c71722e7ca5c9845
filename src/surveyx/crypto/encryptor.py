"""Payload encryptor — seals submission payloads for the MPC executor.

Key agreement: an ephemeral X25519 key pair per payload, combined with
the executor's published X25519 public key. The shared secret is
stretched with HKDF-SHA256 into a 32-byte AES-GCM key.

Encoding is full-fidelity: the whole payload is encrypted as canonical
JSON (sorted keys, UTF-8). Nothing is truncated or digested into a
fixed-width integer before encryption.

The computation offset is bound to the ciphertext as associated data,
so an envelope cannot be replayed under a different queued job.
"""

from __future__ import annotations

import json
import logging
import secrets
from typing import Any, Mapping, Protocol, runtime_checkable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from surveyx.errors import EncryptionUnavailable
from surveyx.models.submission import (
    CiphertextEnvelope,
    ComputationResult,
    SealedPayload,
)

logger = logging.getLogger(__name__)

PUBLIC_KEY_BYTES = 32
NONCE_BYTES = 16
HKDF_SALT = b"surveyx-payload"
HKDF_INFO = b"payload-cipher-key"


@runtime_checkable
class ExecutorKeyService(Protocol):
    """Source of the MPC executor's published X25519 public key."""

    def get_executor_public_key(self) -> bytes:
        """Return the 32-byte key, or raise EncryptionUnavailable."""
        ...


class StaticKeyService:
    """Serves a key fixed at construction (configuration, tests)."""

    def __init__(self, public_key: bytes) -> None:
        self._public_key = bytes(public_key)

    def get_executor_public_key(self) -> bytes:
        return self._public_key


def canonical_payload(payload: Mapping[str, Any]) -> bytes:
    """Canonical JSON encoding of a payload."""
    return json.dumps(
        payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"),
    ).encode("utf-8")


def derive_shared_key(private_key: X25519PrivateKey, peer_public: bytes) -> bytes:
    """X25519 exchange followed by HKDF-SHA256."""
    shared = private_key.exchange(X25519PublicKey.from_public_bytes(peer_public))
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=HKDF_SALT,
        info=HKDF_INFO,
    ).derive(shared)


def _offset_aad(computation_offset: int) -> bytes:
    return computation_offset.to_bytes(8, "little")


class PayloadEncryptor:
    """Seals payloads into CiphertextEnvelopes.

    Usage:
        encryptor = PayloadEncryptor(key_service)
        sealed = encryptor.seal({"survey_id": "s1", "responses": [...]})
        sealed.envelope.ciphertext   # goes on-ledger
        sealed.shared_key            # stays with the submitter
    """

    def __init__(self, key_service: ExecutorKeyService) -> None:
        self._key_service = key_service

    def executor_public_key(self) -> bytes:
        """Fetch and validate the executor key.

        Every failure mode surfaces as EncryptionUnavailable.
        """
        try:
            key = self._key_service.get_executor_public_key()
        except EncryptionUnavailable:
            raise
        except Exception as exc:
            raise EncryptionUnavailable(
                f"Executor public key could not be retrieved: {exc}"
            ) from exc
        if not key:
            raise EncryptionUnavailable("Executor public key not published")
        if len(key) != PUBLIC_KEY_BYTES:
            raise EncryptionUnavailable(
                f"Executor public key must be {PUBLIC_KEY_BYTES} bytes, got {len(key)}"
            )
        return bytes(key)

    def seal(
        self,
        payload: Mapping[str, Any],
        computation_offset: int | None = None,
    ) -> SealedPayload:
        """Encrypt a payload for the executor.

        A fresh u64 computation offset is drawn unless one is given.
        Raises ValueError for a payload that is not JSON-serialisable.
        """
        try:
            plaintext = canonical_payload(payload)
        except TypeError as exc:
            raise ValueError(f"payload is not JSON-serialisable: {exc}") from exc
        executor_key = self.executor_public_key()
        if computation_offset is None:
            computation_offset = secrets.randbits(64)

        ephemeral = X25519PrivateKey.generate()
        ephemeral_public = ephemeral.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        try:
            shared_key = derive_shared_key(ephemeral, executor_key)
        except ValueError as exc:
            # Low-order or all-zero keys yield no usable shared secret.
            raise EncryptionUnavailable(f"Executor public key is unusable: {exc}") from exc
        nonce = secrets.token_bytes(NONCE_BYTES)

        ciphertext = AESGCM(shared_key).encrypt(
            nonce, plaintext, _offset_aad(computation_offset),
        )
        logger.debug(
            "Sealed %d-byte payload for computation offset %d",
            len(plaintext), computation_offset,
        )
        return SealedPayload(
            envelope=CiphertextEnvelope(
                ciphertext=ciphertext,
                ephemeral_public_key=ephemeral_public,
                nonce=nonce,
                computation_offset=computation_offset,
            ),
            shared_key=shared_key,
        )

    @staticmethod
    def open_result(shared_key: bytes, result: ComputationResult) -> Any:
        """Decrypt a computation result sealed under the same shared key.

        Raises ValueError if the output does not authenticate.
        """
        try:
            plaintext = AESGCM(shared_key).decrypt(
                result.nonce, result.output, _offset_aad(result.computation_offset),
            )
        except InvalidTag:
            raise ValueError(
                f"Computation result for offset {result.computation_offset} "
                "failed authentication"
            ) from None
        return json.loads(plaintext.decode("utf-8"))

    @staticmethod
    def open_envelope(executor_private_key: X25519PrivateKey, envelope: CiphertextEnvelope) -> Any:
        """Executor-side decryption of an envelope."""
        shared_key = derive_shared_key(executor_private_key, envelope.ephemeral_public_key)
        plaintext = AESGCM(shared_key).decrypt(
            envelope.nonce, envelope.ciphertext, _offset_aad(envelope.computation_offset),
        )
        return json.loads(plaintext.decode("utf-8"))
