"""Shared fixtures: an in-process ledger, real signers, executor keys."""

from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from surveyx.config import CoordinatorConfig, LedgerParams
from surveyx.crypto.encryptor import StaticKeyService
from surveyx.ledger.memory import InMemoryLedger
from surveyx.ledger.web3_ledger import LocalAccountSigner

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

ALICE_KEY = "0x" + "11" * 32
BOB_KEY = "0x" + "22" * 32

FUNDED = 10 ** 18


@pytest.fixture
def params() -> LedgerParams:
    return CoordinatorConfig.from_config_dir(CONFIG_DIR).ledger


@pytest.fixture
def config() -> CoordinatorConfig:
    return CoordinatorConfig.from_config_dir(CONFIG_DIR)


@pytest.fixture
def executor_key() -> X25519PrivateKey:
    return X25519PrivateKey.generate()


@pytest.fixture
def key_service(executor_key: X25519PrivateKey) -> StaticKeyService:
    public = executor_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return StaticKeyService(public)


@pytest.fixture
def alice() -> LocalAccountSigner:
    return LocalAccountSigner(ALICE_KEY)


@pytest.fixture
def bob() -> LocalAccountSigner:
    return LocalAccountSigner(BOB_KEY)


@pytest.fixture
def ledger(alice: LocalAccountSigner, bob: LocalAccountSigner) -> InMemoryLedger:
    ledger = InMemoryLedger()
    ledger.fund(alice.address, FUNDED)
    ledger.fund(bob.address, FUNDED)
    return ledger
