"""Coordinator configuration.

Non-secret parameters live in config/coordinator_params.json. Secrets
(RPC endpoint, signing key) never go in that file: they are read from
the environment, with a project-root .env loaded by python-dotenv.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv


PARAMS_FILE = "coordinator_params.json"

RPC_URL_ENV = "SURVEYX_RPC_URL"
PRIVATE_KEY_ENV = "SURVEYX_PRIVATE_KEY"


@dataclass(frozen=True)
class LedgerParams:
    """Addresses and transaction parameters for the anchoring ledger."""
    program_id: str
    executor_program_id: str
    cluster_offset: int
    chain_id: int
    gas: int
    gas_price_gwei: str
    explorer_tx_url: str = ""


@dataclass(frozen=True)
class CoordinatorConfig:
    """Saga parameters.

    Balances are in the ledger's base unit (wei). Timeouts in seconds.
    """
    ledger: LedgerParams
    minimum_balance: int
    confirmation_timeout_seconds: float
    confirmation_recheck_seconds: float
    result_timeout_seconds: float
    result_poll_interval_seconds: float

    def __post_init__(self) -> None:
        if self.minimum_balance < 0:
            raise ValueError("minimum_balance must be non-negative")
        for name in (
            "confirmation_timeout_seconds",
            "result_timeout_seconds",
            "result_poll_interval_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.confirmation_recheck_seconds < 0:
            raise ValueError("confirmation_recheck_seconds must be non-negative")

    @classmethod
    def from_params(cls, params: dict[str, Any]) -> CoordinatorConfig:
        ledger = params["ledger"]
        submission = params["submission"]
        return cls(
            ledger=LedgerParams(
                program_id=ledger["program_id"],
                executor_program_id=ledger["executor_program_id"],
                cluster_offset=int(ledger["cluster_offset"]),
                chain_id=int(ledger["chain_id"]),
                gas=int(ledger["gas"]),
                gas_price_gwei=str(ledger["gas_price_gwei"]),
                explorer_tx_url=ledger.get("explorer_tx_url", ""),
            ),
            minimum_balance=int(submission["minimum_balance"]),
            confirmation_timeout_seconds=float(
                submission["confirmation_timeout_seconds"]
            ),
            confirmation_recheck_seconds=float(
                submission.get("confirmation_recheck_seconds", 0)
            ),
            result_timeout_seconds=float(submission["result_timeout_seconds"]),
            result_poll_interval_seconds=float(
                submission["result_poll_interval_seconds"]
            ),
        )

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> CoordinatorConfig:
        """Load from <config_dir>/coordinator_params.json."""
        params = json.loads((config_dir / PARAMS_FILE).read_text(encoding="utf-8"))
        return cls.from_params(params)


@dataclass(frozen=True)
class LedgerCredentials:
    rpc_url: str
    private_key: str = ""


def load_credentials(env_file: Optional[Path] = None) -> Optional[LedgerCredentials]:
    """Read ledger credentials from the environment (and .env if given).

    Returns None when no RPC URL is configured.
    """
    if env_file is not None:
        load_dotenv(env_file)
    rpc_url = os.getenv(RPC_URL_ENV)
    if not rpc_url:
        return None
    return LedgerCredentials(
        rpc_url=rpc_url,
        private_key=os.getenv(PRIVATE_KEY_ENV, ""),
    )
