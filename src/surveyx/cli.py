"""surveyx CLI — operator interface for the submission coordinator.

Usage:
    python -m surveyx.cli status
    python -m surveyx.cli derive-accounts --offset 42 --kind submit_response
    python -m surveyx.cli has-responded --survey survey_1a2b3c4d5e6f --identity 0xabc...
    python -m surveyx.cli reconcile --resource survey_1a2b3c4d5e6f --identity 0xabc...
    python -m surveyx.cli create-survey --definition survey.json
    python -m surveyx.cli submit-response --survey survey_1a2b3c4d5e6f --answers answers.json

Ledger commands read SURVEYX_RPC_URL and SURVEYX_PRIVATE_KEY from the
environment or from a .env file at the project root.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from surveyx import __version__
from surveyx.config import CoordinatorConfig, load_credentials
from surveyx.coordination.coordinator import SubmissionCoordinator
from surveyx.coordination.guards import DuplicateGuard
from surveyx.crypto.derivation import derive_program_accounts
from surveyx.models.submission import SubmissionKind
from surveyx.models.survey import SurveyDefinition
from surveyx.persistence.event_log import EventKind, EventLog
from surveyx.service import SurveyService
from surveyx.store.sqlite import SqliteMetadataStore


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"
DEFAULT_ENV = Path(__file__).resolve().parents[2] / ".env"

STORE_FILE = "records.db"
EVENTS_FILE = "events.jsonl"


def _open_store(data_dir: Path, enforce_unique: bool = True) -> SqliteMetadataStore:
    data_dir.mkdir(parents=True, exist_ok=True)
    return SqliteMetadataStore(str(data_dir / STORE_FILE), enforce_unique=enforce_unique)


def _open_event_log(data_dir: Path) -> EventLog:
    data_dir.mkdir(parents=True, exist_ok=True)
    return EventLog(storage_path=data_dir / EVENTS_FILE)


def _make_service(args: argparse.Namespace) -> Optional[tuple[SurveyService, str]]:
    """Wire a SurveyService against the configured ledger.

    Returns the service and the signing identity, or None when no
    credentials are configured.
    """
    from surveyx.ledger.web3_ledger import (
        ChainKeyService,
        LocalAccountSigner,
        PromptingSigner,
        Web3Ledger,
        Web3ResultChannel,
    )

    credentials = load_credentials(args.env_file)
    if credentials is None or not credentials.private_key:
        print(
            "ERROR: SURVEYX_RPC_URL and SURVEYX_PRIVATE_KEY must be set "
            "(environment or .env)",
            file=sys.stderr,
        )
        return None

    config = CoordinatorConfig.from_config_dir(args.config)
    signer = LocalAccountSigner(credentials.private_key)
    if not args.yes:
        signer = PromptingSigner(signer)
    store = _open_store(args.data)
    event_log = _open_event_log(args.data)
    coordinator = SubmissionCoordinator.from_config(
        config,
        ledger=Web3Ledger(credentials.rpc_url, config.ledger),
        signer=signer,
        key_service=ChainKeyService(credentials.rpc_url, config.ledger),
        store=store,
        channel=Web3ResultChannel(credentials.rpc_url, config.ledger, from_block="latest"),
        event_log=event_log,
    )
    return SurveyService(coordinator, store, event_log=event_log), signer.address


def _report(result) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    config = CoordinatorConfig.from_config_dir(args.config)
    credentials = load_credentials(args.env_file)
    status = {
        "version": __version__,
        "program_id": config.ledger.program_id,
        "executor_program_id": config.ledger.executor_program_id,
        "cluster_offset": config.ledger.cluster_offset,
        "chain_id": config.ledger.chain_id,
        "minimum_balance": config.minimum_balance,
        "ledger_configured": credentials is not None,
        "data_dir": str(args.data),
    }
    print(json.dumps(status, indent=2))
    return 0


def cmd_derive_accounts(args: argparse.Namespace) -> int:
    config = CoordinatorConfig.from_config_dir(args.config)
    try:
        accounts = derive_program_accounts(
            program_id=config.ledger.program_id,
            executor_program_id=config.ledger.executor_program_id,
            cluster_offset=config.ledger.cluster_offset,
            computation_offset=args.offset,
            kind=SubmissionKind(args.kind),
        )
    except ValueError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(dataclasses.asdict(accounts), indent=2))
    return 0


def cmd_has_responded(args: argparse.Namespace) -> int:
    store = _open_store(args.data, enforce_unique=False)
    try:
        responded = bool(store.query(args.survey, args.identity, SubmissionKind.SUBMIT_RESPONSE))
    finally:
        store.close()
    print("yes" if responded else "no")
    return 0


def cmd_reconcile(args: argparse.Namespace) -> int:
    # A store holding duplicates cannot take the unique index yet.
    store = _open_store(args.data, enforce_unique=False)
    try:
        kind = SubmissionKind(args.kind)
        deleted = DuplicateGuard(store).reconcile(args.resource, args.identity, kind)
    finally:
        store.close()
    if deleted:
        _open_event_log(args.data).record(EventKind.ORPHANS_RECONCILED, args.identity, {
            "resource_id": args.resource,
            "kind": kind.value,
            "deleted": deleted,
        })
    print(json.dumps({"resource_id": args.resource, "deleted": deleted}, indent=2))
    return 0


def _read_json(path: Path):
    return json.loads(path.read_text(encoding="utf-8"))


def cmd_create_survey(args: argparse.Namespace) -> int:
    try:
        data = _read_json(args.definition)
        if not isinstance(data, dict):
            raise ValueError("survey definition must be a JSON object")
        definition = SurveyDefinition.from_dict(data)
    except (OSError, KeyError, TypeError, ValueError) as exc:
        print(f"Failed: invalid survey definition {args.definition}: {exc!r}", file=sys.stderr)
        return 1
    wired = _make_service(args)
    if wired is None:
        return 1
    service, identity = wired
    return _report(service.create_survey(identity, definition))


def cmd_submit_response(args: argparse.Namespace) -> int:
    try:
        answers = _read_json(args.answers)
    except (OSError, ValueError) as exc:
        print(f"Failed: invalid answers file {args.answers}: {exc}", file=sys.stderr)
        return 1
    if isinstance(answers, dict):
        answers = answers.get("responses", [])
    wired = _make_service(args)
    if wired is None:
        return 1
    service, identity = wired
    return _report(service.submit_response(identity, args.survey, answers))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="surveyx",
        description="surveyx — encrypted survey submission coordinator",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=DEFAULT_DATA,
        help="Directory for the record store and audit log (default: data/)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=DEFAULT_ENV,
        help="dotenv file with ledger credentials (default: .env)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log saga steps")
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show configuration status")

    # derive-accounts
    p_derive = sub.add_parser("derive-accounts", help="Derive program accounts for an offset")
    p_derive.add_argument("--offset", required=True, type=int, help="Computation offset (u64)")
    p_derive.add_argument(
        "--kind", default=SubmissionKind.SUBMIT_RESPONSE.value,
        choices=[k.value for k in SubmissionKind],
        help="Submission kind (default: submit_response)",
    )

    # has-responded
    p_has = sub.add_parser("has-responded", help="Check for a live response record")
    p_has.add_argument("--survey", required=True, help="Survey ID")
    p_has.add_argument("--identity", required=True, help="Respondent address")

    # reconcile
    p_rec = sub.add_parser("reconcile", help="Collapse duplicate records to the newest")
    p_rec.add_argument("--resource", required=True, help="Survey ID")
    p_rec.add_argument("--identity", required=True, help="Submitter address")
    p_rec.add_argument(
        "--kind", default=SubmissionKind.SUBMIT_RESPONSE.value,
        choices=[k.value for k in SubmissionKind],
    )

    # create-survey
    p_create = sub.add_parser("create-survey", help="Encrypt and anchor a survey definition")
    p_create.add_argument("--definition", required=True, type=Path, help="Survey JSON file")
    p_create.add_argument("--yes", action="store_true", help="Sign without prompting")

    # submit-response
    p_submit = sub.add_parser("submit-response", help="Encrypt and anchor a survey response")
    p_submit.add_argument("--survey", required=True, help="Survey ID")
    p_submit.add_argument("--answers", required=True, type=Path, help="Answers JSON file")
    p_submit.add_argument("--yes", action="store_true", help="Sign without prompting")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "status": cmd_status,
        "derive-accounts": cmd_derive_accounts,
        "has-responded": cmd_has_responded,
        "reconcile": cmd_reconcile,
        "create-survey": cmd_create_survey,
        "submit-response": cmd_submit_response,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
