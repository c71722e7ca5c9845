"""Submission coordinator — the saga across ledger and metadata store.

One attempt runs strictly in order:

    BalanceGuard → PayloadEncryptor → DuplicateGuard → CapacityGuard
      → MetadataWriter (PENDING record)
      → OnChainSubmitter (sign, broadcast, confirm)
      → promote record, register for the computation result

Everything before the write is read-only, so a failure there simply
propagates. Once the record exists, any failure, expected or not, runs
the Compensator before the original error is re-raised. The ledger is
the system of record: a record never survives a transaction that did
not confirm.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from surveyx.config import CoordinatorConfig
from surveyx.coordination.compensator import Compensator
from surveyx.coordination.guards import BalanceGuard, CapacityGuard, DuplicateGuard
from surveyx.coordination.notifier import ResultChannel, ResultNotifier
from surveyx.coordination.writer import MetadataWriter
from surveyx.crypto.encryptor import ExecutorKeyService, PayloadEncryptor
from surveyx.errors import AlreadySubmitted, ConfirmationTimeout, SubmissionError
from surveyx.ledger.base import LedgerClient, TransactionSigner
from surveyx.ledger.submitter import OnChainSubmitter
from surveyx.models.submission import (
    ComputationResult,
    SubmissionOutcome,
    SubmissionRequest,
)
from surveyx.persistence.event_log import EventKind, EventLog
from surveyx.store.base import MetadataStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionCoordinator:
    """Turns one submit action into a consistent ledger/store outcome.

    Usage:
        coordinator = SubmissionCoordinator.from_config(
            config, ledger, signer, key_service, store,
        )
        outcome = coordinator.submit(request)
        outcome.record.status        # CONFIRMED
        outcome.result.result()      # ComputationResult or None
    """

    def __init__(
        self,
        balance_guard: BalanceGuard,
        encryptor: PayloadEncryptor,
        duplicate_guard: DuplicateGuard,
        writer: MetadataWriter,
        submitter: OnChainSubmitter,
        compensator: Compensator,
        notifier: Optional[ResultNotifier] = None,
        capacity_guard: Optional[CapacityGuard] = None,
        event_log: Optional[EventLog] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._balance_guard = balance_guard
        self._encryptor = encryptor
        self._duplicate_guard = duplicate_guard
        self._writer = writer
        self._submitter = submitter
        self._compensator = compensator
        self._notifier = notifier
        self._capacity_guard = capacity_guard
        self._event_log = event_log
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: CoordinatorConfig,
        ledger: LedgerClient,
        signer: TransactionSigner,
        key_service: ExecutorKeyService,
        store: MetadataStore,
        channel: Optional[ResultChannel] = None,
        event_log: Optional[EventLog] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> SubmissionCoordinator:
        """Wire every stage from configuration and its collaborators."""
        return cls(
            balance_guard=BalanceGuard(ledger, config.minimum_balance),
            encryptor=PayloadEncryptor(key_service),
            duplicate_guard=DuplicateGuard(store),
            writer=MetadataWriter(store),
            submitter=OnChainSubmitter(
                ledger,
                signer,
                config.ledger,
                confirmation_timeout=config.confirmation_timeout_seconds,
                recheck_timeout=config.confirmation_recheck_seconds,
            ),
            compensator=Compensator(store, event_log=event_log),
            notifier=ResultNotifier(
                channel,
                timeout_seconds=config.result_timeout_seconds,
                poll_interval_seconds=config.result_poll_interval_seconds,
            ),
            capacity_guard=CapacityGuard(store),
            event_log=event_log,
            clock=clock,
        )

    @property
    def duplicate_guard(self) -> DuplicateGuard:
        return self._duplicate_guard

    @property
    def notifier(self) -> Optional[ResultNotifier]:
        return self._notifier

    def submit(
        self,
        request: SubmissionRequest,
        deadline: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> SubmissionOutcome:
        """Run one attempt.

        ``deadline`` bounds the ledger confirmation wait and is measured
        against the coordinator clock when the ledger stage starts.
        ``now`` only stamps records and events. Raises a SubmissionError
        subclass on every terminal failure.
        """
        if deadline is not None and deadline.tzinfo is None:
            raise ValueError("deadline must be timezone-aware")
        if now is None:
            now = self._clock()
        identity = request.identity
        self._audit(EventKind.SUBMISSION_REQUESTED, identity, {
            "resource_id": request.resource_id,
            "kind": request.kind.value,
        }, now)

        # Pre-write: nothing to undo.
        try:
            self._balance_guard.check(identity)
            sealed = self._encryptor.seal(request.payload)
            self._duplicate_guard.check(request.resource_id, identity, request.kind)
            if self._capacity_guard is not None:
                self._capacity_guard.check(request)
            record = self._writer.write(request, sealed.envelope, now=now)
        except SubmissionError as exc:
            if isinstance(exc, AlreadySubmitted) and exc.reconciled:
                self._audit(EventKind.ORPHANS_RECONCILED, identity, {
                    "resource_id": request.resource_id,
                    "kind": request.kind.value,
                    "kept": exc.existing_record_id,
                    "deleted_count": exc.reconciled,
                }, now)
            self._fail(request, exc, now)
            raise

        self._audit(EventKind.METADATA_WRITTEN, identity, {
            "resource_id": request.resource_id,
            "record_id": record.record_id,
            "computation_offset": str(record.computation_offset),
            "commitment": record.ciphertext_commitment,
        }, now)

        # Post-write: any failure compensates, then propagates unchanged.
        try:
            timeout = self._ledger_timeout(deadline)
            transaction = self._submitter.submit(
                sealed.envelope, identity, request.kind, timeout=timeout, now=now,
            )
        except Exception as exc:
            logger.warning(
                "Submission of %s record %s failed (%s); compensating",
                request.kind.value, record.record_id, getattr(exc, "code", type(exc).__name__),
            )
            self._compensator.compensate([record.record_id], exc, actor_id=identity)
            self._fail(request, exc, now)
            raise

        record = self._writer.promote(record, transaction, now=now)
        self._audit(EventKind.TRANSACTION_CONFIRMED, identity, {
            "resource_id": request.resource_id,
            "record_id": record.record_id,
            "signature": transaction.signature,
        }, now)
        logger.info(
            "Submission %s confirmed for (%s, %s) in %s",
            record.record_id, request.resource_id, identity, transaction.signature,
        )

        result: Optional[Future] = None
        if self._notifier is not None:
            result = self._notifier.register(
                sealed.envelope.computation_offset, request.resource_id,
            )
            result.add_done_callback(
                lambda f: self._result_arrived(identity, request.resource_id, f)
            )

        return SubmissionOutcome(
            record=record,
            transaction=transaction,
            envelope=sealed.envelope,
            shared_key=sealed.shared_key,
            result=result,
        )

    def _ledger_timeout(
        self,
        deadline: Optional[datetime],
    ) -> Optional[float]:
        if deadline is None:
            return None
        remaining = (deadline - self._clock()).total_seconds()
        if remaining <= 0:
            raise ConfirmationTimeout(
                f"Deadline {deadline.isoformat()} passed before ledger submission"
            )
        return min(remaining, self._submitter.confirmation_timeout)

    def _fail(self, request: SubmissionRequest, exc: BaseException, now: datetime) -> None:
        payload: dict[str, Any] = {
            "resource_id": request.resource_id,
            "kind": request.kind.value,
            "code": getattr(exc, "code", type(exc).__name__),
            "message": str(exc),
        }
        signature = getattr(exc, "signature", None)
        if signature:
            payload["signature"] = signature
        self._audit(EventKind.SUBMISSION_FAILED, request.identity, payload, now)

    def _result_arrived(self, identity: str, resource_id: str, future: Future) -> None:
        if future.cancelled():
            return
        result: Optional[ComputationResult] = future.result()
        if result is None:
            return
        self._audit(EventKind.COMPUTATION_RESULT_RECEIVED, identity, {
            "resource_id": resource_id,
            "computation_offset": str(result.computation_offset),
        })

    def _audit(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> None:
        if self._event_log is None:
            return
        try:
            self._event_log.record(kind, actor_id, payload, now=now)
        except (OSError, ValueError) as exc:
            logger.error("Could not write %s audit event: %s", kind.value, exc)
