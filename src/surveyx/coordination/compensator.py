"""Compensator — undoes the speculative metadata write.

The only side effect the saga can undo is the PENDING record. Deletion
is idempotent, so compensating twice (or compensating a record that a
reconciler already removed) is harmless.

A failed delete is logged and reported; it never replaces the error
that triggered compensation. Leftover records are collapsed by the
duplicate guard on the identity's next attempt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from surveyx.errors import CompensationFailed
from surveyx.persistence.event_log import EventKind, EventLog
from surveyx.store.base import MetadataStore

logger = logging.getLogger(__name__)


@dataclass
class CompensationReport:
    """Outcome of one compensation run."""
    deleted: List[str] = field(default_factory=list)
    failures: List[CompensationFailed] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures


class Compensator:

    def __init__(self, store: MetadataStore, event_log: Optional[EventLog] = None) -> None:
        self._store = store
        self._event_log = event_log

    def compensate(
        self,
        record_ids: Iterable[str],
        cause: BaseException,
        actor_id: str = "",
    ) -> CompensationReport:
        """Delete every record id. Never raises."""
        report = CompensationReport()
        cause_code = getattr(cause, "code", type(cause).__name__)
        for record_id in record_ids:
            try:
                self._store.delete(record_id)
            except Exception as exc:
                failure = CompensationFailed(record_id, str(exc))
                report.failures.append(failure)
                logger.error(
                    "Compensation failed for record %s after %s: %s",
                    record_id, cause_code, exc,
                )
                continue
            report.deleted.append(record_id)
            logger.warning(
                "Compensated record %s after %s", record_id, cause_code,
            )

        if self._event_log is not None:
            try:
                if report.deleted:
                    self._event_log.record(
                        EventKind.COMPENSATION_COMPLETED, actor_id,
                        {"record_ids": report.deleted, "cause": cause_code},
                    )
                for failure in report.failures:
                    self._event_log.record(
                        EventKind.COMPENSATION_FAILED, actor_id,
                        {"record_id": failure.record_id, "reason": failure.reason,
                         "cause": cause_code},
                    )
            except (OSError, ValueError) as exc:
                logger.error("Could not write compensation audit event: %s", exc)
        return report
