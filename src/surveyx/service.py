"""Survey service — facade over the submission coordinator.

Request-handling code (CLI, web handlers) talks to this class only.
Every mutating operation returns a ServiceResult; a submission failure
is reported as ``"<code>: <message>"`` using the error's stable code,
so callers can branch on the code without importing the error types.

Read operations (has_responded, get_survey, list_responses) go straight
to the metadata store. PENDING records are included: a record is
discoverable as soon as it is written, and ``status`` tells the caller
whether its transaction has confirmed yet.
"""

from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence
from uuid import uuid4

from surveyx import __version__
from surveyx.coordination.coordinator import SubmissionCoordinator
from surveyx.crypto.encryptor import PayloadEncryptor
from surveyx.errors import SubmissionError
from surveyx.models.submission import (
    MetadataRecord,
    SubmissionKind,
    SubmissionOutcome,
    SubmissionRequest,
)
from surveyx.models.survey import SurveyDefinition
from surveyx.persistence.event_log import EventKind, EventLog
from surveyx.store.base import MetadataStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


def _error(exc: SubmissionError) -> str:
    return f"{exc.code}: {exc}"


class SurveyService:
    """Create surveys, submit responses, and query what was submitted.

    Usage:
        coordinator = SubmissionCoordinator.from_config(config, ledger, signer, keys, store)
        service = SurveyService(coordinator, store)

        result = service.create_survey(creator, definition)
        survey_id = result.data["survey_id"]
        result = service.submit_response(respondent, survey_id, answers)
        service.has_responded(survey_id, respondent)   # True
    """

    def __init__(
        self,
        coordinator: SubmissionCoordinator,
        store: MetadataStore,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._coordinator = coordinator
        self._store = store
        self._event_log = event_log
        self._outcomes: dict[tuple[str, str, SubmissionKind], SubmissionOutcome] = {}

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    def create_survey(
        self,
        identity: str,
        definition: SurveyDefinition,
        deadline: Optional[datetime] = None,
    ) -> ServiceResult:
        """Encrypt and anchor a new survey definition."""
        problems = definition.validate()
        if problems:
            return ServiceResult(success=False, errors=problems)

        survey_id = f"survey_{uuid4().hex[:12]}"
        return self._submit(
            identity,
            survey_id,
            SubmissionKind.CREATE_SURVEY,
            payload=definition.to_payload(),
            details=definition.to_details(),
            deadline=deadline,
        )

    def submit_response(
        self,
        identity: str,
        survey_id: str,
        answers: Sequence[Mapping[str, Any]],
        deadline: Optional[datetime] = None,
    ) -> ServiceResult:
        """Encrypt and anchor one identity's answers to a survey."""
        if not answers:
            return ServiceResult(success=False, errors=["answers must not be empty"])
        if not all(isinstance(a, Mapping) for a in answers):
            return ServiceResult(success=False, errors=["each answer must be a mapping"])
        now = datetime.now(timezone.utc)
        payload = {
            "survey_id": survey_id,
            "responses": [dict(a) for a in answers],
            "submitted_at": int(now.timestamp()),
            "respondent": identity,
        }
        return self._submit(
            identity,
            survey_id,
            SubmissionKind.SUBMIT_RESPONSE,
            payload=payload,
            details={"answer_count": len(answers)},
            deadline=deadline,
            now=now,
        )

    def _submit(
        self,
        identity: str,
        resource_id: str,
        kind: SubmissionKind,
        payload: Mapping[str, Any],
        details: Mapping[str, Any],
        deadline: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            request = SubmissionRequest(
                identity=identity,
                resource_id=resource_id,
                kind=kind,
                payload=payload,
                details=details,
            )
            outcome = self._coordinator.submit(request, deadline=deadline, now=now)
        except SubmissionError as exc:
            return ServiceResult(success=False, errors=[_error(exc)])
        except ValueError as exc:
            return ServiceResult(success=False, errors=[str(exc)])

        self._outcomes[(resource_id, identity.lower(), kind)] = outcome
        data: dict[str, Any] = {
            "record_id": outcome.record.record_id,
            "status": outcome.record.status.value,
            "signature": outcome.transaction.signature,
            "computation_offset": outcome.envelope.computation_offset,
            "commitment": outcome.envelope.commitment,
            "survey_id": resource_id,
        }
        if kind == SubmissionKind.SUBMIT_RESPONSE:
            data["respondent"] = identity
        return ServiceResult(success=True, data=data)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def has_responded(self, survey_id: str, identity: str) -> bool:
        return bool(self._store.query(survey_id, identity, SubmissionKind.SUBMIT_RESPONSE))

    def get_survey(self, survey_id: str) -> Optional[MetadataRecord]:
        surveys = self._store.list_by_resource(survey_id, SubmissionKind.CREATE_SURVEY)
        return surveys[0] if surveys else None

    def list_responses(self, survey_id: str) -> list[MetadataRecord]:
        return self._store.list_by_resource(survey_id, SubmissionKind.SUBMIT_RESPONSE)

    def computation_result(
        self,
        resource_id: str,
        identity: str,
        kind: SubmissionKind = SubmissionKind.SUBMIT_RESPONSE,
        timeout: Optional[float] = None,
    ) -> ServiceResult:
        """Wait for and decrypt the MPC result of a submission made here.

        Only submissions made through this service instance can be
        opened: the shared key is never persisted.
        """
        outcome = self._outcomes.get((resource_id, identity.lower(), kind))
        if outcome is None or outcome.result is None:
            return ServiceResult(
                success=False,
                errors=[f"No tracked {kind.value} submission for ({resource_id}, {identity})"],
            )
        try:
            result = outcome.result.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            result = None
        if result is None:
            return ServiceResult(
                success=False,
                errors=[f"Computation result not available for {resource_id}"],
            )
        try:
            output = PayloadEncryptor.open_result(outcome.shared_key, result)
        except ValueError as exc:
            return ServiceResult(success=False, errors=[str(exc)])
        return ServiceResult(success=True, data={
            "resource_id": resource_id,
            "computation_offset": result.computation_offset,
            "output": output,
        })

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def reconcile(
        self,
        resource_id: str,
        identity: str,
        kind: SubmissionKind = SubmissionKind.SUBMIT_RESPONSE,
    ) -> ServiceResult:
        """Collapse orphaned duplicate records to the newest one."""
        deleted = self._coordinator.duplicate_guard.reconcile(resource_id, identity, kind)
        if deleted and self._event_log is not None:
            try:
                self._event_log.record(EventKind.ORPHANS_RECONCILED, identity, {
                    "resource_id": resource_id,
                    "kind": kind.value,
                    "deleted": deleted,
                })
            except (OSError, ValueError) as exc:
                logger.error("Could not write reconciliation audit event: %s", exc)
        return ServiceResult(success=True, data={
            "resource_id": resource_id,
            "deleted": deleted,
            "remaining": len(self._store.query(resource_id, identity, kind)),
        })

    def status(self) -> dict[str, Any]:
        """Return a summary of locally tracked activity."""
        notifier = self._coordinator.notifier
        return {
            "version": __version__,
            "tracked_submissions": len(self._outcomes),
            "pending_results": notifier.pending_offsets() if notifier else [],
            "audit_events": self._event_log.count if self._event_log else 0,
        }
