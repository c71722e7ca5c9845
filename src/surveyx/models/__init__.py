"""Core data models for surveyx."""

from surveyx.models.submission import (
    CiphertextEnvelope,
    ComputationResult,
    ConfirmationState,
    LedgerTransaction,
    MetadataRecord,
    RecordStatus,
    SealedPayload,
    SubmissionKind,
    SubmissionOutcome,
    SubmissionRequest,
)
from surveyx.models.survey import QuestionType, SurveyDefinition, SurveyQuestion

__all__ = [
    "CiphertextEnvelope",
    "ComputationResult",
    "ConfirmationState",
    "LedgerTransaction",
    "MetadataRecord",
    "RecordStatus",
    "SealedPayload",
    "SubmissionKind",
    "SubmissionOutcome",
    "SubmissionRequest",
    "QuestionType",
    "SurveyDefinition",
    "SurveyQuestion",
]
