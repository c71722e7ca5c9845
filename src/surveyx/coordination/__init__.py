"""Submission saga — guards, writer, compensator, notifier, coordinator."""

from surveyx.coordination.compensator import CompensationReport, Compensator
from surveyx.coordination.coordinator import SubmissionCoordinator
from surveyx.coordination.guards import BalanceGuard, CapacityGuard, DuplicateGuard
from surveyx.coordination.notifier import (
    InMemoryResultChannel,
    ResultChannel,
    ResultNotifier,
)
from surveyx.coordination.writer import MetadataWriter

__all__ = [
    "BalanceGuard",
    "CapacityGuard",
    "CompensationReport",
    "Compensator",
    "DuplicateGuard",
    "InMemoryResultChannel",
    "MetadataWriter",
    "ResultChannel",
    "ResultNotifier",
    "SubmissionCoordinator",
]
