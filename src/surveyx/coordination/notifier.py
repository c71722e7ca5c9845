"""Result notifier — waits for asynchronous MPC outcomes.

A confirmed submission only queues a computation. Its result arrives
later, keyed by computation offset, either pushed to ``deliver`` by a
listener or found by polling a ResultChannel. Each registration is
awaited on a worker thread, detached from the submitting caller.

The returned Future resolves to the ComputationResult, or to None when
nothing arrives in time. It never carries an exception: the submission
itself already succeeded.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Optional, Protocol, runtime_checkable

from surveyx.models.submission import ComputationResult

logger = logging.getLogger(__name__)


@runtime_checkable
class ResultChannel(Protocol):
    """Pull source of computation results."""

    def poll(self, computation_offset: int) -> Optional[ComputationResult]:
        ...


class InMemoryResultChannel:
    """Results published in-process (local executor, tests)."""

    def __init__(self) -> None:
        self._results: Dict[int, ComputationResult] = {}
        self._lock = threading.Lock()
        self.polls = 0

    def publish(self, result: ComputationResult) -> None:
        with self._lock:
            self._results[result.computation_offset] = result

    def poll(self, computation_offset: int) -> Optional[ComputationResult]:
        with self._lock:
            self.polls += 1
            return self._results.get(computation_offset)


@dataclasses.dataclass
class _Registration:
    computation_offset: int
    resource_id: str
    arrived: threading.Event = dataclasses.field(default_factory=threading.Event)
    result: Optional[ComputationResult] = None


class ResultNotifier:

    def __init__(
        self,
        channel: Optional[ResultChannel] = None,
        timeout_seconds: float = 120.0,
        poll_interval_seconds: float = 2.0,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        self._channel = channel
        self._timeout = timeout_seconds
        self._poll_interval = poll_interval_seconds
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="surveyx-result",
        )
        self._waiting: Dict[int, _Registration] = {}
        self._lock = threading.Lock()

    def register(
        self,
        computation_offset: int,
        resource_id: str = "",
    ) -> "Future[Optional[ComputationResult]]":
        """Start waiting for the result of a queued computation."""
        registration = _Registration(computation_offset, resource_id)
        with self._lock:
            if computation_offset in self._waiting:
                raise ValueError(
                    f"Computation offset already registered: {computation_offset}"
                )
            self._waiting[computation_offset] = registration
        return self._executor.submit(self._wait, registration)

    def deliver(self, result: ComputationResult) -> bool:
        """Push a result. Returns False if nobody is waiting for it."""
        with self._lock:
            registration = self._waiting.get(result.computation_offset)
        if registration is None:
            logger.debug(
                "Dropping result for unregistered offset %d", result.computation_offset,
            )
            return False
        registration.result = result
        registration.arrived.set()
        return True

    def pending_offsets(self) -> List[int]:
        with self._lock:
            return sorted(self._waiting)

    def close(self) -> None:
        """Release every waiter (resolving to None) and stop the workers."""
        with self._lock:
            waiting = list(self._waiting.values())
        for registration in waiting:
            registration.arrived.set()
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def _wait(self, registration: _Registration) -> Optional[ComputationResult]:
        offset = registration.computation_offset
        deadline = time.monotonic() + self._timeout
        try:
            while True:
                if registration.arrived.is_set():
                    return self._stamp(registration, registration.result)
                found = self._poll(offset)
                if found is not None:
                    return self._stamp(registration, found)
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.info(
                        "No computation result for offset %d within %.1fs",
                        offset, self._timeout,
                    )
                    return None
                registration.arrived.wait(min(self._poll_interval, remaining))
        finally:
            with self._lock:
                self._waiting.pop(offset, None)

    def _poll(self, computation_offset: int) -> Optional[ComputationResult]:
        if self._channel is None:
            return None
        try:
            return self._channel.poll(computation_offset)
        except Exception as exc:
            logger.warning(
                "Result poll for offset %d failed: %s", computation_offset, exc,
            )
            return None

    @staticmethod
    def _stamp(
        registration: _Registration,
        result: Optional[ComputationResult],
    ) -> Optional[ComputationResult]:
        if result is None:
            return None
        if not result.resource_id and registration.resource_id:
            result = dataclasses.replace(result, resource_id=registration.resource_id)
        logger.info(
            "Computation result received for offset %d", registration.computation_offset,
        )
        return result
