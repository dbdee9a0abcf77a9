"""A single-consumer work queue for statement parsing.

Goals
-----
- Exactly one job runs at a time. Generated-code versioning is not safe
  against concurrent writers for the same source key, so this is a
  correctness requirement, not a throughput knob.
- FIFO order; an id already waiting is not queued twice.
- A failing job is logged and counted; the next job still runs.
- Explicit lifecycle: :meth:`StatementQueue.start` spawns the consumer
  thread, :meth:`~StatementQueue.drain` waits until the queue is idle,
  :meth:`~StatementQueue.shutdown` stops it. Tests that want no threads at
  all call :meth:`~StatementQueue.run_pending` instead.

Non-goals
---------
- Cancelling a job that is already running.
- Persistence of the queue itself (pending statements live in the database).
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .logging_setup import get_logger

_logger = get_logger("statement_parser.work_queue")


@dataclass(frozen=True, slots=True)
class JobOutcome:
    statement_id: str
    result: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class QueueClosedError(RuntimeError):
    """Raised by :meth:`StatementQueue.enqueue` after shutdown."""


class StatementQueue:
    def __init__(
        self,
        handler: Callable[[str], Any],
        *,
        on_done: Callable[[JobOutcome], None] | None = None,
        name: str = "statement-queue",
    ) -> None:
        self._handler = handler
        self._on_done = on_done
        self._name = name
        self._pending: deque[str] = deque()
        self._cond = threading.Condition()
        self._processing: str | None = None
        self._closed = False
        self._stopping = False
        self._thread: threading.Thread | None = None
        self.processed = 0
        self.failed = 0

    # ---- Producer side ----------------------------------------------------------

    def enqueue(self, statement_id: str) -> bool:
        """Queue ``statement_id``; return False when it is already waiting."""

        with self._cond:
            if self._closed:
                raise QueueClosedError("queue has been shut down")
            if statement_id in self._pending:
                return False
            self._pending.append(statement_id)
            self._cond.notify_all()
        _logger.debug("work_queue:enqueued statement_id=%s", statement_id)
        return True

    @property
    def pending(self) -> tuple[str, ...]:
        with self._cond:
            return tuple(self._pending)

    @property
    def current(self) -> str | None:
        """Id of the job running right now, if any."""

        with self._cond:
            return self._processing

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ---- Job execution ----------------------------------------------------------

    def _run_one(self, statement_id: str) -> JobOutcome:
        try:
            outcome = JobOutcome(statement_id, result=self._handler(statement_id))
        except Exception as e:  # noqa: BLE001 - one job must not stall the queue
            _logger.error(
                "work_queue:job_failed statement_id=%s error=%s", statement_id, e.__class__.__name__
            )
            outcome = JobOutcome(statement_id, error=e)
        with self._cond:
            self.processed += 1
            if outcome.error is not None:
                self.failed += 1
        if self._on_done is not None:
            try:
                self._on_done(outcome)
            except Exception:  # noqa: BLE001
                _logger.exception("work_queue:on_done_failed statement_id=%s", statement_id)
        return outcome

    def run_pending(self) -> list[JobOutcome]:
        """Process everything queued so far on the calling thread."""

        if self.running:
            raise RuntimeError("run_pending() cannot be used while the consumer thread runs")
        outcomes: list[JobOutcome] = []
        while True:
            with self._cond:
                if not self._pending:
                    return outcomes
                sid = self._pending.popleft()
                self._processing = sid
            try:
                outcomes.append(self._run_one(sid))
            finally:
                with self._cond:
                    self._processing = None
                    self._cond.notify_all()

    def _consume(self) -> None:
        _logger.info("work_queue:started name=%s", self._name)
        while True:
            with self._cond:
                while not self._pending and not self._stopping:
                    self._cond.wait()
                if self._stopping:
                    break
                sid = self._pending.popleft()
                self._processing = sid
            try:
                self._run_one(sid)
            finally:
                with self._cond:
                    self._processing = None
                    self._cond.notify_all()
        _logger.info(
            "work_queue:stopped name=%s processed=%d failed=%d",
            self._name,
            self.processed,
            self.failed,
        )

    # ---- Lifecycle ----------------------------------------------------------------

    def start(self) -> None:
        """Start the consumer thread (no-op when it is already running)."""

        with self._cond:
            if self._closed:
                raise QueueClosedError("queue has been shut down")
            if self._thread is not None and self._thread.is_alive():
                return
            self._stopping = False
            self._thread = threading.Thread(target=self._consume, name=self._name, daemon=True)
            self._thread.start()

    def drain(self, timeout: float | None = None) -> bool:
        """Block until nothing is pending or running; False on timeout."""

        with self._cond:
            return self._cond.wait_for(
                lambda: not self._pending and self._processing is None, timeout=timeout
            )

    def shutdown(self, *, wait: bool = True, timeout: float | None = None) -> list[str]:
        """Stop accepting work and stop the consumer after its current job.

        With ``wait=True`` the queue is drained first. Returns ids that were
        still pending (empty after a successful drain).
        """

        if wait and self.running:
            self.drain(timeout)
        with self._cond:
            self._closed = True
            self._stopping = True
            leftover = list(self._pending)
            self._pending.clear()
            self._cond.notify_all()
            thread = self._thread
        if thread is not None:
            thread.join(timeout)
        if leftover:
            _logger.warning("work_queue:shutdown_dropped count=%d", len(leftover))
        return leftover


__all__ = ["JobOutcome", "QueueClosedError", "StatementQueue"]
