"""Sandbox execution client: the only part of the grader that performs I/O."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol, runtime_checkable

from apps.grader.models import ExecutionResult, ExecutionStatus
from devgrader.core.validation import DeadlineExceeded, call_with_deadline

LOGGER = logging.getLogger(__name__)


class ExecutorTransportError(RuntimeError):
    """The execution service could not be reached or answered with an error."""

    def __init__(self, message: str, *, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass(slots=True)
class RawExecution:
    """What an executor observed, before classification into an ExecutionResult."""

    stdout: str = ""
    stderr: str = ""
    exit_status: int | None = 0
    elapsed_ms: float | None = None
    timed_out: bool = False
    signal: str | None = None
    message: str | None = None


@runtime_checkable
class CodeExecutor(Protocol):
    """Narrow interface to an external code execution service."""

    def execute(self, source: str, language: str, max_wait_ms: int) -> RawExecution:
        ...


class SandboxClient:
    """Runs submissions through a :class:`CodeExecutor` and normalizes the outcome.

    ``max_wait_ms`` is enforced here regardless of what the executor does: once
    it elapses the in-flight call is abandoned and the run is reported as
    ``timedOut``. Any other executor failure is reported as ``transportError``.
    Nothing is retried at this level.
    """

    def __init__(
        self,
        executor: CodeExecutor,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.executor = executor
        self._clock = clock

    def execute(self, source: str, language: str, max_wait_ms: int) -> ExecutionResult:
        if max_wait_ms <= 0:
            raise ValueError("max_wait_ms must be positive")

        started = self._clock()
        try:
            raw = call_with_deadline(
                lambda: self.executor.execute(source, language, max_wait_ms),
                max_wait_ms / 1000.0,
                operation="sandbox",
            )
        except DeadlineExceeded:
            elapsed = self._elapsed_ms(started)
            LOGGER.info("Sandbox call abandoned after %.0f ms (limit %d ms)", elapsed, max_wait_ms)
            return ExecutionResult(
                status=ExecutionStatus.TIMED_OUT,
                elapsed_ms=elapsed,
                detail=f"No result within {max_wait_ms} ms",
            )
        except ExecutorTransportError as exc:
            LOGGER.warning("Sandbox transport failure: %s", exc, extra={"status_code": exc.status_code})
            return ExecutionResult(
                status=ExecutionStatus.TRANSPORT_ERROR,
                elapsed_ms=self._elapsed_ms(started),
                detail=str(exc),
            )
        except Exception as exc:  # noqa: BLE001 - executor faults are reported, never raised to the grader
            LOGGER.warning("Sandbox executor failed: %s", exc, exc_info=True)
            return ExecutionResult(
                status=ExecutionStatus.TRANSPORT_ERROR,
                elapsed_ms=self._elapsed_ms(started),
                detail=f"{type(exc).__name__}: {exc}",
            )

        elapsed = raw.elapsed_ms if raw.elapsed_ms is not None else self._elapsed_ms(started)
        return classify(raw, elapsed_ms=elapsed)

    def _elapsed_ms(self, started: float) -> float:
        return max((self._clock() - started) * 1000.0, 0.0)


def classify(raw: RawExecution, *, elapsed_ms: float) -> ExecutionResult:
    """Map an executor observation onto the four execution statuses."""

    if raw.timed_out:
        status = ExecutionStatus.TIMED_OUT
    elif raw.exit_status == 0 and not raw.signal:
        status = ExecutionStatus.COMPLETED
    else:
        status = ExecutionStatus.RUNTIME_ERROR

    detail = raw.message
    if detail is None and status is ExecutionStatus.RUNTIME_ERROR:
        detail = f"terminated by {raw.signal}" if raw.signal else f"exit status {raw.exit_status}"

    return ExecutionResult(
        status=status,
        stdout=raw.stdout or "",
        stderr=raw.stderr or "",
        elapsed_ms=elapsed_ms,
        exit_status=raw.exit_status,
        detail=detail,
    )


__all__ = ["CodeExecutor", "ExecutorTransportError", "RawExecution", "SandboxClient", "classify"]
