"""In-process CodeExecutor fakes for grader tests."""

from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Sequence, Union

from apps.grader.models import Challenge
from apps.sandbox.executor import ExecutorTransportError, RawExecution

Step = Union[RawExecution, Exception]


class ScriptedExecutor:
    """Replays ``steps`` in order; the last step repeats once the script runs out."""

    def __init__(self, steps: Sequence[Step]) -> None:
        if not steps:
            raise ValueError("ScriptedExecutor needs at least one step")
        self._steps: List[Step] = list(steps)
        self.calls: List[Dict[str, object]] = []

    def execute(self, source: str, language: str, max_wait_ms: int) -> RawExecution:
        self.calls.append({"source": source, "language": language, "max_wait_ms": max_wait_ms})
        step = self._steps.pop(0) if len(self._steps) > 1 else self._steps[0]
        if isinstance(step, Exception):
            raise step
        return step


class BlockingExecutor:
    """Never answers until ``release`` is set; used to exercise the max-wait bound."""

    def __init__(self) -> None:
        self.release = threading.Event()
        self.calls = 0

    def execute(self, source: str, language: str, max_wait_ms: int) -> RawExecution:
        self.calls += 1
        self.release.wait(timeout=10)
        return RawExecution(stdout="too late")


class ReferenceExecutor:
    """Prints a challenge's expected output when handed its exact reference solution."""

    def __init__(self, challenges: Iterable[Challenge]) -> None:
        self._outputs = {challenge.solution_source: challenge.expected_output for challenge in challenges}
        self.calls = 0

    def execute(self, source: str, language: str, max_wait_ms: int) -> RawExecution:
        self.calls += 1
        return RawExecution(stdout=self._outputs.get(source, ""), elapsed_ms=12.0)


def transport_failure(message: str = "connection refused") -> ExecutorTransportError:
    return ExecutorTransportError(message)


__all__ = ["BlockingExecutor", "ReferenceExecutor", "ScriptedExecutor", "transport_failure"]
