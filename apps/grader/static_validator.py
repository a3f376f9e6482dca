"""Static rule validation: run every test-case rule against raw submission text."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Sequence, Tuple

from devgrader.core.validation import DeadlineExceeded, call_with_deadline

from .models import CaseResult, TestCase
from .rules import evaluate_rule

LOGGER = logging.getLogger(__name__)
DEFAULT_PREDICATE_TIMEOUT_MS = 50
DEFAULT_MAX_SOURCE_CHARS = 65536


class SubmissionTooLarge(ValueError):
    """The submission exceeds the validator's size bound and is not evaluated."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Submission has {size} characters; the limit is {limit}")


@dataclass(frozen=True, slots=True)
class ValidatorFault:
    """A predicate that timed out or raised; its result was forced to ``False``."""

    index: int
    description: str
    reason: str


@dataclass(frozen=True, slots=True)
class StaticValidation:
    results: Tuple[CaseResult, ...]
    faults: Tuple[ValidatorFault, ...] = ()

    @property
    def all_passed(self) -> bool:
        return all(result.passed for result in self.results)

    @property
    def fault_count(self) -> int:
        return len(self.faults)


class StaticRuleValidator:
    """Evaluates test-case rules in order, bounding each evaluation in time."""

    def __init__(
        self,
        *,
        predicate_timeout_ms: int = DEFAULT_PREDICATE_TIMEOUT_MS,
        max_source_chars: int = DEFAULT_MAX_SOURCE_CHARS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if predicate_timeout_ms <= 0:
            raise ValueError("predicate_timeout_ms must be positive")
        self.predicate_timeout_ms = predicate_timeout_ms
        self.max_source_chars = max_source_chars
        self._clock = clock

    def validate(self, source: str | None, test_cases: Sequence[TestCase]) -> StaticValidation:
        """Return one CaseResult per test case, in input order.

        Raises :class:`SubmissionTooLarge` before evaluating anything when the
        source exceeds ``max_source_chars``. Nothing else escapes: a rule that
        raises or runs past ``predicate_timeout_ms`` is recorded as a fault and
        reported as failed.
        """

        text = source if isinstance(source, str) else ""
        if len(text) > self.max_source_chars:
            raise SubmissionTooLarge(len(text), self.max_source_chars)

        results: List[CaseResult] = []
        faults: List[ValidatorFault] = []
        for index, case in enumerate(test_cases):
            passed, reason = self._evaluate(case, text)
            if reason is not None:
                faults.append(ValidatorFault(index=index, description=case.description, reason=reason))
                LOGGER.warning(
                    "Validator fault on test case %d (%s): %s",
                    index,
                    case.description,
                    reason,
                )
            results.append(CaseResult(description=case.description, passed=passed))
        return StaticValidation(results=tuple(results), faults=tuple(faults))

    def _evaluate(self, case: TestCase, text: str) -> Tuple[bool, str | None]:
        bound = self.predicate_timeout_ms / 1000.0
        started = self._clock()
        try:
            passed = call_with_deadline(
                lambda: evaluate_rule(case.rule, text),
                bound,
                operation=f"predicate:{case.description}",
            )
        except DeadlineExceeded:
            return False, f"exceeded {self.predicate_timeout_ms} ms"
        except Exception as exc:  # noqa: BLE001 - untrusted input must never abort validation
            return False, f"raised {type(exc).__name__}: {exc}"
        elapsed = self._clock() - started
        # Rules that hold the GIL (a backtracking regex) can only be detected after they return.
        if elapsed > bound:
            return False, f"took {elapsed * 1000:.1f} ms (limit {self.predicate_timeout_ms} ms)"
        return bool(passed), None


__all__ = [
    "StaticRuleValidator",
    "StaticValidation",
    "SubmissionTooLarge",
    "ValidatorFault",
]
