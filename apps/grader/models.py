"""Challenge, submission, and grade-report records shared by the grader."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Tuple

if TYPE_CHECKING:  # pragma: no cover
    from .rules import Rule


class Difficulty(str, Enum):
    """Ordered difficulty levels (Easy < Medium < Hard)."""

    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"

    @property
    def rank(self) -> int:
        return _DIFFICULTY_RANK[self]

    @classmethod
    def parse(cls, value: "str | Difficulty") -> "Difficulty":
        if isinstance(value, Difficulty):
            return value
        normalized = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == normalized:
                return member
        valid = ", ".join(member.value for member in cls)
        raise ValueError(f"Unknown difficulty '{value}'. Expected one of: {valid}")

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Difficulty):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Difficulty):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Difficulty):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Difficulty):
            return NotImplemented
        return self.rank >= other.rank


_DIFFICULTY_RANK = {Difficulty.EASY: 0, Difficulty.MEDIUM: 1, Difficulty.HARD: 2}


class ExecutionStatus(str, Enum):
    """How a sandbox run ended."""

    COMPLETED = "completed"
    TIMED_OUT = "timedOut"
    RUNTIME_ERROR = "runtimeError"
    TRANSPORT_ERROR = "transportError"


class GradeOutcome(str, Enum):
    """Learner-facing failure category of a grade report."""

    PASSED = "passed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    RUNTIME_ERROR = "runtime_error"
    INFRASTRUCTURE_ERROR = "infrastructure_error"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class TestCase:
    """One structural check shown to the learner as a checklist entry."""

    __test__ = False  # keep pytest from collecting this as a test class

    description: str
    rule: "Rule"


@dataclass(frozen=True, slots=True)
class Challenge:
    """A single coding exercise. Immutable once loaded into a registry."""

    id: str
    title: str
    topic: str
    topic_slug: str
    difficulty: Difficulty
    description: str
    starter_source: str
    solution_source: str
    expected_output: str
    test_cases: Tuple[TestCase, ...] = ()
    language: str = "kotlin"
    explanation: str = ""
    hints: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Submission:
    """A learner's source text for one challenge."""

    challenge_id: str
    source: str
    language: str | None = None


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Normalized outcome of one sandbox call."""

    status: ExecutionStatus
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: float = 0.0
    exit_status: int | None = None
    detail: str | None = None

    @property
    def completed(self) -> bool:
        return self.status is ExecutionStatus.COMPLETED

    @property
    def retryable(self) -> bool:
        return self.status is ExecutionStatus.TRANSPORT_ERROR

    def as_dict(self) -> Dict[str, object]:
        return {
            "status": self.status.value,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "elapsed_ms": round(self.elapsed_ms, 3),
            "exit_status": self.exit_status,
            "detail": self.detail,
        }


@dataclass(frozen=True, slots=True)
class CaseResult:
    description: str
    passed: bool

    def as_dict(self) -> Dict[str, object]:
        return {"description": self.description, "passed": self.passed}


@dataclass(frozen=True, slots=True)
class OutputMismatch:
    """First differing line between normalized actual and expected output (1-based)."""

    line: int
    expected: str | None
    actual: str | None


@dataclass(frozen=True, slots=True)
class GradeReport:
    """Final verdict for one submission. Read-only once produced."""

    challenge_id: str
    case_results: Tuple[CaseResult, ...]
    output_matched: bool
    outcome: GradeOutcome
    execution: ExecutionResult | None = None
    language: str | None = None
    attempts: int = 0
    validator_faults: int = 0
    mismatch: OutputMismatch | None = None
    notes: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def all_test_cases_passed(self) -> bool:
        return all(case.passed for case in self.case_results)

    @property
    def passed(self) -> bool:
        return (
            self.all_test_cases_passed
            and self.output_matched
            and self.execution is not None
            and self.execution.completed
        )

    @property
    def total_count(self) -> int:
        # Every static check plus the output check.
        return len(self.case_results) + 1

    @property
    def passed_count(self) -> int:
        return sum(1 for case in self.case_results if case.passed) + (1 if self.output_matched else 0)

    def as_dict(self) -> Dict[str, object]:
        cases: List[Dict[str, object]] = [case.as_dict() for case in self.case_results]
        return {
            "challenge_id": self.challenge_id,
            "passed": self.passed,
            "outcome": self.outcome.value,
            "all_test_cases": self.all_test_cases_passed,
            "output_matched": self.output_matched,
            "test_cases": cases,
            "passed_count": self.passed_count,
            "total_count": self.total_count,
            "language": self.language,
            "attempts": self.attempts,
            "validator_faults": self.validator_faults,
            "execution": self.execution.as_dict() if self.execution is not None else None,
            "mismatch": (
                {"line": self.mismatch.line, "expected": self.mismatch.expected, "actual": self.mismatch.actual}
                if self.mismatch is not None
                else None
            ),
            "notes": list(self.notes),
        }


__all__ = [
    "CaseResult",
    "Challenge",
    "Difficulty",
    "ExecutionResult",
    "ExecutionStatus",
    "GradeOutcome",
    "GradeReport",
    "OutputMismatch",
    "Submission",
    "TestCase",
]
