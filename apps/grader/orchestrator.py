"""Grading orchestrator: registry lookup, static checks, sandbox run, comparison."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, FrozenSet, Optional, Tuple

from devgrader.core.config import RetryConfig
from devgrader.core.provenance import ProvenanceEvent, ProvenanceLogger

from .comparator import first_mismatch
from .models import (
    CaseResult,
    Challenge,
    ExecutionResult,
    ExecutionStatus,
    GradeOutcome,
    GradeReport,
    Submission,
)
from .registry import ChallengeRegistry
from .static_validator import StaticRuleValidator, StaticValidation, SubmissionTooLarge

if TYPE_CHECKING:  # pragma: no cover
    # apps.sandbox imports apps.grader.models at import time.
    from apps.sandbox.executor import SandboxClient

LOGGER = logging.getLogger(__name__)
DEFAULT_MAX_WAIT_MS = 15000


class GradingStage(str, Enum):
    VALIDATING = "validating"
    EXECUTING = "executing"
    COMPARING = "comparing"
    DONE = "done"


# Validating -> Done rejects a submission; Executing -> Done ends on exhausted transport retries.
TRANSITIONS: Dict[GradingStage, FrozenSet[GradingStage]] = {
    GradingStage.VALIDATING: frozenset({GradingStage.EXECUTING, GradingStage.DONE}),
    GradingStage.EXECUTING: frozenset({GradingStage.COMPARING, GradingStage.DONE}),
    GradingStage.COMPARING: frozenset({GradingStage.DONE}),
    GradingStage.DONE: frozenset(),
}


@dataclass(frozen=True, slots=True)
class StageUpdate:
    """Partial progress handed to a listener once a stage has finished."""

    challenge_id: str
    stage: GradingStage
    case_results: Tuple[CaseResult, ...] = ()
    execution: ExecutionResult | None = None
    report: GradeReport | None = None


StageListener = Callable[[StageUpdate], None]


class _Run:
    """Tracks the stage of one submission and notifies the listener on every step."""

    def __init__(self, challenge_id: str, listener: Optional[StageListener]) -> None:
        self.challenge_id = challenge_id
        self.stage = GradingStage.VALIDATING
        self._listener = listener

    def advance(self, stage: GradingStage, **fields) -> None:
        if stage not in TRANSITIONS[self.stage]:
            raise RuntimeError(f"Illegal grading transition {self.stage.value} -> {stage.value}")
        update = StageUpdate(challenge_id=self.challenge_id, stage=self.stage, **fields)
        self.stage = stage
        if self._listener is not None:
            self._listener(update)

    def finish(self, report: GradeReport) -> GradeReport:
        self.advance(GradingStage.DONE, case_results=report.case_results, execution=report.execution)
        if self._listener is not None:
            self._listener(StageUpdate(challenge_id=self.challenge_id, stage=GradingStage.DONE, report=report))
        return report


class GradingOrchestrator:
    """Turns a (challenge id, source) pair into a :class:`GradeReport`.

    Static validation always runs before the sandbox call so that listeners
    receive structural feedback first. Only ``transportError`` results are
    retried, up to ``retry.max_retries`` extra attempts with exponential
    backoff. Unknown challenge ids raise
    :class:`~apps.grader.registry.ChallengeNotFoundError`; every other failure
    is reported inside the returned report.
    """

    def __init__(
        self,
        registry: ChallengeRegistry,
        sandbox: SandboxClient,
        *,
        validator: StaticRuleValidator | None = None,
        retry: RetryConfig | None = None,
        default_language: str = "kotlin",
        max_wait_ms: int = DEFAULT_MAX_WAIT_MS,
        provenance: ProvenanceLogger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.registry = registry
        self.sandbox = sandbox
        self.validator = validator or StaticRuleValidator()
        self.retry = retry or RetryConfig()
        self.default_language = default_language
        self.max_wait_ms = max_wait_ms
        self.provenance = provenance
        self._sleep = sleep

    def grade(
        self,
        challenge_id: str,
        source: str,
        language: str | None = None,
        *,
        max_wait_ms: int | None = None,
        listener: StageListener | None = None,
    ) -> GradeReport:
        challenge = self.registry.get(challenge_id)
        language_tag = (language or challenge.language or self.default_language).strip().lower()
        wait_ms = max_wait_ms if max_wait_ms is not None else self.max_wait_ms
        run = _Run(challenge.id, listener)

        try:
            static = self.validator.validate(source, challenge.test_cases)
        except SubmissionTooLarge as exc:
            LOGGER.info("Rejected submission for %s: %s", challenge.id, exc)
            report = GradeReport(
                challenge_id=challenge.id,
                case_results=tuple(CaseResult(case.description, False) for case in challenge.test_cases),
                output_matched=False,
                outcome=GradeOutcome.REJECTED,
                language=language_tag,
                notes=(str(exc),),
            )
            return self._record(run.finish(report), source)

        run.advance(GradingStage.EXECUTING, case_results=static.results)
        execution, attempts = self._execute(challenge, source, language_tag, wait_ms)

        if execution.status is ExecutionStatus.TRANSPORT_ERROR:
            report = self._build_report(
                challenge,
                static,
                execution,
                language_tag,
                attempts,
                outcome=GradeOutcome.INFRASTRUCTURE_ERROR,
            )
            return self._record(run.finish(report), source)

        run.advance(GradingStage.COMPARING, case_results=static.results, execution=execution)
        mismatch = first_mismatch(execution.stdout, challenge.expected_output)
        output_matched = mismatch is None
        outcome = _outcome_for(execution, static.all_passed and output_matched)
        report = self._build_report(
            challenge,
            static,
            execution,
            language_tag,
            attempts,
            outcome=outcome,
            output_matched=output_matched,
            mismatch=mismatch,
        )
        return self._record(run.finish(report), source)

    def grade_submission(
        self,
        submission: Submission,
        *,
        max_wait_ms: int | None = None,
        listener: StageListener | None = None,
    ) -> GradeReport:
        return self.grade(
            submission.challenge_id,
            submission.source,
            submission.language,
            max_wait_ms=max_wait_ms,
            listener=listener,
        )

    # ------------------------------------------------------------------

    def _execute(self, challenge: Challenge, source: str, language: str, max_wait_ms: int) -> Tuple[ExecutionResult, int]:
        attempts = 0
        while True:
            attempts += 1
            result = self.sandbox.execute(source, language, max_wait_ms)
            if not result.retryable:
                return result, attempts
            retry_number = attempts
            if retry_number > self.retry.max_retries:
                LOGGER.warning(
                    "Sandbox unavailable for %s after %d attempt(s): %s",
                    challenge.id,
                    attempts,
                    result.detail,
                )
                return result, attempts
            delay = self.retry.delay_for(retry_number)
            LOGGER.warning(
                "Transport error grading %s (attempt %d); retrying in %.2fs: %s",
                challenge.id,
                attempts,
                delay,
                result.detail,
                extra={"challenge_id": challenge.id},
            )
            if delay > 0:
                self._sleep(delay)

    def _build_report(
        self,
        challenge: Challenge,
        static: StaticValidation,
        execution: ExecutionResult,
        language: str,
        attempts: int,
        *,
        outcome: GradeOutcome,
        output_matched: bool = False,
        mismatch=None,
    ) -> GradeReport:
        notes = []
        if execution.detail and not execution.completed:
            notes.append(execution.detail)
        if static.faults:
            notes.extend(f"{fault.description}: {fault.reason}" for fault in static.faults)
        return GradeReport(
            challenge_id=challenge.id,
            case_results=static.results,
            output_matched=output_matched,
            outcome=outcome,
            execution=execution,
            language=language,
            attempts=attempts,
            validator_faults=static.fault_count,
            mismatch=mismatch,
            notes=tuple(notes),
        )

    def _record(self, report: GradeReport, source: str) -> GradeReport:
        LOGGER.info(
            "Graded %s: %s (%d/%d checks, %d attempt(s))",
            report.challenge_id,
            report.outcome.value,
            report.passed_count,
            report.total_count,
            report.attempts,
        )
        if self.provenance is not None:
            payload = report.as_dict()
            payload["source_chars"] = len(source) if isinstance(source, str) else 0
            self.provenance.log(
                ProvenanceEvent(
                    stage="grade",
                    message=f"Graded {report.challenge_id}: {report.outcome.value}",
                    challenge_id=report.challenge_id,
                    payload=payload,
                )
            )
        return report


def _outcome_for(execution: ExecutionResult, checks_passed: bool) -> GradeOutcome:
    if execution.status is ExecutionStatus.TIMED_OUT:
        return GradeOutcome.TIMED_OUT
    if execution.status is ExecutionStatus.RUNTIME_ERROR:
        return GradeOutcome.RUNTIME_ERROR
    return GradeOutcome.PASSED if checks_passed else GradeOutcome.FAILED


__all__ = [
    "GradingOrchestrator",
    "GradingStage",
    "StageListener",
    "StageUpdate",
    "TRANSITIONS",
]
