"""Challenge grading: registry, static rules, comparator, and the orchestrator."""

from .comparator import first_mismatch, normalize_output, outputs_match
from .models import (
    CaseResult,
    Challenge,
    Difficulty,
    ExecutionResult,
    ExecutionStatus,
    GradeOutcome,
    GradeReport,
    OutputMismatch,
    Submission,
    TestCase,
)
from .orchestrator import GradingOrchestrator, GradingStage, StageUpdate
from .registry import ChallengeNotFoundError, ChallengeRegistry, DuplicateChallengeError, Topic
from .rules import RuleSpecError, evaluate_rule, register_predicate, rule_from_spec
from .static_validator import StaticRuleValidator, StaticValidation, SubmissionTooLarge, ValidatorFault

__all__ = [
    "CaseResult",
    "Challenge",
    "ChallengeNotFoundError",
    "ChallengeRegistry",
    "Difficulty",
    "DuplicateChallengeError",
    "ExecutionResult",
    "ExecutionStatus",
    "GradeOutcome",
    "GradeReport",
    "GradingOrchestrator",
    "GradingStage",
    "OutputMismatch",
    "RuleSpecError",
    "StageUpdate",
    "StaticRuleValidator",
    "StaticValidation",
    "Submission",
    "SubmissionTooLarge",
    "TestCase",
    "Topic",
    "ValidatorFault",
    "evaluate_rule",
    "first_mismatch",
    "normalize_output",
    "outputs_match",
    "register_predicate",
    "rule_from_spec",
]
