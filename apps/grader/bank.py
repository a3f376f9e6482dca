"""Load, lint, and verify the YAML challenge bank."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from devgrader.core.config import GraderConfigError
from devgrader.core.validation import ValidationFailure, strict_validation

from .models import Challenge, Difficulty, GradeOutcome, GradeReport, TestCase
from .orchestrator import GradingOrchestrator
from .registry import ChallengeRegistry, DuplicateChallengeError
from .rules import rule_from_spec
from .static_validator import StaticRuleValidator

LOGGER = logging.getLogger(__name__)


class ChallengeBankError(GraderConfigError):
    """A challenge file is missing, unreadable, or does not describe valid challenges."""


class TestCaseSpec(BaseModel):
    __test__ = False

    model_config = ConfigDict(extra="forbid")

    description: str = Field(..., min_length=1)
    rule: Any

    @field_validator("rule", mode="before")
    @classmethod
    def parse_rule(cls, value: Any) -> Any:
        return rule_from_spec(value)


class ChallengeSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    difficulty: Difficulty
    description: str = ""
    starter: str = ""
    solution: str = Field(..., min_length=1)
    expected_output: str
    explanation: str = ""
    hints: List[str] = Field(default_factory=list)
    language: str | None = None
    test_cases: List[TestCaseSpec] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def strip_id(cls, value: str) -> str:
        value = value.strip()
        if not value or any(char.isspace() for char in value):
            raise ValueError("challenge id must be a non-empty token without whitespace")
        return value

    @field_validator("difficulty", mode="before")
    @classmethod
    def parse_difficulty(cls, value: Any) -> Difficulty:
        return Difficulty.parse(value)


class ChallengeFileSpec(BaseModel):
    """One YAML file: a topic and the challenges it contains."""

    model_config = ConfigDict(extra="forbid")

    topic: str = Field(..., min_length=1)
    topic_slug: str = Field(..., min_length=1)
    language: str = "kotlin"
    challenges: List[ChallengeSpec] = Field(default_factory=list)

    def to_challenges(self) -> List[Challenge]:
        return [
            Challenge(
                id=spec.id,
                title=spec.title.strip(),
                topic=self.topic.strip(),
                topic_slug=self.topic_slug.strip(),
                difficulty=spec.difficulty,
                description=spec.description.strip(),
                starter_source=spec.starter,
                solution_source=spec.solution,
                expected_output=spec.expected_output,
                test_cases=tuple(TestCase(case.description, case.rule) for case in spec.test_cases),
                language=(spec.language or self.language).strip().lower(),
                explanation=spec.explanation.strip(),
                hints=tuple(hint.strip() for hint in spec.hints if hint.strip()),
            )
            for spec in self.challenges
        ]


def load_challenge_file(path: Path) -> List[Challenge]:
    """Parse a single challenge YAML file."""

    try:
        data = strict_validation.validate_yaml_file(path).data
        spec = strict_validation.validate_pydantic_model(data, ChallengeFileSpec).data
    except ValidationFailure as exc:
        raise ChallengeBankError(f"Invalid challenge file {path}: {exc}") from exc
    return spec.to_challenges()


def load_challenge_bank(bank_dir: Path, pattern: str = "*.yaml") -> ChallengeRegistry:
    """Load every challenge file under ``bank_dir`` (sorted by name) into a registry."""

    bank_dir = Path(bank_dir).expanduser().resolve()
    if not bank_dir.is_dir():
        raise ChallengeBankError(f"Challenge bank directory {bank_dir} does not exist")

    files = sorted(bank_dir.glob(pattern))
    if not files:
        raise ChallengeBankError(f"No challenge files matching '{pattern}' in {bank_dir}")

    challenges: List[Challenge] = []
    for path in files:
        loaded = load_challenge_file(path)
        LOGGER.debug("Loaded %d challenge(s) from %s", len(loaded), path)
        challenges.extend(loaded)

    try:
        registry = ChallengeRegistry(challenges)
    except DuplicateChallengeError as exc:
        raise ChallengeBankError(str(exc)) from exc
    LOGGER.info("Loaded %d challenges across %d topic(s) from %s", len(registry), len(registry.topics()), bank_dir)
    return registry


def lint_challenge_bank(
    challenges: Iterable[Challenge],
    *,
    validator: StaticRuleValidator | None = None,
) -> tuple[list[str], list[str]]:
    """Check the bank invariants that need no sandbox.

    Errors: no test cases, empty expected output, a reference solution that
    fails one of its own test cases. Warnings: starter sources that already
    satisfy every test case, missing explanations, repeated test-case
    descriptions.
    """

    validator = validator or StaticRuleValidator()
    errors: list[str] = []
    warnings: list[str] = []

    for challenge in challenges:
        if not challenge.test_cases:
            errors.append(f"Challenge {challenge.id} has no test cases")
        if not challenge.expected_output.strip():
            errors.append(f"Challenge {challenge.id} has an empty expected output")

        solution = validator.validate(challenge.solution_source, challenge.test_cases)
        for result in solution.results:
            if not result.passed:
                errors.append(f"Challenge {challenge.id}: reference solution fails '{result.description}'")

        if challenge.test_cases:
            starter = validator.validate(challenge.starter_source, challenge.test_cases)
            if starter.all_passed:
                warnings.append(f"Challenge {challenge.id}: starter source already satisfies every test case")

        if not challenge.explanation:
            warnings.append(f"Challenge {challenge.id} has no explanation")

        descriptions = [case.description for case in challenge.test_cases]
        repeated = sorted({item for item in descriptions if descriptions.count(item) > 1})
        if repeated:
            warnings.append(f"Challenge {challenge.id} repeats test case descriptions: {', '.join(repeated)}")

    return errors, warnings


@dataclass(frozen=True, slots=True)
class BankCheck:
    """Result of grading one reference or starter source end to end."""

    challenge_id: str
    kind: str
    expected_pass: bool
    report: GradeReport

    @property
    def ok(self) -> bool:
        if self.report.outcome is GradeOutcome.INFRASTRUCTURE_ERROR:
            return False
        return self.report.passed is self.expected_pass


def verify_challenge_bank(
    orchestrator: GradingOrchestrator,
    *,
    challenge_ids: Sequence[str] | None = None,
    include_starters: bool = True,
) -> List[BankCheck]:
    """Grade every reference solution (must pass) and starter source (must fail)."""

    registry = orchestrator.registry
    ids: Tuple[str, ...] = tuple(challenge_ids) if challenge_ids else registry.ids()
    checks: List[BankCheck] = []
    for challenge_id in ids:
        challenge = registry.get(challenge_id)
        checks.append(
            BankCheck(
                challenge_id=challenge.id,
                kind="solution",
                expected_pass=True,
                report=orchestrator.grade(challenge.id, challenge.solution_source),
            )
        )
        if include_starters:
            checks.append(
                BankCheck(
                    challenge_id=challenge.id,
                    kind="starter",
                    expected_pass=False,
                    report=orchestrator.grade(challenge.id, challenge.starter_source),
                )
            )
    failing = [check for check in checks if not check.ok]
    if failing:
        LOGGER.warning("Challenge bank verification found %d unexpected result(s)", len(failing))
    return checks


__all__ = [
    "BankCheck",
    "ChallengeBankError",
    "ChallengeFileSpec",
    "ChallengeSpec",
    "TestCaseSpec",
    "lint_challenge_bank",
    "load_challenge_bank",
    "load_challenge_file",
    "verify_challenge_bank",
]
