from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import List

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from apps.grader.models import Challenge, Difficulty
from apps.grader.registry import ChallengeNotFoundError
from devgrader.pipeline import GraderContext, bootstrap_grader

REPO_ROOT = Path(__file__).resolve().parents[2]
LOGGER = logging.getLogger(__name__)


class PortalSettings(BaseModel):
    """Runtime configuration for the grading API."""

    repo_root: Path = Field(default=REPO_ROOT)
    config_path: Path | None = Field(default=None)
    max_wait_ms: int | None = Field(default=None, ge=100, le=120000)


@lru_cache
def get_settings() -> PortalSettings:
    repo_root = os.getenv("PORTAL_REPO_ROOT")
    config_path = os.getenv("PORTAL_GRADER_CONFIG")
    max_wait_ms = os.getenv("PORTAL_MAX_WAIT_MS")
    return PortalSettings(
        repo_root=Path(repo_root).expanduser().resolve() if repo_root else REPO_ROOT,
        config_path=Path(config_path).expanduser().resolve() if config_path else None,
        max_wait_ms=int(max_wait_ms) if max_wait_ms else None,
    )


@lru_cache
def _grader_for(repo_root: Path, config_path: Path | None, max_wait_ms: int | None) -> GraderContext:
    return bootstrap_grader(config_path=config_path, repo_root=repo_root, max_wait_ms=max_wait_ms)


def get_grader(settings: PortalSettings = Depends(get_settings)) -> GraderContext:
    return _grader_for(settings.repo_root, settings.config_path, settings.max_wait_ms)


class HealthResponse(BaseModel):
    status: str
    challenges: int
    topics: int


class TopicItem(BaseModel):
    slug: str
    label: str
    count: int


class ChallengeSummary(BaseModel):
    id: str
    title: str
    topic: str
    topic_slug: str
    difficulty: str
    language: str
    test_count: int


class ChallengeDetail(ChallengeSummary):
    """Learner-facing view of a challenge. Reference solutions are never included."""

    description: str
    starter_source: str
    expected_output: str
    explanation: str = ""
    hints: List[str] = Field(default_factory=list)
    test_cases: List[str] = Field(default_factory=list)


class GradeRequest(BaseModel):
    source: str
    language: str | None = None


class CaseResultItem(BaseModel):
    description: str
    passed: bool


class ExecutionItem(BaseModel):
    status: str
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: float = 0.0
    exit_status: int | None = None
    detail: str | None = None


class MismatchItem(BaseModel):
    line: int
    expected: str | None = None
    actual: str | None = None


class GradeResponse(BaseModel):
    challenge_id: str
    passed: bool
    outcome: str
    all_test_cases: bool
    output_matched: bool
    test_cases: List[CaseResultItem]
    passed_count: int
    total_count: int
    language: str | None = None
    attempts: int = 0
    validator_faults: int = 0
    execution: ExecutionItem | None = None
    mismatch: MismatchItem | None = None
    notes: List[str] = Field(default_factory=list)


app = FastAPI(title="devgrader API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", response_model=HealthResponse)
def health(grader: GraderContext = Depends(get_grader)) -> HealthResponse:
    return HealthResponse(status="ok", challenges=len(grader.registry), topics=len(grader.registry.topics()))


@app.get("/topics", response_model=List[TopicItem])
def list_topics(grader: GraderContext = Depends(get_grader)) -> List[TopicItem]:
    return [TopicItem(slug=topic.slug, label=topic.label, count=topic.count) for topic in grader.registry.topics()]


@app.get("/challenges", response_model=List[ChallengeSummary])
def list_challenges(
    topic: str | None = Query(None, description="Topic slug or label"),
    difficulty: str | None = Query(None, description="Easy, Medium or Hard"),
    grader: GraderContext = Depends(get_grader),
) -> List[ChallengeSummary]:
    challenges = grader.registry.list_by_topic(topic) if topic else tuple(grader.registry)
    if difficulty:
        try:
            level = Difficulty.parse(difficulty)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        challenges = tuple(challenge for challenge in challenges if challenge.difficulty is level)
    return [_summary(challenge) for challenge in challenges]


@app.get("/challenges/{challenge_id}", response_model=ChallengeDetail)
def get_challenge(challenge_id: str, grader: GraderContext = Depends(get_grader)) -> ChallengeDetail:
    challenge = _lookup(grader, challenge_id)
    return ChallengeDetail(
        **_summary(challenge).model_dump(),
        description=challenge.description,
        starter_source=challenge.starter_source,
        expected_output=challenge.expected_output,
        explanation=challenge.explanation,
        hints=list(challenge.hints),
        test_cases=[case.description for case in challenge.test_cases],
    )


@app.post("/challenges/{challenge_id}/grade", response_model=GradeResponse)
def grade_submission(
    challenge_id: str,
    request: GradeRequest,
    grader: GraderContext = Depends(get_grader),
) -> GradeResponse:
    try:
        report = grader.orchestrator.grade(challenge_id, request.source, request.language)
    except ChallengeNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    LOGGER.debug("Portal graded %s: %s", report.challenge_id, report.outcome.value)
    return GradeResponse.model_validate(report.as_dict())


def _lookup(grader: GraderContext, challenge_id: str) -> Challenge:
    try:
        return grader.registry.get(challenge_id)
    except ChallengeNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _summary(challenge: Challenge) -> ChallengeSummary:
    return ChallengeSummary(
        id=challenge.id,
        title=challenge.title,
        topic=challenge.topic,
        topic_slug=challenge.topic_slug,
        difficulty=challenge.difficulty.value,
        language=challenge.language,
        test_count=len(challenge.test_cases),
    )
