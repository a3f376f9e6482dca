from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from apps.grader.bank import load_challenge_bank
from apps.portal_backend.main import PortalSettings, app, get_grader, get_settings
from devgrader.pipeline import GraderContext, bootstrap_grader
from tests.mocks.executors import ReferenceExecutor

REPO_ROOT = Path(__file__).resolve().parents[1]
BANK_DIR = REPO_ROOT / "data" / "challenges"


@pytest.fixture()
def grader(tmp_path: Path) -> Iterator[GraderContext]:
    ctx = bootstrap_grader(
        repo_root=tmp_path,
        executor=ReferenceExecutor(load_challenge_bank(BANK_DIR)),
        bank_dir_override=BANK_DIR,
        provenance_enabled=False,
    )
    app.dependency_overrides[get_grader] = lambda: ctx
    try:
        yield ctx
    finally:
        app.dependency_overrides.pop(get_grader, None)


@pytest.fixture()
def client(grader: GraderContext) -> TestClient:
    return TestClient(app)


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "challenges": 19, "topics": 5}


def test_topics(client: TestClient) -> None:
    payload = client.get("/topics").json()
    assert payload[0] == {"slug": "mono-flux", "label": "Mono & Flux", "count": 4}
    assert [topic["slug"] for topic in payload] == ["mono-flux", "operators", "error-handling", "hot-cold", "webclient"]


def test_list_challenges_with_filters(client: TestClient) -> None:
    everything = client.get("/challenges").json()
    assert len(everything) == 19

    by_topic = client.get("/challenges", params={"topic": "Operators"}).json()
    assert [item["id"] for item in by_topic] == ["map-transform", "filter-even-numbers", "flatmap-expand", "zip-combine"]

    easy = client.get("/challenges", params={"topic": "mono-flux", "difficulty": "easy"}).json()
    assert easy
    assert all(item["difficulty"] == "Easy" for item in easy)


def test_list_rejects_unknown_difficulty(client: TestClient) -> None:
    response = client.get("/challenges", params={"difficulty": "impossible"})
    assert response.status_code == 400


def test_challenge_detail_hides_solution(client: TestClient, grader: GraderContext) -> None:
    response = client.get("/challenges/flux-range-sum")
    assert response.status_code == 200
    payload = response.json()
    assert payload["expected_output"] == "55"
    assert payload["test_cases"][0] == "Uses Flux.range()"
    assert payload["test_count"] == 4
    assert "solution_source" not in payload
    assert grader.registry.get("flux-range-sum").solution_source not in response.text


def test_unknown_challenge_is_404(client: TestClient) -> None:
    assert client.get("/challenges/nope").status_code == 404
    assert client.post("/challenges/nope/grade", json={"source": "fun main() {}"}).status_code == 404


def test_grade_reference_solution(client: TestClient, grader: GraderContext) -> None:
    solution = grader.registry.get("on-error-return").solution_source
    response = client.post("/challenges/on-error-return/grade", json={"source": solution})

    assert response.status_code == 200
    payload = response.json()
    assert payload["passed"] is True
    assert payload["outcome"] == "passed"
    assert payload["execution"]["status"] == "completed"
    assert payload["passed_count"] == payload["total_count"]


def test_grade_starter_source_fails(client: TestClient, grader: GraderContext) -> None:
    starter = grader.registry.get("on-error-return").starter_source
    payload = client.post("/challenges/on-error-return/grade", json={"source": starter}).json()

    assert payload["passed"] is False
    assert payload["outcome"] == "failed"
    assert payload["output_matched"] is False
    assert payload["mismatch"]["line"] == 1


def test_grade_requires_source(client: TestClient) -> None:
    assert client.post("/challenges/flux-range-sum/grade", json={}).status_code == 422


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PORTAL_REPO_ROOT", str(tmp_path))
    monkeypatch.setenv("PORTAL_MAX_WAIT_MS", "2500")
    monkeypatch.delenv("PORTAL_GRADER_CONFIG", raising=False)
    get_settings.cache_clear()
    try:
        settings = get_settings()
    finally:
        get_settings.cache_clear()
    assert settings == PortalSettings(repo_root=tmp_path.resolve(), config_path=None, max_wait_ms=2500)
