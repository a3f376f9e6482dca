from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest
import yaml

from apps.sandbox.executor import RawExecution
from apps.sandbox.piston import PistonExecutor
from devgrader.core.config import GraderConfigError
from devgrader.pipeline import bootstrap_grader
from tests.mocks.executors import ScriptedExecutor

REPO_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # bootstrap loads .env into os.environ; setenv first so monkeypatch
    # restores PISTON_API_KEY afterwards.
    monkeypatch.setenv("PISTON_API_KEY", "")
    monkeypatch.delenv("PISTON_API_KEY")


def _make_repo(tmp_path: Path, *, with_config: bool = True) -> Path:
    repo = tmp_path / "repo"
    bank = repo / "data" / "challenges"
    bank.mkdir(parents=True)
    shutil.copy(REPO_ROOT / "data" / "challenges" / "01-mono-flux.yaml", bank / "01-mono-flux.yaml")
    if with_config:
        config_dir = repo / "config"
        config_dir.mkdir()
        config = yaml.safe_load((REPO_ROOT / "config" / "grader.yaml").read_text(encoding="utf-8"))
        (config_dir / "grader.yaml").write_text(yaml.safe_dump(config), encoding="utf-8")
    return repo


def test_bootstrap_with_default_config(tmp_path: Path) -> None:
    repo = _make_repo(tmp_path)
    executor = ScriptedExecutor([RawExecution(stdout="Hello Reactor\n")])
    ctx = bootstrap_grader(repo_root=repo, executor=executor)

    assert ctx.paths.repo_root == repo.resolve()
    assert ctx.paths.config_path == (repo / "config" / "grader.yaml").resolve()
    assert ctx.paths.bank_dir == (repo / "data" / "challenges").resolve()
    assert len(ctx.registry) == 4
    assert ctx.executor is executor
    assert ctx.orchestrator.max_wait_ms == 15000
    assert ctx.orchestrator.retry.max_retries == 2
    assert ctx.validator.predicate_timeout_ms == 50

    challenge = ctx.registry.get("mono-just-hello")
    report = ctx.orchestrator.grade(challenge.id, challenge.solution_source)
    assert report.passed

    events = ctx.provenance.read()
    assert [event.stage for event in events] == ["bootstrap", "grade"]
    assert events[0].payload["challenges"] == 4
    assert events[0].payload["executor"] == "ScriptedExecutor"
    assert ctx.config.provenance.path == (repo / "outputs" / "logs" / "grading.jsonl").resolve()


def test_bootstrap_without_config_uses_defaults(tmp_path: Path) -> None:
    repo = _make_repo(tmp_path, with_config=False)
    ctx = bootstrap_grader(
        repo_root=repo,
        executor=ScriptedExecutor([RawExecution()]),
        provenance_enabled=False,
    )
    assert ctx.paths.config_path is None
    assert len(ctx.registry) == 4
    assert ctx.provenance is None
    assert ctx.orchestrator.default_language == "kotlin"


def test_bootstrap_leaves_repo_root_out_of_the_environment(tmp_path: Path) -> None:
    repo = _make_repo(tmp_path, with_config=False)
    before = dict(os.environ)
    bootstrap_grader(repo_root=repo, executor=ScriptedExecutor([RawExecution()]), provenance_enabled=False)
    assert dict(os.environ) == before


def test_missing_explicit_config_raises(tmp_path: Path) -> None:
    repo = _make_repo(tmp_path)
    with pytest.raises(GraderConfigError):
        bootstrap_grader(Path("config/missing.yaml"), repo_root=repo, executor=ScriptedExecutor([RawExecution()]))


def test_overrides_apply_on_top_of_config(tmp_path: Path) -> None:
    repo = _make_repo(tmp_path)
    other_bank = tmp_path / "other-bank"
    other_bank.mkdir()
    shutil.copy(REPO_ROOT / "data" / "challenges" / "02-operators.yaml", other_bank / "ops.yaml")

    ctx = bootstrap_grader(
        repo_root=repo,
        executor=ScriptedExecutor([RawExecution()]),
        bank_dir_override=other_bank,
        max_wait_ms=2500,
        max_retries=0,
        provenance_enabled=False,
    )
    assert ctx.paths.bank_dir == other_bank.resolve()
    assert [topic.slug for topic in ctx.registry.topics()] == ["operators"]
    assert ctx.orchestrator.max_wait_ms == 2500
    assert ctx.orchestrator.retry.max_retries == 0
    assert ctx.provenance is None


def test_invalid_override_raises(tmp_path: Path) -> None:
    repo = _make_repo(tmp_path)
    with pytest.raises(GraderConfigError):
        bootstrap_grader(repo_root=repo, executor=ScriptedExecutor([RawExecution()]), max_retries=99)


def test_default_executor_is_piston_with_env_key(tmp_path: Path) -> None:
    repo = _make_repo(tmp_path)
    (repo / ".env").write_text("PISTON_API_KEY=from-dotenv\n", encoding="utf-8")

    ctx = bootstrap_grader(repo_root=repo, provenance_enabled=False)
    try:
        assert isinstance(ctx.executor, PistonExecutor)
        assert ctx.executor.config.api_key == "from-dotenv"
        assert ctx.executor.config.base_url == "https://emkc.org/api/v2/piston"
    finally:
        ctx.close()
