"""Bootstrap helpers for the grading engine."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

from apps.grader.bank import load_challenge_bank
from apps.grader.orchestrator import GradingOrchestrator
from apps.grader.static_validator import StaticRuleValidator
from apps.sandbox.executor import CodeExecutor, SandboxClient
from apps.sandbox.piston import PistonConfig, PistonExecutor
from devgrader.core.config import (
    GraderConfig,
    GraderConfigError,
    load_grader_config,
    merge_grader_overrides,
)
from devgrader.core.provenance import ProvenanceEvent, ProvenanceLogger

from .context import GraderContext, GraderPaths

DEFAULT_CONFIG_PATH = Path("config/grader.yaml")
DEFAULT_BANK_DIR = Path("data/challenges")
DEFAULT_PROVENANCE_PATH = Path("outputs/logs/grading.jsonl")
LOGGER = logging.getLogger(__name__)


def bootstrap_grader(
    config_path: Path | None = None,
    *,
    repo_root: Path | None = None,
    executor: CodeExecutor | None = None,
    bank_dir_override: Path | None = None,
    max_wait_ms: int | None = None,
    max_retries: int | None = None,
    provenance_enabled: bool | None = None,
) -> GraderContext:
    """
    Load configuration, environment variables, and the challenge bank, then wire the grader.

    Parameters
    ----------
    config_path:
        Path to the grader YAML. Defaults to ``config/grader.yaml`` under ``repo_root``;
        when that default file is absent the built-in defaults are used.
    repo_root:
        Root of the repository. Defaults to ``Path.cwd()``.
    executor:
        Code executor to use instead of the Piston HTTP client (tests, offline runs).
    bank_dir_override:
        Challenge bank directory that replaces ``challenges.bank_dir``.
    max_wait_ms / max_retries / provenance_enabled:
        Per-process overrides for the matching config fields.
    """

    repo_root = (repo_root or Path.cwd()).resolve()
    load_dotenv(repo_root / ".env")

    config, resolved_config_path = _load_config(config_path, repo_root)
    overrides: Dict[str, Dict[str, Any]] = {
        "sandbox": {"max_wait_ms": max_wait_ms},
        "retry": {"max_retries": max_retries},
        "provenance": {"enabled": provenance_enabled},
    }
    if bank_dir_override is not None:
        overrides["challenges"] = {"bank_dir": str(Path(bank_dir_override).expanduser().resolve())}
    config = merge_grader_overrides(config, overrides)

    paths = GraderPaths(
        repo_root=repo_root,
        config_path=resolved_config_path,
        bank_dir=config.challenges.bank_dir,
    )
    registry = load_challenge_bank(paths.bank_dir, config.challenges.pattern)

    if executor is None:
        executor = PistonExecutor(PistonConfig.from_sandbox_config(config.sandbox))
    sandbox = SandboxClient(executor)
    validator = StaticRuleValidator(
        predicate_timeout_ms=config.validator.predicate_timeout_ms,
        max_source_chars=config.validator.max_source_chars,
    )
    provenance = ProvenanceLogger(config.provenance.path) if config.provenance.enabled else None
    orchestrator = GradingOrchestrator(
        registry,
        sandbox,
        validator=validator,
        retry=config.retry,
        default_language=config.sandbox.default_language,
        max_wait_ms=config.sandbox.max_wait_ms,
        provenance=provenance,
    )

    ctx = GraderContext(
        config=config,
        paths=paths,
        registry=registry,
        executor=executor,
        sandbox=sandbox,
        validator=validator,
        orchestrator=orchestrator,
        provenance=provenance,
    )

    if provenance is not None:
        provenance.log(
            ProvenanceEvent(
                stage="bootstrap",
                message="Grader bootstrapped",
                agent="devgrader.pipeline",
                payload={
                    "config_path": str(resolved_config_path) if resolved_config_path else None,
                    "bank_dir": str(paths.bank_dir),
                    "challenges": len(registry),
                    "executor": type(executor).__name__,
                    "sandbox_api_base": config.sandbox.api_base,
                    "api_key_configured": bool(config.sandbox.api_key),
                },
            )
        )
    LOGGER.info("Grader ready with %d challenges (executor=%s)", len(registry), type(executor).__name__)
    return ctx


def _load_config(config_path: Path | None, repo_root: Path) -> tuple[GraderConfig, Path | None]:
    if config_path is not None:
        resolved = Path(config_path).expanduser()
        if not resolved.is_absolute():
            resolved = repo_root / resolved
        resolved = resolved.resolve()
        if not resolved.exists():
            raise GraderConfigError(f"Grader config {resolved} does not exist")
        return load_grader_config(resolved, base_dir=repo_root), resolved

    default_path = (repo_root / DEFAULT_CONFIG_PATH).resolve()
    if default_path.exists():
        return load_grader_config(default_path, base_dir=repo_root), default_path

    LOGGER.debug("No grader config at %s; using defaults", default_path)
    config = GraderConfig.model_validate(
        {
            "challenges": {"bank_dir": str(repo_root / DEFAULT_BANK_DIR)},
            "provenance": {"path": str(repo_root / DEFAULT_PROVENANCE_PATH)},
        }
    )
    return config, None


__all__ = ["DEFAULT_CONFIG_PATH", "bootstrap_grader"]
