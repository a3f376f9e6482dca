"""Shared context objects for the grading engine."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from apps.grader.orchestrator import GradingOrchestrator
from apps.grader.registry import ChallengeRegistry
from apps.grader.static_validator import StaticRuleValidator
from apps.sandbox.executor import SandboxClient
from devgrader.core.config import GraderConfig
from devgrader.core.provenance import ProvenanceLogger


class GraderPaths(BaseModel):
    """Canonical locations used by a grader process."""

    repo_root: Path
    config_path: Optional[Path] = None
    bank_dir: Path

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("repo_root", "config_path", "bank_dir", mode="before")
    @classmethod
    def _expand(cls, value: Path | str | None) -> Path | None:
        if value is None:
            return None
        return Path(value).expanduser().resolve()


class GraderContext(BaseModel):
    """Everything a caller needs to grade submissions, wired once at startup."""

    config: GraderConfig
    paths: GraderPaths
    registry: ChallengeRegistry
    executor: Any
    sandbox: SandboxClient
    validator: StaticRuleValidator
    orchestrator: GradingOrchestrator
    provenance: Optional[ProvenanceLogger] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def close(self) -> None:
        """Release the executor's HTTP resources, if it holds any."""
        closer = getattr(self.executor, "close", None)
        if callable(closer):
            closer()
