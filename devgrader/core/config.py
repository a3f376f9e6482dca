"""
Typed configuration helpers for the devgrader grading engine.

The grader apps, the CLI, and the portal backend all read the same YAML file
(``config/grader.yaml`` by default); these models keep that file honest.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

DEFAULT_PISTON_API_BASE = "https://emkc.org/api/v2/piston"


class GraderConfigError(ValueError):
    """Raised when the grader YAML config cannot be parsed or validated."""


class LanguageRuntime(BaseModel):
    """Sandbox runtime selection for one language tag."""

    model_config = ConfigDict(extra="ignore")

    runtime: Optional[str] = Field(default=None, description="Sandbox runtime name; defaults to the language tag.")
    version: str = "*"
    filename: str = Field(..., description="File name the submission is stored under inside the sandbox.")
    wrap_entrypoint: bool = Field(default=False, description="Wrap sources lacking an entrypoint in one.")


def _default_languages() -> Dict[str, LanguageRuntime]:
    return {
        "kotlin": LanguageRuntime(filename="Main.kt", wrap_entrypoint=True),
        "python": LanguageRuntime(filename="main.py"),
        "javascript": LanguageRuntime(filename="main.js"),
    }


class SandboxConfig(BaseModel):
    """Connection info for the remote code execution service."""

    model_config = ConfigDict(extra="ignore")

    provider: Literal["piston"] = "piston"
    api_base: str = Field(default=DEFAULT_PISTON_API_BASE)
    api_key_env: str | None = Field(default="PISTON_API_KEY", description="Env var holding the sandbox API key.")
    default_language: str = "kotlin"
    max_wait_ms: int = Field(default=15000, ge=100, le=120000)
    compile_timeout_ms: int | None = Field(default=10000, ge=100)
    run_timeout_ms: int | None = Field(default=3000, ge=100)
    connect_timeout_s: float = Field(default=5.0, gt=0.0)
    languages: Dict[str, LanguageRuntime] = Field(default_factory=_default_languages)

    @field_validator("api_base", mode="before")
    @classmethod
    def strip_base(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @field_validator("languages", mode="before")
    @classmethod
    def normalize_language_keys(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(key).strip().lower(): payload for key, payload in value.items()}
        return value

    @property
    def api_key(self) -> str | None:
        if not self.api_key_env:
            return None
        token = os.getenv(self.api_key_env)
        return token.strip() if token and token.strip() else None

    def runtime_for(self, language: str) -> LanguageRuntime | None:
        return self.languages.get(language.strip().lower())


class RetryConfig(BaseModel):
    """Per-submission retry budget for transient sandbox transport failures."""

    max_retries: int = Field(default=2, ge=0, le=5)
    backoff_seconds: float = Field(default=0.25, ge=0.0, le=10.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0, le=10.0)

    def delay_for(self, retry_number: int) -> float:
        """Return the sleep before retry ``retry_number`` (1-based)."""
        return self.backoff_seconds * (self.backoff_multiplier ** max(retry_number - 1, 0))


class ValidatorConfig(BaseModel):
    """Bounds applied while evaluating static test-case predicates."""

    predicate_timeout_ms: int = Field(default=50, ge=1, le=5000)
    max_source_chars: int = Field(default=65536, ge=1)


class ChallengeBankConfig(BaseModel):
    """Where the challenge definitions live."""

    bank_dir: Path = Field(default=Path("data/challenges"))
    pattern: str = Field(default="*.yaml")

    @field_validator("bank_dir", mode="before")
    @classmethod
    def coerce_path(cls, value: Any) -> Path:
        return Path(value).expanduser().resolve()


class ProvenanceConfig(BaseModel):
    """JSONL log of grading runs."""

    enabled: bool = True
    path: Path = Field(default=Path("outputs/logs/grading.jsonl"))

    @field_validator("path", mode="before")
    @classmethod
    def coerce_path(cls, value: Any) -> Path:
        return Path(value).expanduser().resolve()


class GraderConfig(BaseModel):
    """Top-level configuration for the grading engine."""

    challenges: ChallengeBankConfig = Field(default_factory=ChallengeBankConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    validator: ValidatorConfig = Field(default_factory=ValidatorConfig)
    provenance: ProvenanceConfig = Field(default_factory=ProvenanceConfig)

    @model_validator(mode="before")
    @classmethod
    def drop_null_sections(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        # An empty YAML section (``retry:``) parses as None; treat it as "use defaults".
        return {key: value for key, value in values.items() if value is not None}

    @model_validator(mode="after")
    def default_language_is_configured(self) -> "GraderConfig":
        if self.sandbox.runtime_for(self.sandbox.default_language) is None:
            raise ValueError(f"sandbox.default_language '{self.sandbox.default_language}' has no runtime entry")
        return self


def read_yaml_file(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return a dictionary."""
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise GraderConfigError(f"Expected mapping at root of {path}, received {type(data)}")
    return data


def _resolve_config_path(value: Any, base_dir: Path) -> str:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (base_dir / path).resolve()
    else:
        path = path.resolve()
    return str(path)


def _absolutize_grader_paths(data: Dict[str, Any], base_dir: Path) -> None:
    challenges = data.get("challenges")
    if isinstance(challenges, dict) and challenges.get("bank_dir"):
        challenges["bank_dir"] = _resolve_config_path(challenges["bank_dir"], base_dir)

    provenance = data.get("provenance")
    if isinstance(provenance, dict) and provenance.get("path"):
        provenance["path"] = _resolve_config_path(provenance["path"], base_dir)


def load_grader_config(path: Path, *, base_dir: Path | None = None) -> GraderConfig:
    """Load the grader config used by the CLI, scripts, and portal backend."""
    path = path.expanduser().resolve()
    try:
        data = read_yaml_file(path)
    except yaml.YAMLError as exc:
        raise GraderConfigError(f"Invalid YAML in grader config {path}") from exc
    _absolutize_grader_paths(data, base_dir=(base_dir or path.parent).resolve())
    try:
        return GraderConfig.model_validate(data)
    except ValidationError as exc:
        raise GraderConfigError(f"Invalid grader config in {path}: {exc}") from exc


def merge_grader_overrides(base: GraderConfig, overrides: Dict[str, Dict[str, Any]]) -> GraderConfig:
    """
    Return a new GraderConfig with per-section overrides applied on top of ``base``.

    Used by the CLI flags (``--max-wait-ms``, ``--retries``) without touching the YAML.
    """
    payload = base.model_dump()
    for section, values in overrides.items():
        if not values:
            continue
        current = payload.get(section) or {}
        current.update({key: value for key, value in values.items() if value is not None})
        payload[section] = current
    try:
        return GraderConfig.model_validate(payload)
    except ValidationError as exc:
        raise GraderConfigError("Invalid overrides for GraderConfig") from exc
