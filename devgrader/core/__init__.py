"""
Foundational configuration, validation, and logging utilities for devgrader.

The grader apps, the CLI, and the portal backend depend on these modules;
nothing here imports from ``apps``.
"""

from .config import GraderConfig, GraderConfigError, RetryConfig, SandboxConfig, ValidatorConfig, load_grader_config
from .provenance import ProvenanceEvent, ProvenanceLogger
from .validation import DeadlineExceeded, ValidationFailure, call_with_deadline, strict_validation

__all__ = [
    "DeadlineExceeded",
    "GraderConfig",
    "GraderConfigError",
    "ProvenanceEvent",
    "ProvenanceLogger",
    "RetryConfig",
    "SandboxConfig",
    "ValidationFailure",
    "ValidatorConfig",
    "call_with_deadline",
    "load_grader_config",
    "strict_validation",
]
