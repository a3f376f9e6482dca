"""Bootstrap utilities for the grading engine."""

from __future__ import annotations

from .bootstrap import bootstrap_grader
from .context import GraderContext, GraderPaths

__all__ = ["GraderContext", "GraderPaths", "bootstrap_grader"]
