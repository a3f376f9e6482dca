"""
Core package for the devgrader challenge grading engine.

This module stays lightweight so configuration helpers can be imported
without pulling in the grader apps or the sandbox transport.
"""

from importlib import metadata


def get_version() -> str:
    """Return the installed project version."""
    try:
        return metadata.version("devgrader")
    except metadata.PackageNotFoundError:
        return "0.0.0"


__all__ = ["get_version"]
