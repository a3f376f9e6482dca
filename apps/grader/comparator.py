"""Compare captured stdout with a challenge's expected output."""

from __future__ import annotations

from itertools import zip_longest
from typing import Tuple

from .models import OutputMismatch


def normalize_output(text: str | None) -> Tuple[str, ...]:
    """Split output into comparable lines.

    CRLF becomes LF, one trailing newline is dropped, and trailing whitespace
    is trimmed from every line. Leading whitespace and case are kept.
    """

    value = (text or "").replace("\r\n", "\n")
    if value.endswith("\n"):
        value = value[:-1]
    return tuple(line.rstrip() for line in value.split("\n"))


def outputs_match(actual: str | None, expected: str | None) -> bool:
    return normalize_output(actual) == normalize_output(expected)


def first_mismatch(actual: str | None, expected: str | None) -> OutputMismatch | None:
    """Return the first differing normalized line, or ``None`` when the outputs match."""

    for number, (got, want) in enumerate(
        zip_longest(normalize_output(actual), normalize_output(expected)),
        start=1,
    ):
        if got != want:
            return OutputMismatch(line=number, expected=want, actual=got)
    return None


__all__ = ["first_mismatch", "normalize_output", "outputs_match"]
