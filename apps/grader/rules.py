"""Structural rules evaluated against raw submission text.

Each test case carries one ``Rule``. Rules are small immutable variants
(``ContainsToken``, ``MatchesPattern``, ``AllOf``, ``AnyOf``, ``Not``,
``Custom``) interpreted by :func:`evaluate_rule`. They never perform I/O and
never depend on state outside the source text they are given.

Challenge files declare rules as one-key mappings::

    rule: {pattern: 'Flux\\s*\\.\\s*range\\s*\\('}
    rule: {contains: ".subscribe"}
    rule: {all: [{pattern: Kotlin}, {pattern: Spring}]}
    rule: {not: {contains: "TODO"}}
    rule: {custom: has_kotlin_main}
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, Mapping, Tuple, Union

Predicate = Callable[[str], bool]


class RuleSpecError(ValueError):
    """Raised when a rule declaration cannot be turned into a Rule."""


@dataclass(frozen=True, slots=True)
class ContainsToken:
    token: str
    ignore_case: bool = False

    def __post_init__(self) -> None:
        if not self.token:
            raise RuleSpecError("contains rule needs a non-empty token")

    def describe(self) -> str:
        suffix = " (ignore case)" if self.ignore_case else ""
        return f"contains {self.token!r}{suffix}"


@dataclass(frozen=True, slots=True)
class MatchesPattern:
    pattern: str
    ignore_case: bool = False
    multiline: bool = False

    def __post_init__(self) -> None:
        if not self.pattern:
            raise RuleSpecError("pattern rule needs a non-empty regex")
        try:
            _compile(self.pattern, self.flags)
        except re.error as exc:
            raise RuleSpecError(f"Invalid pattern {self.pattern!r}: {exc}") from exc

    @property
    def flags(self) -> int:
        flags = 0
        if self.ignore_case:
            flags |= re.IGNORECASE
        if self.multiline:
            flags |= re.MULTILINE
        return flags

    def describe(self) -> str:
        return f"matches /{self.pattern}/"


@dataclass(frozen=True, slots=True)
class AllOf:
    rules: Tuple["Rule", ...]

    def describe(self) -> str:
        return "all of [" + ", ".join(rule.describe() for rule in self.rules) + "]"


@dataclass(frozen=True, slots=True)
class AnyOf:
    rules: Tuple["Rule", ...]

    def describe(self) -> str:
        return "any of [" + ", ".join(rule.describe() for rule in self.rules) + "]"


@dataclass(frozen=True, slots=True)
class Not:
    rule: "Rule"

    def describe(self) -> str:
        return f"not ({self.rule.describe()})"


@dataclass(frozen=True, slots=True)
class Custom:
    name: str
    predicate: Predicate

    def describe(self) -> str:
        return f"custom {self.name}"


Rule = Union[ContainsToken, MatchesPattern, AllOf, AnyOf, Not, Custom]


@lru_cache(maxsize=1024)
def _compile(pattern: str, flags: int) -> "re.Pattern[str]":
    return re.compile(pattern, flags)


def evaluate_rule(rule: Rule, source: str) -> bool:
    """Interpret ``rule`` against ``source``. Empty or non-string input is treated as ``""``."""

    text = source if isinstance(source, str) else ""
    if isinstance(rule, ContainsToken):
        if rule.ignore_case:
            return rule.token.lower() in text.lower()
        return rule.token in text
    if isinstance(rule, MatchesPattern):
        return _compile(rule.pattern, rule.flags).search(text) is not None
    if isinstance(rule, AllOf):
        return all(evaluate_rule(child, text) for child in rule.rules)
    if isinstance(rule, AnyOf):
        return any(evaluate_rule(child, text) for child in rule.rules)
    if isinstance(rule, Not):
        return not evaluate_rule(rule.rule, text)
    if isinstance(rule, Custom):
        return bool(rule.predicate(text))
    raise TypeError(f"Unsupported rule type: {type(rule).__name__}")


# ---------------------------------------------------------------------------
# Named custom predicates

_PREDICATES: Dict[str, Predicate] = {}


def register_predicate(name: str) -> Callable[[Predicate], Predicate]:
    """Decorator that makes ``func`` available to challenge files as ``{custom: name}``."""

    key = name.strip()
    if not key:
        raise ValueError("Predicate name must be non-empty")

    def decorator(func: Predicate) -> Predicate:
        if key in _PREDICATES and _PREDICATES[key] is not func:
            raise ValueError(f"Predicate '{key}' is already registered")
        _PREDICATES[key] = func
        return func

    return decorator


def get_predicate(name: str) -> Predicate:
    try:
        return _PREDICATES[name.strip()]
    except KeyError as exc:
        known = ", ".join(sorted(_PREDICATES)) or "none"
        raise RuleSpecError(f"Unknown custom predicate '{name}' (known: {known})") from exc


def registered_predicates() -> Tuple[str, ...]:
    return tuple(sorted(_PREDICATES))


_KOTLIN_MAIN = re.compile(r"fun\s+main\s*\(")


@register_predicate("has_kotlin_main")
def has_kotlin_main(source: str) -> bool:
    return _KOTLIN_MAIN.search(source) is not None


_CLOSERS = {")": "(", "]": "[", "}": "{"}


@register_predicate("balanced_delimiters")
def balanced_delimiters(source: str) -> bool:
    """True when (), [] and {} nest correctly outside double-quoted strings."""

    if not source.strip():
        return False
    stack: list[str] = []
    in_string = False
    escaped = False
    for char in source:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "([{":
            stack.append(char)
        elif char in _CLOSERS:
            if not stack or stack.pop() != _CLOSERS[char]:
                return False
    return not stack and not in_string


# ---------------------------------------------------------------------------
# Declarative specs

_RULE_KEYS = ("contains", "pattern", "all", "any", "not", "custom")


def rule_from_spec(spec: Any) -> Rule:
    """Build a Rule from its YAML/JSON declaration."""

    if isinstance(spec, str):
        return MatchesPattern(spec)
    if not isinstance(spec, Mapping):
        raise RuleSpecError(f"Rule must be a mapping or pattern string, got {type(spec).__name__}")

    keys = [key for key in spec if key in _RULE_KEYS]
    if len(keys) != 1:
        raise RuleSpecError(f"Rule must declare exactly one of {', '.join(_RULE_KEYS)}; got {sorted(spec)}")
    kind = keys[0]
    value = spec[kind]
    ignore_case = bool(spec.get("ignore_case", False))

    if kind == "contains":
        if isinstance(value, Mapping):
            return ContainsToken(str(value.get("token", "")), ignore_case=bool(value.get("ignore_case", ignore_case)))
        return ContainsToken(str(value), ignore_case=ignore_case)
    if kind == "pattern":
        if isinstance(value, Mapping):
            return MatchesPattern(
                str(value.get("regex", "")),
                ignore_case=bool(value.get("ignore_case", ignore_case)),
                multiline=bool(value.get("multiline", False)),
            )
        return MatchesPattern(str(value), ignore_case=ignore_case, multiline=bool(spec.get("multiline", False)))
    if kind in ("all", "any"):
        if not isinstance(value, (list, tuple)) or not value:
            raise RuleSpecError(f"'{kind}' rule needs a non-empty list of rules")
        children = tuple(rule_from_spec(child) for child in value)
        return AllOf(children) if kind == "all" else AnyOf(children)
    if kind == "not":
        return Not(rule_from_spec(value))
    return Custom(str(value), get_predicate(str(value)))


__all__ = [
    "AllOf",
    "AnyOf",
    "ContainsToken",
    "Custom",
    "MatchesPattern",
    "Not",
    "Predicate",
    "Rule",
    "RuleSpecError",
    "evaluate_rule",
    "get_predicate",
    "register_predicate",
    "registered_predicates",
    "rule_from_spec",
]
