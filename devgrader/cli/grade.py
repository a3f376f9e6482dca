"""CLI entry point: grade one source file against a challenge."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import TextIO

from apps.grader.models import GradeReport
from apps.grader.registry import ChallengeNotFoundError, ChallengeRegistry
from devgrader.core.validation import ValidationFailure, strict_validation
from devgrader.pipeline import bootstrap_grader

REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG = "config/grader.yaml"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Grade a submission against a challenge from the bank.")
    parser.add_argument("--challenge", default=None, help="Challenge id to grade against.")
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--source",
        default=None,
        help="Path to the submitted source file, or '-' to read it from stdin.",
    )
    source.add_argument(
        "--reference",
        action="store_true",
        help="Grade the challenge's reference solution instead of a submission.",
    )
    parser.add_argument("--language", default=None, help="Language tag (default: the challenge's language).")
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG,
        help=f"Path to the grader YAML (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument(
        "--repo-root",
        default=str(REPO_ROOT),
        help=f"Repository root (default: {REPO_ROOT})",
    )
    parser.add_argument("--bank-dir", default=None, help="Override challenges.bank_dir from the config.")
    parser.add_argument("--max-wait-ms", type=int, default=None, help="Override sandbox.max_wait_ms.")
    parser.add_argument("--retries", type=int, default=None, help="Override retry.max_retries.")
    parser.add_argument("--no-provenance", action="store_true", help="Do not append the grade to the JSONL log.")
    parser.add_argument("--list", action="store_true", help="List challenge ids and exit.")
    parser.add_argument("--json", action="store_true", help="Print the grade report as JSON.")
    parser.add_argument("--quiet", action="store_true", help="Only set the exit status.")
    return parser


def _resolve_path(value: str | Path, *, base: Path | None = None) -> Path:
    candidate = Path(value).expanduser()
    if candidate.is_absolute():
        return candidate.resolve()
    anchor = Path(base).expanduser().resolve() if base is not None else Path.cwd()
    return (anchor / candidate).resolve()


def _read_source(value: str, stdin: TextIO) -> str:
    if value == "-":
        return stdin.read()
    path = _resolve_path(value)
    strict_validation.validate_file_exists(path)
    return path.read_text(encoding="utf-8")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.list:
        if not args.challenge:
            parser.error("--challenge is required unless --list is given")
        if args.source is None and not args.reference:
            parser.error("one of --source or --reference is required")

    try:
        repo_root = _resolve_path(args.repo_root)
        config_path: Path | None = _resolve_path(args.config, base=repo_root)
        if args.config == DEFAULT_CONFIG and not config_path.exists():
            config_path = None
        else:
            strict_validation.validate_file_exists(config_path)
        bank_dir = _resolve_path(args.bank_dir, base=repo_root) if args.bank_dir else None
        ctx = bootstrap_grader(
            config_path=config_path,
            repo_root=repo_root,
            bank_dir_override=bank_dir,
            max_wait_ms=args.max_wait_ms,
            max_retries=args.retries,
            provenance_enabled=False if args.no_provenance else None,
        )
    except (FileNotFoundError, ValidationFailure, ValueError) as exc:
        parser.error(str(exc))

    try:
        if args.list:
            _print_challenges(ctx.registry)
            return 0
        try:
            challenge = ctx.registry.get(args.challenge)
            source = challenge.solution_source if args.reference else _read_source(args.source, sys.stdin)
        except (ChallengeNotFoundError, FileNotFoundError, ValidationFailure) as exc:
            parser.error(str(exc))
        report = ctx.orchestrator.grade(challenge.id, source, args.language)
    finally:
        ctx.close()

    if args.json:
        print(json.dumps(report.as_dict(), indent=2))
    elif not args.quiet:
        _print_report(report)
    return 0 if report.passed else 1


def _print_challenges(registry: ChallengeRegistry) -> None:
    for topic in registry.topics():
        print(f"[{topic.slug}] {topic.label} ({topic.count})")
        for challenge in registry.list_by_topic(topic.slug):
            print(f"  {challenge.id:<24} {challenge.difficulty.value:<6} {challenge.title}")


def _print_report(report: GradeReport) -> None:
    verdict = "PASSED" if report.passed else report.outcome.value.upper()
    print(f"[grade] {report.challenge_id}: {verdict} ({report.passed_count}/{report.total_count} checks)")
    for case in report.case_results:
        mark = "ok" if case.passed else "x "
        print(f"  [{mark}] {case.description}")
    output_mark = "ok" if report.output_matched else "x "
    print(f"  [{output_mark}] Output matches the expected output")
    if report.mismatch is not None:
        print(
            f"        line {report.mismatch.line}: expected {report.mismatch.expected!r}, "
            f"got {report.mismatch.actual!r}"
        )
    execution = report.execution
    if execution is not None:
        print(f"[sandbox] status={execution.status.value} elapsed={execution.elapsed_ms:.0f}ms attempts={report.attempts}")
        if execution.stderr.strip():
            print(f"[sandbox] stderr: {execution.stderr.strip()}")
    for note in report.notes:
        print(f"[note] {note}")


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
