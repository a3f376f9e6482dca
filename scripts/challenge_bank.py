"""Inspect, lint, and verify the YAML challenge bank."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.append(str(REPO_ROOT))

from apps.grader.bank import lint_challenge_bank, verify_challenge_bank
from apps.grader.models import Difficulty
from apps.grader.registry import ChallengeNotFoundError
from devgrader.core.config import GraderConfigError
from devgrader.pipeline import GraderContext, bootstrap_grader

app = typer.Typer(help="Inspect and check the challenge bank used by the grader.")
console = Console()

RepoRootOption = typer.Option(REPO_ROOT, "--repo-root", help="Repository root.")
ConfigOption = typer.Option(None, "--config", help="Grader YAML (default: <repo-root>/config/grader.yaml).")
BankDirOption = typer.Option(None, "--bank-dir", help="Override challenges.bank_dir from the config.")


def _load_context(
    repo_root: Path,
    config: Optional[Path],
    bank_dir: Optional[Path],
    *,
    provenance: bool = False,
) -> GraderContext:
    try:
        return bootstrap_grader(
            config_path=config,
            repo_root=repo_root,
            bank_dir_override=bank_dir,
            provenance_enabled=provenance,
        )
    except GraderConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2) from exc


@app.command()
def topics(
    repo_root: Path = RepoRootOption,
    config: Optional[Path] = ConfigOption,
    bank_dir: Optional[Path] = BankDirOption,
) -> None:
    """List topics and how many challenges each holds."""
    ctx = _load_context(repo_root, config, bank_dir)
    table = Table(title="Challenge Topics", show_header=True)
    table.add_column("Slug")
    table.add_column("Label")
    table.add_column("Challenges", justify="right")
    for topic in ctx.registry.topics():
        table.add_row(topic.slug, topic.label, str(topic.count))
    console.print(table)


@app.command("list")
def list_challenges(
    topic: Optional[str] = typer.Option(None, "--topic", help="Topic slug or label."),
    difficulty: Optional[str] = typer.Option(None, "--difficulty", help="Easy, Medium or Hard."),
    repo_root: Path = RepoRootOption,
    config: Optional[Path] = ConfigOption,
    bank_dir: Optional[Path] = BankDirOption,
) -> None:
    """List challenges, optionally filtered by topic and difficulty."""
    ctx = _load_context(repo_root, config, bank_dir)
    challenges = ctx.registry.list_by_topic(topic) if topic else tuple(ctx.registry)
    if difficulty:
        try:
            level = Difficulty.parse(difficulty)
        except ValueError as exc:
            raise typer.BadParameter(str(exc), param_hint="--difficulty") from exc
        challenges = tuple(challenge for challenge in challenges if challenge.difficulty is level)

    table = Table(title="Challenges", show_header=True)
    table.add_column("Id")
    table.add_column("Topic")
    table.add_column("Difficulty", justify="center")
    table.add_column("Tests", justify="right")
    table.add_column("Title")
    for challenge in challenges:
        table.add_row(
            challenge.id,
            challenge.topic_slug,
            challenge.difficulty.value,
            str(len(challenge.test_cases)),
            challenge.title,
        )
    console.print(table)
    if not challenges:
        console.print("[yellow]No challenges match the given filters.[/yellow]")


@app.command()
def show(
    challenge_id: str = typer.Argument(..., help="Challenge id."),
    repo_root: Path = RepoRootOption,
    config: Optional[Path] = ConfigOption,
    bank_dir: Optional[Path] = BankDirOption,
) -> None:
    """Print one challenge's description, starter source, and test cases."""
    ctx = _load_context(repo_root, config, bank_dir)
    try:
        challenge = ctx.registry.get(challenge_id)
    except ChallengeNotFoundError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    console.print(f"[bold]{challenge.title}[/bold] ({challenge.id}, {challenge.topic}, {challenge.difficulty.value})")
    console.print(challenge.description)
    console.print("[bold]Starter source[/bold]")
    console.print(challenge.starter_source, markup=False, highlight=False)
    table = Table(title="Test Cases", show_header=True)
    table.add_column("#", justify="right")
    table.add_column("Description")
    for index, case in enumerate(challenge.test_cases, start=1):
        table.add_row(str(index), case.description)
    console.print(table)


@app.command()
def lint(
    repo_root: Path = RepoRootOption,
    config: Optional[Path] = ConfigOption,
    bank_dir: Optional[Path] = BankDirOption,
    fail_on_warning: bool = typer.Option(
        False, "--fail-on-warning", help="Exit non-zero when warnings are present."
    ),
) -> None:
    """Check every challenge without contacting the sandbox."""
    ctx = _load_context(repo_root, config, bank_dir)
    errors, warnings = lint_challenge_bank(ctx.registry, validator=ctx.validator)
    table = Table(title="Challenge Bank Lint", show_header=True)
    table.add_column("Severity", justify="center")
    table.add_column("Message")
    for issue in errors:
        table.add_row("error", issue, style="bold red")
    for issue in warnings:
        table.add_row("warning", issue, style="yellow")
    console.print(table)

    if errors or (fail_on_warning and warnings):
        raise typer.Exit(code=1)

    console.print(f"[green]{len(ctx.registry)} challenges look good![/green]")


@app.command()
def verify(
    challenge: List[str] = typer.Option([], "--challenge", help="Only verify these challenge ids."),
    skip_starters: bool = typer.Option(False, "--skip-starters", help="Only grade reference solutions."),
    repo_root: Path = RepoRootOption,
    config: Optional[Path] = ConfigOption,
    bank_dir: Optional[Path] = BankDirOption,
) -> None:
    """Grade reference solutions (must pass) and starters (must fail) through the sandbox."""
    ctx = _load_context(repo_root, config, bank_dir, provenance=True)
    try:
        checks = verify_challenge_bank(
            ctx.orchestrator,
            challenge_ids=challenge or None,
            include_starters=not skip_starters,
        )
    except ChallengeNotFoundError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        ctx.close()

    table = Table(title="Challenge Bank Verification", show_header=True)
    table.add_column("Challenge")
    table.add_column("Source", justify="center")
    table.add_column("Outcome", justify="center")
    table.add_column("Checks", justify="right")
    table.add_column("Result", justify="center")
    for check in checks:
        report = check.report
        table.add_row(
            check.challenge_id,
            check.kind,
            report.outcome.value,
            f"{report.passed_count}/{report.total_count}",
            "ok" if check.ok else "unexpected",
            style=None if check.ok else "bold red",
        )
    console.print(table)

    failures = [check for check in checks if not check.ok]
    if failures:
        console.print(f"[red]{len(failures)} unexpected result(s).[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]All {len(checks)} checks behaved as expected.[/green]")


if __name__ == "__main__":
    app()
