"""CLI interface for ccagent using Typer.

Three loops around a coding agent:
- init:  generate and lock a constitution + PRD from a description
- build: implement PRD stories one at a time with constitutional checks
- check: validate the latest git diff against the constitution
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from ccagent import __version__
from ccagent.agents import get_agent
from ccagent.constitution import load_constitution
from ccagent.errors import CcagentError, IterationsExhausted, PreconditionFailed
from ccagent.initialize import REQUIRED_FILES, Draft, run_init
from ccagent.loop import BuildConfig, run_build
from ccagent.project import DEFAULT_AGENT, DEFAULT_ITERATIONS, PRD_FILENAME, ProjectContext
from ccagent.state.git import GitClient
from ccagent.text import short_text
from ccagent.validator import ConstitutionValidator, Verdict

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = typer.Typer(help="ccagent - Constitutional Coding for AI Agents")
console = Console()

_state = {"verbose": False}

AGENT_HELP = "Agent to use: codex | claude | claude-sdk"


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"ccagent {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show progress logging"),
    version: Optional[bool] = typer.Option(
        None, "--version", callback=_version_callback, is_eager=True, help="Show version"
    ),
):
    """ccagent - Constitutional Coding for AI Agents."""
    _state["verbose"] = verbose
    if verbose:
        logging.getLogger("ccagent").setLevel(logging.INFO)


def _print_draft(draft: Draft, number: int) -> None:
    """Show the L1/L2 review of a draft."""
    console.print(f"\n[bold]Draft {number}: L1 + L2 review[/bold]\n")
    console.print("[cyan]L1 Principles:[/cyan]")
    for idx, principle in enumerate(draft.review.l1_principles, 1):
        console.print(f"  {idx}. {short_text(principle, 200)}", markup=False)
    console.print("\n[cyan]L2 Objectives:[/cyan]")
    for idx, objective in enumerate(draft.review.l2_objectives, 1):
        console.print(f"  {idx}. {short_text(objective, 200)}", markup=False)
    console.print("")


def print_verdict(verdict: Verdict) -> None:
    status = "[green]PASS[/green]" if verdict.passed else "[red]FAIL[/red]"
    console.print(f"{status} ({verdict.source.label})")

    if verdict.reasoning:
        console.print("Reasoning:")
        for idx, reason in enumerate(verdict.reasoning, 1):
            console.print(f"  {idx}. {short_text(reason, 260)}", markup=False)

    if verdict.violations:
        console.print("Violations:")
        for idx, violation in enumerate(verdict.violations, 1):
            reference = violation.reference or "unknown reference"
            explanation = violation.explanation or "no explanation provided"
            console.print(f"  {idx}. {reference}: {short_text(explanation, 260)}", markup=False)

    if verdict.amendment_suggestion:
        console.print(
            f"Amendment suggestion: {short_text(verdict.amendment_suggestion, 260)}",
            markup=False,
        )


@app.command()
def init(
    description: list[str] = typer.Argument(..., help="Project description"),
    agent: str = typer.Option(DEFAULT_AGENT, "--agent", envvar="CCAGENT_AGENT", help=AGENT_HELP),
    yes: bool = typer.Option(False, "--yes", "-y", help="Lock the first draft without steering"),
    force: bool = typer.Option(False, "--force", help="Replace existing constitution/ and prd.json"),
):
    """
    Generate and lock a constitution + PRD from a project description.

    Examples:
        ccagent init "a CLI todo app with sqlite storage"
        ccagent init --agent claude --yes "a REST API for bookmarks"
    """
    try:
        backend = get_agent(agent, verbose=_state["verbose"])
        interactive = not yes and sys.stdin.isatty() and sys.stdout.isatty()
        ask = (lambda question: typer.prompt(question, default="", show_default=False)) if interactive else None

        run_init(
            " ".join(description),
            backend,
            workdir=Path.cwd(),
            auto_lock=yes,
            force=force,
            ask=ask,
            on_draft=_print_draft,
            on_generate=lambda number: console.print(
                f"Generating draft with {backend.name}..."
            ),
        )
    except CcagentError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠️  Interrupted by user[/yellow]")
        raise typer.Exit(130)

    console.print("\n[green]✓[/green] Constitution locked and written to:")
    for path in REQUIRED_FILES + [PRD_FILENAME]:
        console.print(f"  - {path}")


@app.command()
def build(
    agent: str = typer.Option(DEFAULT_AGENT, "--agent", envvar="CCAGENT_AGENT", help=AGENT_HELP),
    iterations: int = typer.Option(
        DEFAULT_ITERATIONS,
        "--iterations",
        "-n",
        min=1,
        envvar="CCAGENT_ITERATIONS",
        help="Maximum loop iterations",
    ),
):
    """
    Implement PRD stories one at a time, committing only validated work.

    Requires a clean git worktree and an initialized project.
    """
    try:
        config = BuildConfig(agent=agent, max_iterations=iterations, workdir=str(Path.cwd()))
        run_build(config, console=console, verbose=_state["verbose"])
    except IterationsExhausted as e:
        console.print(f"[yellow]⏱️  {e}[/yellow]")
        raise typer.Exit(1)
    except CcagentError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠️  Interrupted by user[/yellow]")
        raise typer.Exit(130)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        logger.exception("Unexpected error")
        raise typer.Exit(1)


@app.command()
def check(
    agent: str = typer.Option(DEFAULT_AGENT, "--agent", envvar="CCAGENT_AGENT", help=AGENT_HELP),
):
    """
    Validate the latest git diff against the constitution.

    Exits 0 on PASS and 1 on FAIL.
    """
    try:
        project = ProjectContext()
        git = GitClient(cwd=project.workdir)
        if not git.is_repo():
            raise PreconditionFailed("Current directory is not a git repository")

        constitution_text = load_constitution(project.constitution_dir)
        backend = get_agent(agent, verbose=_state["verbose"])
        verdict = ConstitutionValidator(backend, git, constitution_text).validate()
    except CcagentError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠️  Interrupted by user[/yellow]")
        raise typer.Exit(130)

    print_verdict(verdict)
    raise typer.Exit(0 if verdict.passed else 1)


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
