"""AutoDraft CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import atexit
import dataclasses
import os
import signal
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from autodraft.observability import close_file_logging, configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

if TYPE_CHECKING:
    from autodraft.observability.run_log import RunLogEntry
    from autodraft.pipeline import ProjectConfig, RunResult

app = typer.Typer(
    name="autodraft",
    help="AutoDraft: staged outline-to-prose drafting of long-form fiction.",
    no_args_is_help=True,
)
console = Console()
log = get_logger(__name__)

# Default directory for projects
DEFAULT_PROJECTS_DIR = Path("projects")

# Global state for logging flags (set by callback, used by commands)
_verbose: int = 0
_log_enabled: bool = False
_projects_dir: Path = DEFAULT_PROJECTS_DIR

DOCTOR_ENV_VARS = (
    "AUTODRAFT_PROVIDER",
    "OLLAMA_HOST",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GOOGLE_API_KEY",
)

_KIND_STYLES = {
    "info": "",
    "warning": "yellow",
    "error": "red",
    "request": "dim",
    "response": "dim",
}


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log: Annotated[
        bool,
        typer.Option(
            "--log",
            help="Enable file logging to {project}/logs/ (debug.jsonl, llm_calls.jsonl).",
        ),
    ] = False,
    projects_dir: Annotated[
        Path,
        typer.Option(
            "--projects-dir",
            "-d",
            help="Base directory for projects (default: ./projects).",
            envvar="AUTODRAFT_PROJECTS_DIR",
        ),
    ] = DEFAULT_PROJECTS_DIR,
) -> None:
    """AutoDraft: staged outline-to-prose drafting of long-form fiction."""
    global _verbose, _log_enabled, _projects_dir
    _verbose = verbose
    _log_enabled = log
    _projects_dir = projects_dir

    # Console logging now; file logging once the project is known
    configure_logging(verbosity=verbose)


def _configure_project_logging(project_path: Path) -> None:
    if _log_enabled:
        configure_logging(verbosity=_verbose, log_to_file=True, project_path=project_path)
        atexit.register(close_file_logging)


def _resolve_project_path(project: Path | None) -> Path:
    """Resolve a project argument to a directory.

    Resolution order:
    1. If project is None, use current directory
    2. If project exists as given, use it
    3. If project is a name (no path separators), look in _projects_dir
    """
    if project is None:
        return Path()
    if project.exists():
        return project
    if len(project.parts) == 1:
        projects_path = _projects_dir / project
        if projects_path.exists():
            return projects_path
    return project


def _require_project(project_path: Path) -> ProjectConfig:
    """Load project.yaml, exiting with an error if it is missing or invalid."""
    from autodraft.pipeline import ProjectConfigError, load_project_config

    try:
        return load_project_config(project_path)
    except ProjectConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        console.print("Run 'autodraft init <name>' first, or pass --project.")
        raise typer.Exit(1) from None


@app.command()
def version() -> None:
    """Show version information."""
    from autodraft import __version__

    console.print(f"AutoDraft v{__version__}")


@app.command()
def init(
    name: Annotated[str, typer.Argument(help="Project name")],
    idea: Annotated[
        str,
        typer.Option("--idea", "-i", help="Premise of the book; becomes the ROOT node."),
    ] = "",
    path: Annotated[
        Path | None,
        typer.Option(
            "--path",
            "-p",
            help="Parent directory for the project (default: --projects-dir).",
        ),
    ] = None,
    provider: Annotated[
        str | None,
        typer.Option(
            "--provider",
            help="Default LLM provider (e.g., ollama/qwen3:8b, openai/gpt-4o).",
        ),
    ] = None,
) -> None:
    """Initialize a new drafting project.

    Creates a project directory with:
    - project.yaml: Project and run configuration
    - tree.json: Story tree holding a single ROOT node
    """
    from autodraft.graph import new_root, save_nodes
    from autodraft.pipeline import create_default_config, write_project_config

    parent_dir = path if path is not None else _projects_dir
    project_path = parent_dir / name
    if (project_path / "project.yaml").exists():
        console.print(f"[red]Error:[/red] Project already exists at {project_path}")
        raise typer.Exit(1)

    project_path.mkdir(parents=True, exist_ok=True)
    config = create_default_config(name, provider=provider, idea=idea)
    write_project_config(project_path, config)
    save_nodes(project_path / config.tree_file, [new_root(name, summary=idea)])
    log.info("project_created", name=name, path=str(project_path))

    console.print(f"[green]✓[/green] Created project: [bold]{name}[/bold]")
    console.print(f"  Location: {project_path.absolute()}")
    console.print()
    console.print("Next steps:")
    console.print(f"  Edit {project_path / 'project.yaml'} to set counts and target depth")
    console.print(f"  autodraft run --project {project_path}")


def _print_entry(entry: RunLogEntry) -> None:
    if entry.kind in ("request", "response") and _verbose < 2:
        return
    console.print(Text(entry.format(), style=_KIND_STYLES.get(entry.kind, "")))


async def _run_project(
    project_path: Path,
    config: ProjectConfig,
    provider_string: str,
) -> RunResult:
    from autodraft.graph import JsonFileNodeStore, StoryGraph
    from autodraft.observability import LLMLogger, RunLog
    from autodraft.pipeline import DraftOrchestrator
    from autodraft.providers import RequestGate, create_generation_client, parse_provider_string

    run_log = RunLog()
    run_log.subscribe(_print_entry)

    provider_name, _ = parse_provider_string(provider_string)
    client = create_generation_client(provider_string, temperature=config.temperature)

    store = JsonFileNodeStore(project_path / config.tree_file)
    graph = StoryGraph(store, run_log=run_log)

    async with RequestGate(
        client,
        spacing=config.gate.spacing_seconds,
        max_attempts=config.gate.max_attempts,
        backoff_base=config.gate.backoff_base_seconds,
        retry_delay=config.gate.retry_delay_seconds,
        run_log=run_log,
        llm_logger=LLMLogger(project_path, enabled=_log_enabled),
        provider_name=provider_name,
    ) as gate:
        orchestrator = DraftOrchestrator(
            graph, gate, config.run, writing=config.writing, run_log=run_log
        )
        # Ctrl+C stops cooperatively; not available on every platform
        loop = asyncio.get_running_loop()
        handled = True
        try:
            loop.add_signal_handler(signal.SIGINT, orchestrator.stop)
        except (NotImplementedError, RuntimeError):
            handled = False
            log.debug("signal_handler_unavailable")
        try:
            return await orchestrator.run()
        finally:
            if handled:
                loop.remove_signal_handler(signal.SIGINT)


@app.command()
def run(
    project: Annotated[
        Path | None,
        typer.Option(
            "--project",
            "-p",
            help="Project directory. Can be a path or name (looks in --projects-dir).",
        ),
    ] = None,
    provider: Annotated[
        str | None,
        typer.Option("--provider", help="LLM provider override (e.g., openai/gpt-4o)."),
    ] = None,
    depth: Annotated[
        str | None,
        typer.Option("--depth", help="Target depth override: OUTLINE, PLOT, CHAPTER or PROSE."),
    ] = None,
    strategy: Annotated[
        str | None,
        typer.Option("--strategy", help="Generation strategy: linear_batch, spanning, one_pass."),
    ] = None,
) -> None:
    """Draft the project's story tree down to the target depth.

    Safe to re-run: finished steps are skipped. Press Ctrl+C once to stop
    after the current step.
    """
    from autodraft.pipeline import RunConfig, RunStatus
    from autodraft.providers import ProviderError

    project_path = _resolve_project_path(project)
    config = _require_project(project_path)
    _configure_project_logging(project_path)

    overrides = config.run.to_dict()
    if depth:
        overrides["target_depth"] = depth.upper()
    if strategy:
        overrides["strategy"] = strategy
    try:
        run_config = RunConfig.from_dict(
            {
                **overrides,
                "completed_node_ids": list(config.run.completed_node_ids),
                "skip_root_audit": config.run.skip_root_audit,
            }
        )
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    config = dataclasses.replace(config, run=run_config)
    provider_string = provider or config.get_provider()

    console.print(
        f"[dim]Drafting[/dim] [bold]{config.name}[/bold] "
        f"[dim]to {run_config.target_depth} with {provider_string}[/dim]"
    )
    try:
        result = asyncio.run(_run_project(project_path, config, provider_string))
    except ProviderError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    colors = {
        RunStatus.COMPLETED: "green",
        RunStatus.STOPPED: "yellow",
        RunStatus.ERROR: "red",
    }
    color = colors[result.status]
    lines = [
        f"Status: [{color}]{result.status}[/{color}]",
        f"Reached: {result.state}",
        f"Model calls: {result.llm_calls}",
        f"Duration: {result.duration_seconds:.1f}s",
    ]
    lines.extend(f"[red]✗[/red] {err}" for err in result.errors)
    console.print()
    console.print(Panel("\n".join(lines), title="Run summary", border_style=color))

    if result.status == RunStatus.ERROR:
        raise typer.Exit(1)


@app.command()
def status(
    project: Annotated[
        Path | None,
        typer.Option(
            "--project",
            "-p",
            help="Project directory. Can be a path or name (looks in --projects-dir).",
        ),
    ] = None,
) -> None:
    """Show node counts and phase progress for a project."""
    from autodraft.graph import load_nodes
    from autodraft.models import Phase, PhaseState

    project_path = _resolve_project_path(project)
    config = _require_project(project_path)
    tree_path = project_path / config.tree_file
    if not tree_path.exists():
        console.print(f"[red]Error:[/red] No story tree at {tree_path}")
        raise typer.Exit(1)
    try:
        nodes = load_nodes(tree_path)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    counts = Table(title=f"Story Tree: {config.name}")
    counts.add_column("Type", style="cyan")
    counts.add_column("Nodes", justify="right")
    by_type: dict[str, int] = {}
    for node in nodes:
        by_type[str(node.type)] = by_type.get(str(node.type), 0) + 1
    for node_type, count in by_type.items():
        counts.add_row(node_type, str(count))

    phases = Table(title="Phase Progress")
    phases.add_column("Phase", style="cyan")
    phases.add_column("Done", justify="right", style="green")
    phases.add_column("In progress", justify="right", style="yellow")
    for phase in Phase:
        done = sum(1 for n in nodes if n.phase_state(phase) == PhaseState.DONE)
        active = sum(1 for n in nodes if n.phase_state(phase) == PhaseState.IN_PROGRESS)
        if done or active:
            phases.add_row(str(phase), str(done), str(active))

    console.print()
    console.print(counts)
    console.print(phases)
    console.print()


@app.command()
def doctor() -> None:
    """Check provider configuration and Ollama connectivity."""
    console.print("[bold]AutoDraft Doctor[/bold]")
    console.print()

    any_provider = False
    for name in DOCTOR_ENV_VARS:
        value = os.getenv(name)
        if value:
            # Mask secrets
            if "KEY" in name:
                display = f"{value[:7]}...{value[-3:]}" if len(value) > 10 else "(set)"
            else:
                display = value
            console.print(f"  [green]✓[/green] {name}: {display}")
            any_provider = True
        else:
            console.print(f"  [dim]○[/dim] {name}: not configured")

    ok = any_provider
    if os.getenv("OLLAMA_HOST"):
        ok &= asyncio.run(_check_ollama())

    console.print()
    if ok:
        console.print("[green]All checks passed![/green]")
    else:
        console.print("[yellow]Some checks failed or were skipped.[/yellow]")
        raise typer.Exit(1)


async def _check_ollama() -> bool:
    """Check Ollama connectivity and list models."""
    import httpx

    host = os.getenv("OLLAMA_HOST")
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(f"{host}/api/tags")
    except httpx.ConnectError:
        console.print(f"  [red]✗[/red] ollama: Connection refused ({host})")
        return False
    except httpx.TimeoutException:
        console.print(f"  [red]✗[/red] ollama: Connection timeout ({host})")
        return False
    except httpx.RequestError as e:
        console.print(f"  [red]✗[/red] ollama: Request error - {e}")
        return False

    if response.status_code != 200:
        console.print(f"  [red]✗[/red] ollama: HTTP {response.status_code}")
        return False
    try:
        models = [m.get("name", "") for m in response.json().get("models", [])]
    except ValueError:
        console.print("  [red]✗[/red] ollama: Invalid JSON response")
        return False
    if models:
        console.print(f"  [green]✓[/green] ollama: Connected ({', '.join(models[:5])})")
    else:
        console.print("  [yellow]![/yellow] ollama: Connected (no models pulled)")
    return True


if __name__ == "__main__":
    app()
