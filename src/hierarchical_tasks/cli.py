"""Command-line interface for hierarchical tasks."""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="hierarchical-tasks",
    help="Hierarchical Tasks - capacity-limited parallel task execution",
    add_completion=False,
)

console = Console()


@app.callback()
def configure_logging():
    """Configure logging from TASKS_LOG_LEVEL."""
    from hierarchical_tasks.config import AppConfig

    config = AppConfig()
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


@app.command()
def version():
    """Show version information."""
    from hierarchical_tasks import __version__

    console.print(Panel.fit(
        f"[bold blue]Hierarchical Tasks[/bold blue]\n"
        f"Version: [green]{__version__}[/green]",
        title="Version Info"
    ))


def parse_params(pairs: List[str]) -> Dict[str, str]:
    """Parse key=value command-line pairs."""
    params = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got {pair!r}")
        params[key] = value
    return params


@app.command()
def identity(
    topic: str = typer.Argument(..., help="Topic the work is about"),
    params: Optional[List[str]] = typer.Argument(None, help="Configuration as key=value pairs")
):
    """Print the deterministic identity for a topic and its parameters."""
    from registry import IdentityError, make_identity

    try:
        value = make_identity(topic, parse_params(params or []))
    except IdentityError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(code=1)
    console.print(value)


async def run_demo(
    global_units: int,
    local_units: int,
    tasks_per_pool: int,
    fail_task: Optional[int]
) -> Tuple[List[Tuple[str, object]], int]:
    """
    Run two task pools under one global ceiling.

    Returns the (pool, envelope) pairs in the order they were emitted and the
    peak number of tasks that ran at the same time across both pools.
    """
    from capacity import CapacitySource
    from task_pool import ListTaskSource, PoolTask, TaskPoolRunner

    global_capacity = CapacitySource(global_units, name="global")
    running = 0
    peak = 0

    def make_task(pool: str, index: int) -> PoolTask:
        async def work():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            try:
                await asyncio.sleep(0.01 * (index % 3 + 1))
                if fail_task is not None and index == fail_task and pool == "pool-a":
                    raise RuntimeError(f"task {index} failed")
                return f"{pool} result {index}"
            finally:
                running -= 1

        return PoolTask(key=f"{pool}:{index}", runner=work)

    emitted: List[Tuple[str, object]] = []

    async def consume(pool: str):
        local = CapacitySource(local_units, parent=global_capacity, name=pool)
        source = ListTaskSource([make_task(pool, i) for i in range(tasks_per_pool)])
        async for envelope in TaskPoolRunner(pool, source, local).run_tasks():
            emitted.append((pool, envelope))

    await asyncio.gather(consume("pool-a"), consume("pool-b"))
    return emitted, peak


@app.command()
def demo(
    global_units: int = typer.Option(3, "--global-units", "-g", min=1, help="Global concurrency ceiling"),
    local_units: Optional[int] = typer.Option(
        None,
        "--local-units",
        "-l",
        min=1,
        help="Per-pool ceiling (defaults to TASKS_DEFAULT_LOCAL_UNITS)"
    ),
    tasks_per_pool: int = typer.Option(5, "--tasks", "-n", min=0, help="Tasks per pool"),
    fail_task: Optional[int] = typer.Option(None, "--fail", help="Index of a pool-a task that fails")
):
    """Run two pools under a shared global ceiling and show their envelopes."""
    from hierarchical_tasks.config import CapacityConfig
    from models import EnvelopeKind

    if local_units is None:
        local_units = CapacityConfig().default_local_units

    emitted, peak = asyncio.run(run_demo(global_units, local_units, tasks_per_pool, fail_task))

    table = Table(title="Progress envelopes (completion order)")
    table.add_column("Pool", style="cyan")
    table.add_column("Task")
    table.add_column("Kind")
    table.add_column("Outcome")
    for pool, envelope in emitted:
        if envelope.kind is EnvelopeKind.ERROR:
            table.add_row(pool, envelope.task_id, "[red]error[/red]", envelope.error_detail)
        else:
            table.add_row(pool, envelope.task_id, f"[green]{envelope.kind.value}[/green]", str(envelope.value))
    console.print(table)
    console.print(
        f"Peak concurrency: [bold]{peak}[/bold] "
        f"(global ceiling {global_units}, local ceiling {local_units} per pool)"
    )


@app.command()
def check_store():
    """Check the configured identity store (TASKS_STORE_*)."""
    from database import close_database_pool, create_identity_store
    from hierarchical_tasks.config import StoreConfig

    config = StoreConfig()
    console.print(f"[yellow]Checking {config.backend} identity store...[/yellow]")

    async def check() -> int:
        try:
            store = await create_identity_store(config)
            return len(await store.keys())
        finally:
            await close_database_pool()

    try:
        count = asyncio.run(check())
    except Exception as e:
        console.print(f"[red]❌ Identity store check failed: {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]✅ Identity store ready with {count} record(s)[/green]")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
