"""
DubStage CLI
============

Command-line interface for inspecting and controlling dubbing jobs.

Commands:
    dubstage status <project_dir>   - Show a project's job and stage progress
    dubstage list                   - List all jobs
    dubstage reset <project_dir>    - Rewind a project's job to pending
    dubstage history <project_dir>  - Show the job's event timeline
    dubstage watch [project_dir]    - Follow live engine events
"""

import asyncio
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from dubstage import __version__
from dubstage.config import load_config
from dubstage.log import setup_logging
from dubstage.stages import STAGE_LABELS, STAGE_ORDER, Stage, StageStatus

console = Console()


def _open_database(config: dict):
    from dubstage.state.database import create_database
    return create_database(config)


@click.group()
@click.version_option(version=__version__, prog_name="DubStage")
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to config.yaml",
)
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str]):
    """DubStage - Dubbing Job Orchestrator"""
    config = load_config(config_path)
    setup_logging(config, console=console)
    ctx.obj = config


@main.command()
@click.argument("project_dir")
@click.pass_obj
def status(config: dict, project_dir: str):
    """Show the dubbing job for a project."""
    database = _open_database(config)
    job = database.get_job(project_dir)

    if job is None:
        console.print(f"[red]No dubbing job for {project_dir}[/red]")
        return

    overall = sum(s.progress for s in job.stages) / len(job.stages)

    console.print("\n[bold blue]Dubbing Job[/bold blue]\n")

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="dim")
    table.add_column("Value")

    table.add_row("Job ID", job.id)
    table.add_row("Project", job.project_dir)
    table.add_row("Video", job.video_path)
    table.add_row("Subtitles", str(job.subtitle_count))
    table.add_row("Reference", job.reference_mode.value)
    table.add_row("Status", _format_status(job.status))
    table.add_row("Progress", f"{overall:.1f}%")
    table.add_row("Current Stage", job.current_stage.value if job.current_stage else "N/A")
    if job.error:
        table.add_row("Last Error", f"[red]{job.error}[/red]")

    console.print(table)
    console.print()

    console.print("[bold]Stage Progress[/bold]")
    for state in job.stages:
        icon = _status_icon(state.status)
        line = f"  {icon} {STAGE_LABELS[state.stage]}: {state.status.value} ({state.progress:.0f}%)"
        if state.error:
            line += f" [red]{state.error}[/red]"
        console.print(line)


@main.command("list")
@click.option("--status", "-s", default=None, help="Filter by status")
@click.pass_obj
def list_jobs(config: dict, status: Optional[str]):
    """List all jobs."""
    database = _open_database(config)
    jobs = database.list_jobs(status=status)

    if not jobs:
        console.print("[dim]No jobs found[/dim]")
        return

    table = Table(title="Jobs")
    table.add_column("Job ID")
    table.add_column("Project")
    table.add_column("Status")
    table.add_column("Stage")
    table.add_column("Progress")

    for job in jobs:
        overall = sum(s.progress for s in job.stages) / len(job.stages)
        table.add_row(
            job.id[:12],
            Path(job.project_dir).name[:30],
            _format_status(job.status),
            job.current_stage.value if job.current_stage else "N/A",
            f"{overall:.1f}%",
        )

    console.print(table)


@main.command()
@click.argument("project_dir")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
def reset(config: dict, project_dir: str, yes: bool):
    """Rewind a project's job so it starts fresh."""
    from dubstage.state.events import EventType, create_event_log

    database = _open_database(config)
    job = database.get_job(project_dir)

    if job is None:
        console.print(f"[red]No dubbing job for {project_dir}[/red]")
        return

    if not yes:
        click.confirm(f"Reset all stages of job {job.id}?", abort=True)

    database.reset_job(job.id)
    create_event_log(config).append(EventType.JOB_RESET, job_id=job.id, message="Reset from CLI")
    console.print(f"[green]✓ Job {job.id} reset[/green]")


@main.command()
@click.argument("project_dir")
@click.pass_obj
def history(config: dict, project_dir: str):
    """Show the event timeline of a project's job."""
    from dubstage.state.events import create_event_log

    database = _open_database(config)
    job = database.get_job(project_dir)

    if job is None:
        console.print(f"[red]No dubbing job for {project_dir}[/red]")
        return

    events = create_event_log(config).get_job_timeline(job.id)
    if not events:
        console.print("[dim]No events recorded[/dim]")
        return

    table = Table(title=f"Events for {job.id[:12]}")
    table.add_column("Time")
    table.add_column("Event")
    table.add_column("Stage")
    table.add_column("Details")

    for event in events:
        table.add_row(
            event.timestamp[:19],
            event.event_type,
            event.stage or "",
            event.error or event.message or "",
        )

    console.print(table)


@main.command()
@click.argument("project_dir", required=False)
@click.pass_obj
def watch(config: dict, project_dir: Optional[str]):
    """Follow live progress events from the execution engine."""
    try:
        asyncio.run(_watch(config, project_dir))
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped watching[/dim]")


async def _watch(config: dict, project_dir: Optional[str]) -> None:
    from dubstage.bridge import EventBridge
    from dubstage.engine.redis_events import RedisEventSource
    from dubstage.state.machine import DubbingState

    queue_config = config.get("queues", {})
    source = RedisEventSource(
        redis_url=queue_config.get("redis_url", "redis://localhost:6379/0"),
        channel_prefix=queue_config.get("channel_prefix", "dubbing:"),
    )
    state = DubbingState()
    if project_dir:
        job = await asyncio.to_thread(_open_database(config).get_job, project_dir)
        if job is not None:
            state.adopt(job)

    finished = asyncio.Event()
    last_line = [""]

    def render(s: DubbingState) -> None:
        done, total = s.tts_counts()
        stage_bits = " ".join(
            f"{stage.value}:{_status_icon(s.stage_statuses[stage])}" for stage in STAGE_ORDER
        )
        line = f"{s.overall_percent:5.1f}%  {stage_bits}  tts {done}/{total}  {s.current_message}"
        if line != last_line[0]:
            console.print(line)
            last_line[0] = line
        if s.stage_statuses[Stage.COMPOSE] in (StageStatus.COMPLETED, StageStatus.FAILED):
            finished.set()

    state.subscribe(render)
    bridge = EventBridge(source, state)
    await bridge.start()
    console.print("[dim]Watching dubbing events (Ctrl+C to stop)...[/dim]")
    try:
        await finished.wait()
    finally:
        bridge.stop()
        await source.aclose()


def _format_status(status: StageStatus) -> str:
    """Format status with color"""
    colors = {
        StageStatus.PENDING: "white",
        StageStatus.RUNNING: "yellow",
        StageStatus.COMPLETED: "green",
        StageStatus.FAILED: "red",
    }
    color = colors.get(status, "white")
    return f"[{color}]{status.value}[/{color}]"


def _status_icon(status: StageStatus) -> str:
    icons = {
        StageStatus.PENDING: "○",
        StageStatus.RUNNING: "◑",
        StageStatus.COMPLETED: "●",
        StageStatus.FAILED: "✗",
    }
    return icons.get(status, "○")


if __name__ == "__main__":
    main()
