"""
CLI interface for the failover cluster rolling-restart coordinator.
"""

import json
import sys
from datetime import datetime, timezone
from io import StringIO
from pathlib import Path
from typing import Optional

import click
import yaml
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .cluster import ClusterCommandError
from .config import CoordinatorConfig, create_sample_config as create_sample_coordinator_config, load_config
from .context import CoordinatorContext
from .lifecycle import LifecycleError, default_program_path
from .maintenance_windows import MaintenanceWindowChecker, create_sample_config
from .models import ClusteredTaskInfo, ClusterRestartState, NodeRestartState, TickOutcome
from .state_store import StateStoreError

console = Console()

STATE_STYLES = {
    NodeRestartState.EMPTY: "dim",
    NodeRestartState.PAUSED: "yellow",
    NodeRestartState.RESTARTED: "yellow",
    NodeRestartState.RESUMED: "cyan",
    NodeRestartState.COMPLETE: "green",
    NodeRestartState.RESTART_FAILED: "bold red",
}


def setup_logging(log_level: str, log_file: Optional[str] = None) -> str:
    """
    Set up logging configuration.

    Args:
        log_level: Log level to use
        log_file: Optional file that receives a copy of every log line

    Returns:
        The log level that was set
    """
    logger.remove()  # Remove default handler

    if log_level == "DEBUG":
        format_string = (
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
        )
    else:
        format_string = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"

    logger.add(
        sys.stderr,
        level=log_level,
        format=format_string,
        backtrace=log_level == "DEBUG",  # Only show tracebacks in DEBUG mode
        diagnose=log_level == "DEBUG",  # Only show variables in DEBUG mode
    )

    if log_file:
        # Scheduled task runs have no console; this file is the transcript
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {process} | {message}",
            rotation="10 MB",
            retention=10,
            backtrace=False,
            diagnose=False,
        )

    return log_level


def generate_status_report(
    task: ClusteredTaskInfo,
    state: Optional[ClusterRestartState],
    error: Optional[str],
    output_format: str = "text",
) -> str:
    """
    Generate a report of the task and per-node restart state.

    Args:
        task: The clustered task
        state: Parsed restart state, None if it could not be read
        error: Why the state could not be read
        output_format: Output format (text, json, yaml)

    Returns:
        Report string
    """
    current = state.current_node() if state else None
    report_data = {
        "task": {
            "name": task.task_name,
            "enabled": task.enabled,
            "start_boundary": task.start_boundary.isoformat() if task.start_boundary else None,
        },
        "complete": state.is_complete() if state else False,
        "current_node": current.name if current else None,
        "nodes": [{"name": n.name, "state": n.state.label} for n in state.nodes] if state else [],
        "error": error,
    }

    if output_format == "json":
        return json.dumps(report_data, indent=2)

    if output_format == "yaml":
        return yaml.dump(report_data, default_flow_style=False, sort_keys=False)

    summary_table = Table(title="Rolling Restart", show_header=True, header_style="bold magenta")
    summary_table.add_column("Attribute", style="cyan")
    summary_table.add_column("Value", style="green")
    summary_table.add_row("Task", task.task_name)
    summary_table.add_row("Enabled", "[green]Yes[/green]" if task.enabled else "[yellow]No (suspended)[/yellow]")
    summary_table.add_row(
        "Started", task.start_boundary.strftime("%Y-%m-%d %H:%M:%S UTC") if task.start_boundary else "N/A"
    )
    if state is None:
        summary_table.add_row("State", f"[red]{error}[/red]")
    elif state.is_complete():
        summary_table.add_row("State", "[green]All cluster nodes have restarted[/green]")
    else:
        summary_table.add_row("Current Node", f"{current.name} ({current.state.label})")

    temp_console = Console(file=StringIO(), width=120)
    temp_console.print(summary_table)

    if state is not None:
        nodes_table = Table(title="Node States", show_header=True, header_style="bold magenta")
        nodes_table.add_column("#", style="dim")
        nodes_table.add_column("Node", style="cyan")
        nodes_table.add_column("State")
        for i, node in enumerate(state.nodes, start=1):
            style = STATE_STYLES[node.state]
            marker = " ◀" if current is not None and node.name == current.name else ""
            nodes_table.add_row(str(i), node.name, f"[{style}]{node.state.label}[/{style}]{marker}")
        temp_console.print("\n")
        temp_console.print(nodes_table)

    return temp_console.file.getvalue()


def _context(ctx: click.Context) -> CoordinatorContext:
    """Build the coordinator context from the group options."""
    config: CoordinatorConfig = ctx.obj["config"]
    try:
        return CoordinatorContext(config)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)


def _fail(message: str) -> None:
    console.print(f"[red]{escape(message)}[/red]")
    sys.exit(1)


@click.group()
@click.option(
    "--config",
    "config_path",
    help="Path to the coordinator configuration file (TOML)",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    envvar="CRR_CONFIG",
)
@click.option(
    "--task-name",
    help="Name of the clustered scheduled task",
    default=None,
    envvar="CRR_TASK_NAME",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Log level",
    envvar="CRR_LOG_LEVEL",
)
@click.option(
    "--log-file",
    help="Append log output to this file",
    default=None,
    type=click.Path(dir_okay=False),
    envvar="CRR_LOG_FILE",
)
@click.pass_context
def cli(ctx, config_path, task_name, log_level, log_file):
    """Rolling restart of Windows failover cluster nodes, one node at a time."""
    try:
        config = load_config(config_path).with_overrides(
            task_name=task_name,
            log_level=log_level.upper() if log_level else None,
            log_file=log_file,
        )
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading configuration: {escape(str(e))}[/red]")
        sys.exit(1)

    setup_logging(config.log_level, config.log_file)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@click.option(
    "--path",
    help="Program the clustered task runs on every node (defaults to this program)",
    default=None,
)
@click.option(
    "--suspended",
    is_flag=True,
    help="Register the task disabled; enable it later with 'resume'",
)
@click.pass_context
def start(ctx, path, suspended):
    """Validate the cluster and register the rolling-restart task.

    Examples:
      crr start                                   # Start the cycle immediately
      crr --config C:\\crr\\crr.toml start --suspended   # Register, enable later
    """
    context = _context(ctx)
    program = path or default_program_path()
    try:
        state = context.lifecycle().start(program, suspended=suspended)
    except (LifecycleError, StateStoreError, ClusterCommandError) as e:
        _fail(f"Error starting rolling restart: {e}")

    console.print(f"[green]Rolling restart registered for {len(state.nodes)} node(s).[/green]")
    if suspended:
        console.print("[yellow]Task is suspended. Run 'crr resume' to begin.[/yellow]")


@cli.command()
@click.option(
    "--dry-run",
    is_flag=True,
    help="Only log what would be done without acting or persisting",
)
@click.pass_context
def invoke(ctx, dry_run):
    """Run one tick of the state machine (called by the clustered task)."""
    context = _context(ctx)
    result = context.coordinator(dry_run=dry_run).tick()
    logger.debug(f"[CLI] Tick result: {result.model_dump_json()}")
    sys.exit(1 if result.outcome == TickOutcome.FAILED else 0)


@cli.command()
@click.option(
    "--keep-completed",
    is_flag=True,
    help="Keep nodes that already completed instead of restarting them again",
)
@click.pass_context
def restart(ctx, keep_completed):
    """Reset the restart cycle, e.g. after fixing a node stuck in RestartFailed."""
    context = _context(ctx)
    try:
        state = context.lifecycle().restart(keep_completed=keep_completed)
    except (StateStoreError, ClusterCommandError) as e:
        _fail(f"Error resetting restart state: {e}")

    console.print(f"[green]Restart state reset: {state.to_json()}[/green]")


@cli.command()
@click.pass_context
def resume(ctx):
    """Re-enable a suspended rolling-restart task."""
    context = _context(ctx)
    try:
        context.lifecycle().resume()
    except (StateStoreError, ClusterCommandError) as e:
        _fail(f"Error resuming task: {e}")
    console.print("[green]Rolling restart resumed.[/green]")


@cli.command()
@click.pass_context
def suspend(ctx):
    """Disable the rolling-restart task; nodes mid-cycle are not rolled back."""
    context = _context(ctx)
    try:
        context.lifecycle().pause()
    except (StateStoreError, ClusterCommandError) as e:
        _fail(f"Error suspending task: {e}")
    console.print("[yellow]Rolling restart suspended.[/yellow]")


@cli.command()
@click.pass_context
def stop(ctx):
    """Unregister the rolling-restart task."""
    context = _context(ctx)
    try:
        context.lifecycle().stop()
    except (StateStoreError, ClusterCommandError) as e:
        _fail(f"Error stopping task: {e}")
    console.print("[green]Rolling restart task removed.[/green]")


@cli.command()
@click.option(
    "--output-format",
    type=click.Choice(["text", "json", "yaml"]),
    default="text",
    help="Output format for the report",
)
@click.pass_context
def status(ctx, output_format):
    """Show the per-node restart state."""
    context = _context(ctx)
    try:
        task, state, error = context.lifecycle().status()
    except (StateStoreError, ClusterCommandError) as e:
        _fail(f"Error reading status: {e}")

    report = generate_status_report(task, state, error, output_format)
    if output_format == "text":
        console.print(report)
    else:
        click.echo(report)


@cli.command("create-config")
@click.option(
    "--output",
    "-o",
    help="Output file path for the sample configuration",
    default="crr.toml",
    type=click.Path(),
)
def create_config_cmd(output):
    """Create a sample coordinator configuration file."""
    try:
        create_sample_coordinator_config(output)
    except OSError as e:
        _fail(f"Error creating configuration: {e}")
    console.print(f"[green]Sample configuration created: {output}[/green]")
    console.print("Copy it to the same path on every cluster node and pass it with --config.")


@cli.group()
def maintenance():
    """Maintenance window management commands.

    Examples:
      crr maintenance create-config                     # Create sample maintenance config
      crr maintenance check windows.toml HV-CLUSTER01   # Check maintenance window status
      crr maintenance list-windows windows.toml         # List all configured windows
    """
    pass


@maintenance.command("create-config")
@click.option(
    "--output",
    "-o",
    help="Output file path for the sample configuration",
    default="maintenance-windows.toml",
    type=click.Path(),
)
def create_maintenance_config(output):
    """Create a sample maintenance windows configuration file."""
    try:
        create_sample_config(output)
    except OSError as e:
        _fail(f"Error creating configuration: {e}")
    console.print(f"[green]Sample maintenance configuration created: {output}[/green]")
    console.print("\n[yellow]Edit this file to configure your maintenance windows.[/yellow]")
    console.print("Then set maintenance_config in the coordinator configuration.")


@maintenance.command()
@click.argument("config_path", type=click.Path(exists=True))
@click.argument("cluster_name")
@click.option(
    "--time",
    help="Check at a specific time (ISO format, e.g., 2024-01-15T19:30:00Z)",
    default=None,
)
def check(config_path, cluster_name, time):
    """Check whether a node drain may start for a cluster."""
    try:
        checker = MaintenanceWindowChecker(config_path)
    except (FileNotFoundError, ValueError) as e:
        _fail(f"Error loading maintenance windows: {e}")

    check_time = datetime.now(timezone.utc)
    if time:
        try:
            check_time = datetime.fromisoformat(time.replace("Z", "+00:00"))
        except ValueError:
            console.print(f"[red]Invalid time format: {time}[/red]")
            console.print("Use ISO format like: 2024-01-15T19:30:00Z")
            sys.exit(1)

    in_window, reason = checker.is_in_maintenance_window(cluster_name, check_time)
    may_start, decision = checker.may_start_drain(cluster_name, check_time)
    next_window, _ = checker.get_next_maintenance_window(cluster_name, check_time)

    table = Table(title=f"Maintenance Window Status for {cluster_name}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Time", check_time.strftime("%Y-%m-%d %H:%M:%S %Z"))
    table.add_row("In Maintenance Window", "Yes" if in_window else "No")
    table.add_row("May Start Drain", "[green]Yes[/green]" if may_start else "[yellow]No[/yellow]")
    table.add_row("Reason", reason)
    table.add_row("Decision", decision)
    table.add_row(
        "Next Window",
        next_window.strftime("%Y-%m-%d %H:%M:%S UTC") if next_window else "None found in next 35 days",
    )
    console.print(table)


@maintenance.command("list-windows")
@click.argument("config_path", type=click.Path(exists=True))
def list_windows(config_path):
    """List all configured maintenance windows."""
    try:
        checker = MaintenanceWindowChecker(config_path)
    except (FileNotFoundError, ValueError) as e:
        _fail(f"Error loading maintenance windows: {e}")

    table = Table(title="Configured Maintenance Windows")
    table.add_column("Cluster", style="cyan")
    table.add_column("Window", style="magenta")
    table.add_column("Schedule", style="green")
    table.add_column("Description", style="yellow")

    for config in checker.configs:
        if not config.windows:
            table.add_row(config.cluster_name, "No windows", "-", "No restrictions")
            continue

        for i, window in enumerate(config.windows):
            schedule_parts = []
            if window.weekdays:
                schedule_parts.append(f"Weekdays: {', '.join(sorted(window.weekdays))}")
            if window.ordinal_days:
                schedule_parts.append(f"Ordinal: {', '.join(window.ordinal_days)}")

            schedule = "; ".join(schedule_parts) if schedule_parts else "Every day"
            time_range = f"{window.start_time.strftime('%H:%M')}-{window.end_time.strftime('%H:%M')} {config.timezone}"
            table.add_row(
                config.cluster_name if i == 0 else "",
                f"Window {i + 1} ({time_range})",
                schedule,
                window.description or "No description",
            )

    console.print(table)


if __name__ == "__main__":
    cli()
