"""
BatchServe CLI: micro-batched classification serving from the command line.

Usage:
    batchserve serve         Load the model and start the HTTP server
    batchserve status        Show the effective configuration
    batchserve validate      Validate configuration and imports
"""

from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..config import SchedulerConfig, ServeConfig, ServerConfig, set_config
from ..errors import BatchServeError

console = Console()
cli = typer.Typer(
    name="batchserve",
    help="Micro-batching inference server for text classification.",
    no_args_is_help=True,
)


def _load_config(env_file: Optional[str]) -> ServeConfig:
    try:
        return ServeConfig.from_env(env_file)
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(code=1)


@cli.command()
def serve(
    env_file: Optional[str] = typer.Option(None, "--env-file", "-e", help="Path to a .env file"),
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-b", help="Rows per batch"),
    tick_ms: Optional[int] = typer.Option(None, "--tick-ms", help="Tick duration in ms"),
    device: Optional[str] = typer.Option(None, "--device", help="auto, cpu, cuda or mps"),
):
    """Load the model and serve POST /classify."""
    import uvicorn

    from ..server import create_app

    config = _load_config(env_file)

    overrides = {
        "max_batch_size": batch_size,
        "tick_duration_ms": tick_ms,
        "device": device,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    try:
        if overrides:
            config.scheduler = SchedulerConfig(**{**config.scheduler.model_dump(), **overrides})
        if host is not None or port is not None:
            config.server = ServerConfig(
                host=config.server.host if host is None else host,
                port=config.server.port if port is None else port,
            )
    except ValueError as e:
        console.print(f"[red]Invalid option:[/red] {e}")
        raise typer.Exit(code=1)

    errors = config.validate(require_model=True)
    if errors:
        for err in errors:
            console.print(f"[red]Error:[/red] {err}")
        raise typer.Exit(code=1)

    for warning in config.sizing_warnings():
        console.print(f"[yellow]Warning:[/yellow] {warning}")

    set_config(config)
    console.print(
        Panel(
            f"model: {config.model.source}\n"
            f"batch size: {config.scheduler.max_batch_size}, "
            f"tick: {config.scheduler.tick_duration_ms} ms\n"
            f"listening on http://{config.server.server_address}",
            title=f"batchserve v{__version__}",
            border_style="magenta",
        )
    )

    try:
        app = create_app(config)
    except BatchServeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    uvicorn.run(app, host=config.server.host, port=config.server.port, log_config=None)


@cli.command()
def status(
    env_file: Optional[str] = typer.Option(None, "--env-file", "-e", help="Path to a .env file"),
):
    """Show the effective scheduler, model and server configuration."""
    config = _load_config(env_file)

    scheduler_table = Table(show_header=False, box=box.SIMPLE)
    scheduler_table.add_column("Setting", style="bold")
    scheduler_table.add_column("Value")

    scheduler_table.add_row("Max batch size", str(config.scheduler.max_batch_size))
    scheduler_table.add_row("Tick duration (ms)", str(config.scheduler.tick_duration_ms))
    scheduler_table.add_row("Max sequence length", str(config.scheduler.max_sequence_length))
    scheduler_table.add_row("Max queue size", str(config.scheduler.max_queue_size))
    scheduler_table.add_row("Truncation", _bool_badge(config.scheduler.truncation))
    scheduler_table.add_row("Device", config.scheduler.device)

    console.print(Panel(scheduler_table, title="Scheduler Configuration", border_style="cyan"))

    model_table = Table(show_header=False, box=box.SIMPLE)
    model_table.add_column("Setting", style="bold")
    model_table.add_column("Value")

    model_table.add_row("Model id", config.model.model_id or "-")
    model_table.add_row("Model path", config.model.model_path or "-")
    model_table.add_row("Revision", config.model.revision)
    model_table.add_row("Safetensors", _bool_badge(config.model.use_safetensors))
    labels = config.model.parse_id2label()
    model_table.add_row("id2label", str(labels) if labels else "from model config")

    console.print(Panel(model_table, title="Model Configuration", border_style="blue"))

    server_table = Table(show_header=False, box=box.SIMPLE)
    server_table.add_column("Setting", style="bold")
    server_table.add_column("Value")

    server_table.add_row("Address", config.server.server_address)
    server_table.add_row("Log level", config.logging.log_level)
    server_table.add_row("Log format", config.logging.log_format)
    server_table.add_row("Metrics", _bool_badge(config.logging.enable_metrics))

    console.print(Panel(server_table, title="Server Configuration", border_style="green"))


@cli.command()
def validate(
    env_file: Optional[str] = typer.Option(None, "--env-file", "-e", help="Path to a .env file"),
):
    """Validate configuration and check that serving dependencies import."""
    config = _load_config(env_file)

    console.print("[bold]Running validation checks...[/bold]\n")
    errors = []

    config_errors = config.validate(require_model=True)
    if config_errors:
        for err in config_errors:
            errors.append(f"Config: {err}")
            console.print(f"  [red]FAIL[/red] {err}")
    else:
        console.print("  [green]PASS[/green] Configuration is valid")

    for warning in config.sizing_warnings():
        console.print(f"  [yellow]WARN[/yellow] {warning}")

    import_checks = [
        ("torch", "PyTorch"),
        ("transformers", "Transformers"),
        ("batchserve.batching", "Scheduler"),
        ("batchserve.server", "HTTP server"),
    ]

    for module_path, label in import_checks:
        try:
            __import__(module_path)
            console.print(f"  [green]PASS[/green] {label} imports OK")
        except ImportError as e:
            errors.append(f"Import {module_path}: {e}")
            console.print(f"  [red]FAIL[/red] {label}: {e}")

    console.print()
    if errors:
        console.print(f"[red]Validation failed with {len(errors)} error(s).[/red]")
        raise typer.Exit(code=1)
    else:
        console.print("[green]All validation checks passed.[/green]")


def _bool_badge(value: bool) -> str:
    """Return a colored badge for a boolean value."""
    if value:
        return "[green]enabled[/green]"
    return "[red]disabled[/red]"


if __name__ == "__main__":
    cli()
