"""Main CLI entry point using Typer."""

from __future__ import annotations

import signal
from pathlib import Path
from types import FrameType

import structlog
import typer
from rich.console import Console
from rich.table import Table

from integration_toolkit import __version__
from integration_toolkit.core.config import ConfigError, ControllerSettings, load_config
from integration_toolkit.integrations.kubernetes import HelmError, KubernetesError
from integration_toolkit.logging import configure_logging

app = typer.Typer(
    name="ksit",
    help="Kubernetes integration toolkit controller.",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()
logger = structlog.get_logger()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"ksit version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """ksit - install and health-check cluster tooling from custom resources."""


def _load_settings(
    config: Path | None,
    kubeconfig: str | None,
    context: str | None,
    namespace: str | None,
    workers: int | None,
) -> ControllerSettings:
    """Load file and env settings, then apply command-line overrides."""
    try:
        settings = load_config(config)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    k8s_updates = {
        k: v for k, v in {"kubeconfig": kubeconfig, "context": context}.items() if v is not None
    }
    updates: dict[str, object] = {}
    if k8s_updates:
        updates["kubernetes"] = settings.kubernetes.model_copy(update=k8s_updates)
    if namespace is not None:
        updates["watch_namespace"] = namespace
    if workers is not None:
        updates["max_concurrent_reconciles"] = workers
    return settings.model_copy(update=updates) if updates else settings


@app.command()
def run(
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML settings file.",
    ),
    kubeconfig: str | None = typer.Option(
        None,
        "--kubeconfig",
        help="Control-plane kubeconfig (defaults to in-cluster or ~/.kube/config).",
    ),
    context: str | None = typer.Option(None, "--context", help="Kubeconfig context to use."),
    namespace: str | None = typer.Option(
        None,
        "--namespace",
        "-n",
        help="Only watch resources in this namespace.",
    ),
    workers: int | None = typer.Option(
        None,
        "--workers",
        "-w",
        min=1,
        help="Concurrent reconciles per controller.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output."),
    debug: bool = typer.Option(False, "--debug", help="Enable debug mode."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON lines."),
    log_file: Path | None = typer.Option(None, "--log-file", help="Also log to this file."),
) -> None:
    """Run the Integration and IntegrationTarget operator until interrupted."""
    from integration_toolkit.controller import build_manager

    configure_logging(verbose=verbose, debug=debug, json_output=json_logs, log_file=log_file)
    settings = _load_settings(config, kubeconfig, context, namespace, workers)

    try:
        manager = build_manager(settings)
    except (KubernetesError, HelmError) as e:
        logger.error("controller_startup_failed", error=str(e))
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    def _shutdown(signum: int, frame: FrameType | None) -> None:
        logger.info("signal_received", signal=signal.Signals(signum).name)
        manager.stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    manager.start()
    try:
        # Short waits keep the main thread responsive to signals
        while not manager.wait(timeout=1.0):
            pass
    finally:
        manager.stop()

    if manager.error is not None:
        console.print(f"[red]Error:[/red] operator stopped: {manager.error}")
        raise typer.Exit(1)


@app.command()
def settings(
    config: Path | None = typer.Option(None, "--config", "-c", help="YAML settings file."),
) -> None:
    """Show the effective settings after file and environment overrides."""
    effective = _load_settings(config, None, None, None, None)

    table = Table(title="ksit Settings")
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")

    for key, value in effective.model_dump().items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                table.add_row(f"{key}.{sub_key}", _display(sub_value))
        else:
            table.add_row(key, _display(value))

    console.print(table)


def _display(value: object) -> str:
    return "-" if value is None else str(value)


@app.command()
def version() -> None:
    """Show the ksit version."""
    console.print(f"ksit version {__version__}")


if __name__ == "__main__":
    app()
