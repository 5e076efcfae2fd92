"""
Command-line interface for kubechat.

Main entry point for the kubechat CLI application.
"""
import asyncio
import json
import signal
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.table import Table

from kubechat import __version__
from kubechat.config import Config, load_config
from kubechat.fetchers.base import KubernetesError
from kubechat.fetchers.kubernetes import KubernetesClient
from kubechat.fetchers.metrics import MetricsReconciler, utilization_report
from kubechat.llm.provider import LLMError, OpenAIChatBackend
from kubechat.llm.tools import NodeMetricsTool
from kubechat.server.router import ChatHandler, Router
from kubechat.server.server import HttpServer
from kubechat.utils.logging import setup_logging

app = typer.Typer(
    name="kubechat",
    help="Authenticated chat endpoint for questions about a Kubernetes cluster",
    add_completion=False,
)

console = Console()
logger = structlog.get_logger("kubechat.cli")


def _build_reconciler(config: Config) -> MetricsReconciler:
    client = KubernetesClient.from_config(config.get_kubernetes_config())
    return MetricsReconciler(client)


async def _check_cluster(reconciler: MetricsReconciler) -> None:
    """Log whether node metrics can be reconciled. Never fails."""
    try:
        items = await reconciler.get_utilization()
    except KubernetesError as e:
        logger.warning(f"Cluster check failed, continuing: {e}")
        return
    logger.info(f"Cluster check succeeded: {len(items)} nodes reporting metrics")


async def _serve(
    server: HttpServer,
    reconciler: MetricsReconciler,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    """Run the server until SIGINT/SIGTERM (or ``stop_event``) asks it to stop."""
    await _check_cluster(reconciler)
    await server.start()

    if stop_event is None:
        stop_event = asyncio.Event()

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()
    signals = (signal.SIGTERM, signal.SIGINT)
    for sig in signals:
        loop.add_signal_handler(sig, stop_event.set)

    serving = asyncio.create_task(server.serve_forever())
    try:
        await stop_event.wait()
        logger.info("Shutdown requested")
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)
        await server.stop()
        await serving


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Address to bind (overrides config)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to bind (overrides config)"),
) -> None:
    """Start the chat endpoint."""
    try:
        config = load_config()
    except Exception as e:
        typer.echo(f"Error: Invalid configuration: {e}", err=True)
        raise typer.Exit(1)

    setup_logging(config.log_level)

    try:
        reconciler = _build_reconciler(config)
        backend = OpenAIChatBackend.from_config(
            config.get_llm_config(),
            tools=[NodeMetricsTool(reconciler)],
        )
        router = Router(config.server_api_key, ChatHandler(backend))
    except (ValueError, LLMError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    server_config = config.get_server_config()
    if host is not None:
        server_config["host"] = host
    if port is not None:
        server_config["port"] = port

    server = HttpServer(router, **server_config)
    try:
        asyncio.run(_serve(server, reconciler))
    except OSError as e:
        typer.echo(f"Error: Cannot start server: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def nodes(
    as_json: bool = typer.Option(False, "--json", help="Print the raw utilization report as JSON"),
) -> None:
    """Show CPU and memory utilization of every cluster node."""
    try:
        config = load_config()
        setup_logging(config.log_level)
        reconciler = _build_reconciler(config)
        items = asyncio.run(reconciler.get_utilization())
    except (ValueError, KubernetesError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps(utilization_report(items), indent=2))
        return

    if not items:
        console.print("[yellow]No node metrics reported[/yellow]")
        return

    table = Table(title="Node Utilization")
    table.add_column("Node", style="magenta")
    table.add_column("CPU (cores)", style="green", justify="right")
    table.add_column("CPU %", style="green", justify="right")
    table.add_column("Memory (MiB)", style="yellow", justify="right")
    table.add_column("Memory %", style="yellow", justify="right")

    for item in items:
        table.add_row(
            item.name,
            f"{item.cpu_cores_used:.3f}",
            f"{item.cpu_percent:.1f}",
            f"{item.memory_bytes_used / (1024 * 1024):.0f}",
            f"{item.memory_percent:.1f}",
        )

    console.print(table)


@app.command()
def version() -> None:
    """Display the version of kubechat."""
    typer.echo(f"kubechat version {__version__}")


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
