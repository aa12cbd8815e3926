"""
Conduit CLI.

    conduit worker                 # consume every queue
    conduit worker -q ai -q messages
    conduit api --port 8080        # webhook receiver
"""

import asyncio

import typer
import uvicorn

from conduit.core.config.settings import settings
from conduit.workers.queues import QUEUES

app = typer.Typer(help="Conduit conversation worker CLI")


@app.command()
def worker(
    queue: list[str] = typer.Option(
        None, "--queue", "-q", help="Queue to consume (repeatable, default: all)"
    ),
    drain_timeout: float = typer.Option(
        30.0, "--drain-timeout", help="Seconds to wait for in-flight jobs on shutdown"
    ),
):
    """Run the queue workers until SIGTERM/SIGINT."""
    from conduit.workers.runtime import WorkerRuntime

    unknown = [name for name in queue or [] if name not in QUEUES]
    if unknown:
        typer.echo(f"❌ Unknown queue(s): {', '.join(unknown)}", err=True)
        typer.echo(f"Available: {', '.join(QUEUES)}", err=True)
        raise typer.Exit(1)

    runtime = WorkerRuntime(queue_names=queue or None, drain_timeout=drain_timeout)
    try:
        asyncio.run(runtime.run())
    except KeyboardInterrupt:
        typer.echo("👋 Worker stopped")


@app.command()
def api(
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(settings.port, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
):
    """Run the webhook receiver."""
    typer.echo(f"🚀 Starting Conduit webhook receiver on http://{host}:{port}")
    uvicorn.run(
        "conduit.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    app()
