"""CLI command for running the API server.

Every option defaults to the matching CACHEWIRE_* setting, so the command
line only needs what differs from the environment.

Usage:
    cachewire serve
    cachewire serve --port 8080 --host 0.0.0.0
    cachewire serve --reload --log-level debug
"""

from __future__ import annotations

import typer

from cachewire.config import settings

app = typer.Typer(help="Run the Cachewire API server")

APP_FACTORY = "cachewire.api.app:create_app"


@app.callback(invoke_without_command=True)
def serve(
    host: str = typer.Option(settings.host, "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(settings.port, "--port", "-p", help="Port to listen on"),
    reload: bool = typer.Option(False, "--reload", "-r", help="Reload on code changes"),
    workers: int = typer.Option(settings.workers, "--workers", "-w", help="Worker processes"),
    log_level: str = typer.Option(settings.log_level, "--log-level", "-l", help="Log level"),
    access_log: bool = typer.Option(
        settings.access_log, "--access-log/--no-access-log", help="Log every request"
    ),
) -> None:
    """Run the Cachewire API server.

    Each worker process has its own event bus; without the Redis relay
    (CACHEWIRE_EVENT_RELAY_ENABLED) a subscriber only sees events
    published by the worker it is connected to.
    """
    import uvicorn

    # uvicorn's reloader supports a single process only
    if reload and workers > 1:
        typer.echo("--reload runs a single worker; ignoring --workers")
        workers = 1

    typer.echo(f"Starting Cachewire on {host}:{port} ({workers} worker(s), {settings.env})")
    if workers > 1 and not settings.event_relay_enabled:
        typer.echo("Warning: event relay disabled, events stay within one worker", err=True)

    uvicorn.run(
        app=APP_FACTORY,
        factory=True,
        host=host,
        port=port,
        reload=reload,
        workers=workers,
        log_level=log_level.lower(),
        access_log=access_log,
    )
