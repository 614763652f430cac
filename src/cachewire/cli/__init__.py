"""CLI commands for Cachewire.

Provides command-line interface using Typer:
- cachewire serve: Run the API server
- cachewire cleanup-metadata: Delete unused metadata records

Usage:
    cachewire --help
    cachewire serve --port 8080
    cachewire cleanup-metadata --tenant acme --days 30
"""

import typer

from cachewire.cli.cleanup_cmd import app as cleanup_app
from cachewire.cli.serve import app as serve_app

# Main CLI application
app = typer.Typer(
    name="cachewire",
    help="Cachewire: tenant-scoped cache with invalidation event streaming",
    no_args_is_help=True,
)

app.add_typer(serve_app, name="serve")
app.add_typer(cleanup_app, name="cleanup-metadata")


@app.callback()
def callback() -> None:
    """Cachewire: tenant-scoped cache with invalidation event streaming."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
