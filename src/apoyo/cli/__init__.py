"""CLI commands for the Apoyo API.

Provides command-line interface using Typer:
- apoyo serve: Run the API server

Usage:
    apoyo --help
    apoyo serve --port 8080
"""

import typer

from apoyo.cli.serve import app as serve_app

app = typer.Typer(
    name="apoyo",
    help="Apoyo: recruiting API with an edge cache and credit-gated contacts",
    no_args_is_help=True,
)

app.add_typer(serve_app, name="serve")


@app.callback()
def callback() -> None:
    """Apoyo: recruiting API with an edge cache and credit-gated contacts."""


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
