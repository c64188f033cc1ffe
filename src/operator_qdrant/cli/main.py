"""qdrant-operator CLI - shard placement operations for Qdrant clusters."""

import typer

from operator_qdrant.cli.peers import peers_app
from operator_qdrant.cli.shards import shards_app

app = typer.Typer(
    name="qdrant-operator",
    help="Drain, clear, equalize and re-replicate shards across Qdrant peers",
    no_args_is_help=True,
)

# Command groups are merged into the top level
app.add_typer(peers_app)
app.add_typer(shards_app)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
