"""Command line entry point: run the API server or apply the database schema."""

from __future__ import annotations

import argparse
import logging

from .config import configure_logging, load_settings
from .store import PostgresGameStore

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="TicTacToe backend")
    subcommands = parser.add_subparsers(dest="command", required=True)
    serve = subcommands.add_parser("serve", help="run the HTTP and websocket API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    subcommands.add_parser("migrate", help="create the PostgreSQL tables")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = load_settings()
    configure_logging(settings.log_level)

    if args.command == "migrate":
        if not settings.database_url:
            raise RuntimeError("TICTACTOE_DATABASE_URL is required for migration")
        PostgresGameStore(database_url=settings.database_url).ensure_schema()
        return

    import uvicorn

    from .api import create_app

    host = args.host or settings.host
    port = args.port or settings.port
    logger.info("serving on %s:%s with %s store", host, port, "postgres" if settings.database_url else "in-memory")
    uvicorn.run(create_app(settings=settings), host=host, port=port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
