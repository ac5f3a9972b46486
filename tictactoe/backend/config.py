"""Configuration helpers for backend runtime."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class BackendSettings:
    server_salt: str
    database_url: str | None
    host: str
    port: int
    log_level: str


def load_settings() -> BackendSettings:
    port_raw = os.getenv("TICTACTOE_PORT", "8000")
    return BackendSettings(
        server_salt=os.getenv("TICTACTOE_SERVER_SALT", "dev-salt"),
        database_url=os.getenv("TICTACTOE_DATABASE_URL"),
        host=os.getenv("TICTACTOE_HOST", "127.0.0.1"),
        port=int(port_raw),
        log_level=os.getenv("TICTACTOE_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
