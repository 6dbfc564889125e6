"""Command line entry point for the Pastebox server."""

from __future__ import annotations

import argparse
import os
from pathlib import Path

import uvicorn
from loguru import logger

from core.logging_config import setup_logging_from_settings
from core.service import PasteService
from core.settings import Settings
from services.api.main import create_app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pastebox", description="Minimal paste storage server")
    parser.add_argument("--config", type=Path, help="YAML configuration file (default: $PASTEBOX_CONFIG or config/default.yaml)")
    parser.add_argument("--state", type=Path, help="Registry snapshot path")
    parser.add_argument("--data-dir", type=Path, help="Directory holding one file per paste")
    parser.add_argument("--host", help="Bind address")
    parser.add_argument("--port", type=int, help="Listen port")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ...)")
    return parser


def resolve_settings(args: argparse.Namespace) -> Settings:
    config_path = args.config or Path(os.getenv("PASTEBOX_CONFIG", "config/default.yaml"))
    if args.config is not None or config_path.exists():
        settings = Settings.load(config_path)
    else:
        settings = Settings.from_env()

    if args.state is not None:
        settings.state.path = args.state
    if args.data_dir is not None:
        settings.storage.data_dir = args.data_dir
    if args.host is not None:
        settings.server.host = args.host
    if args.port is not None:
        settings.server.port = args.port
    if args.log_level is not None:
        settings.logging.level = args.log_level.upper()
    return settings


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = resolve_settings(args)
    setup_logging_from_settings(settings.logging)

    service = PasteService.open(settings)
    app = create_app(settings, service)

    logger.info("Listening on {host}:{port}", host=settings.server.host, port=settings.server.port)
    uvicorn.run(app, host=settings.server.host, port=settings.server.port, log_level="info")


if __name__ == "__main__":
    main()
