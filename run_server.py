from __future__ import annotations

import argparse

import uvicorn
from loguru import logger

from agenthub.config import configure_logging, load_settings
from agenthub.server import create_app


def parse_args() -> argparse.Namespace:
    settings = load_settings()
    p = argparse.ArgumentParser(description="Serve the streaming agent socket")
    p.add_argument("--host", type=str, default=settings.host, help="Interface to bind")
    p.add_argument("--port", type=int, default=settings.port, help="Port to bind")
    p.add_argument("--log-level", type=str, default=settings.log_level, help="Log level (DEBUG, INFO, ...)")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    configure_logging(args.log_level)
    app = create_app()
    logger.info(f"Serving agents on ws://{args.host}:{args.port}/")
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
