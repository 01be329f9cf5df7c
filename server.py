# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""
Server script for running the research chat API.
"""

import argparse
import logging

import uvicorn

from src.config import ServerSettings

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the research chat API server")
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload (default: False)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="localhost",
        help="Host to bind the server to (default: localhost)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind the server to (default: 8000)",
    )
    parser.add_argument(
        "--log-level",
        default=ServerSettings.from_env().log_level,
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        help="Log level (default: info)",
    )

    args = parser.parse_args()
    configure_logging(args.log_level)

    logger.info("Starting research chat API server on %s:%s", args.host, args.port)
    uvicorn.run(
        "src.server.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )
