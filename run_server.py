#!/usr/bin/env python3
"""
Run the contact scrape orchestrator API.

Defaults come from SERVER_HOST / SERVER_PORT / SERVER_LOG_LEVEL (after
.env is loaded) and can be overridden on the command line:

    python run_server.py --port 9000 --reload
"""

import argparse
import os

import uvicorn
from dotenv import load_dotenv


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Contact scrape orchestrator API server")
    parser.add_argument("--host", default=os.getenv("SERVER_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("SERVER_PORT", "8000")))
    parser.add_argument(
        "--log-level",
        default=os.getenv("SERVER_LOG_LEVEL", "info"),
        choices=["critical", "error", "warning", "info", "debug"],
    )
    parser.add_argument("--reload", action="store_true", help="Restart on source changes")
    return parser


def main() -> None:
    load_dotenv()
    args = build_parser().parse_args()
    uvicorn.run(
        "server.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
