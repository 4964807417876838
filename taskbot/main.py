"""Entry point for the Telegram task bot."""
from __future__ import annotations

import argparse

import uvicorn

from .config import WEBHOOK_PORT, require_bot_token


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the task bot webhook server")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=WEBHOOK_PORT)
    parser.add_argument("--log-level", default="info")
    return parser


def main(argv=None) -> None:
    """Start the webhook server."""
    args = build_parser().parse_args(argv)
    require_bot_token()
    uvicorn.run("taskbot.server:app", host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
