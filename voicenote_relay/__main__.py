"""Entry point for ``python -m voicenote_relay`` and the voicenote-relay script.

WHY: Operators start the relay as a long-running process (container,
systemd unit, or a shell during development).

HOW: Parses host/port/log-level overrides with argparse, configures
logging once, and hands the resolved Settings to run_server().

RULES:
- CLI flags override the matching environment variables
- argv=None means sys.argv (explicit argv is for testing)
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
from typing import List, Optional

from voicenote_relay.config import Settings, load_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voicenote-relay",
        description="Summarize forwarded WhatsApp voice notes with Gemini.",
    )
    parser.add_argument("--host", default=None, help="Bind address (env HOST, default 0.0.0.0).")
    parser.add_argument("--port", type=int, default=None, help="Listen port (env PORT, default 3000).")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Logging level (env LOG_LEVEL, default INFO).",
    )
    return parser


def resolve_settings(argv: Optional[List[str]] = None) -> Settings:
    """Combine environment settings with command-line overrides."""
    args = build_parser().parse_args(argv)
    settings = load_settings()
    overrides = {
        "host": args.host,
        "port": args.port,
        "log_level": args.log_level,
    }
    return dataclasses.replace(
        settings, **{k: v for k, v in overrides.items() if v is not None}
    )


def main(argv: Optional[List[str]] = None) -> None:
    settings = resolve_settings(argv)
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    from voicenote_relay.server.app import run_server

    run_server(settings)


if __name__ == "__main__":
    main()
