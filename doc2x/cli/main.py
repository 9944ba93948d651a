"""
Doc2X command-line tool.

Usage:
    doc2x [--api-key KEY] parse --path ./pdfs --output-dir ./results
    doc2x convert --uid <uid> --to docx --download -o out.docx

Global options go before the subcommand. SIGINT and SIGTERM cancel every
in-flight request and wait.
"""

import argparse
import asyncio
import signal
import sys
from typing import Optional, Sequence

from doc2x.cli import convert_cmd, parse_cmd
from doc2x.cli.helpers import parse_duration
from doc2x.core.exceptions import BaseError
from doc2x.core.logging_config import configure_structured_logging
from doc2x.core.settings import doc2x_settings
from doc2x.resilience.cancellation import CancelToken


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="doc2x", description="Doc2X API v2 CLI helper")
    parser.add_argument(
        "--api-key", default="", help="Doc2X API key (or set DOC2X_APIKEY / DOC2X_API_KEY)"
    )
    parser.add_argument(
        "--base-url", default=doc2x_settings.DOC2X_BASE_URL, help="Base URL for Doc2X API"
    )
    parser.add_argument(
        "--timeout",
        type=parse_duration,
        default=doc2x_settings.DOC2X_TIMEOUT_SECONDS,
        help="HTTP timeout for API requests (e.g. 30s)",
    )
    parser.add_argument(
        "--processing-timeout",
        type=parse_duration,
        default=doc2x_settings.DOC2X_PROCESSING_TIMEOUT_SECONDS,
        help="Timeout for long running operations (e.g. 5m)",
    )
    parser.add_argument(
        "--fail-log",
        default=doc2x_settings.DOC2X_FAIL_LOG,
        help="Path to write failed task logs (empty to disable)",
    )
    parser.add_argument(
        "--log-level",
        default=doc2x_settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-format",
        default=doc2x_settings.LOG_FORMAT,
        choices=["text", "json"],
        type=str.lower,
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    parse_cmd.add_parser(subparsers)
    convert_cmd.add_parser(subparsers)
    return parser


async def run(args: argparse.Namespace) -> None:
    """Run the selected subcommand under a root token cancelled by signals."""
    token = CancelToken()
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, token.cancel)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # no signal handlers on this event loop (Windows, non-main thread)
            continue

    try:
        await args.handler(args, token)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_structured_logging(level=args.log_level, json_format=args.log_format == "json")

    try:
        asyncio.run(run(args))
    except (BaseError, OSError) as e:
        print(e, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
