"""
Command-line entry point.

Usage
-----
    python -m lessonpack.cli run [--input-dir DIR] [FILE ...]
    python -m lessonpack.cli check-config
    python -m lessonpack.cli oauth-token [--code CODE]

``run`` exits with status 1 when any file failed.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from lessonpack.config import settings
from lessonpack.services.credentials import (
    PublishConfigurationError,
    build_oauth_consent_url,
    describe_publish_config,
    exchange_oauth_code,
    load_publish_config,
)
from lessonpack.services.pipeline import BatchResult, LessonPackPipeline

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def format_summary(result: BatchResult) -> str:
    """One line per file: ✅ with the document URL, ❌ with the error."""
    lines = ["", "Run summary:"]
    for outcome in result.outcomes:
        if outcome.success:
            target = outcome.document_url or "(not published)"
            lines.append(f"  ✅ {outcome.file} → {target}")
        else:
            lines.append(f"  ❌ {outcome.file}: {outcome.error}")
    lines.append(f"{result.succeeded} succeeded, {result.failed} failed")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def _run(args: argparse.Namespace) -> int:
    try:
        pipeline = LessonPackPipeline()
    except PublishConfigurationError as exc:
        print(f"❌ Publishing configuration invalid: {exc}", file=sys.stderr)
        return 1

    result = await pipeline.run_batch(paths=args.files or None, input_dir=args.input_dir)
    print(format_summary(result))
    return result.exit_code


def _check_config(_args: argparse.Namespace) -> int:
    try:
        config = load_publish_config()
    except PublishConfigurationError as exc:
        print(f"❌ {exc}", file=sys.stderr)
        return 1
    print(json.dumps(describe_publish_config(config), indent=2))
    return 0


async def _oauth_token(args: argparse.Namespace) -> int:
    try:
        config = load_publish_config()
        url = build_oauth_consent_url(config)
    except PublishConfigurationError as exc:
        print(f"❌ {exc}", file=sys.stderr)
        return 1

    code = args.code
    if not code:
        print("Authorize this app by visiting this URL:\n")
        print(url)
        code = input("\nEnter the code from that page here: ")

    try:
        token_path = await exchange_oauth_code(config, code)
    except PublishConfigurationError as exc:
        print(f"❌ {exc}", file=sys.stderr)
        return 1
    print(f"✅ Token stored to {token_path}")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lessonpack", description="Generate debate lesson packs and publish them to Google Docs."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="process every input file")
    run.add_argument("--input-dir", default=None, help=f"default: {settings.NOTES_INPUT_DIR}")
    run.add_argument("files", nargs="*", help="explicit files (overrides --input-dir)")

    sub.add_parser("check-config", help="print the redacted publishing configuration")

    oauth = sub.add_parser("oauth-token", help="obtain and store an OAuth user token")
    oauth.add_argument("--code", default=None, help="consent code (prompted when omitted)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging()

    if args.command == "run":
        return asyncio.run(_run(args))
    if args.command == "check-config":
        return _check_config(args)
    return asyncio.run(_oauth_token(args))


if __name__ == "__main__":
    sys.exit(main())
