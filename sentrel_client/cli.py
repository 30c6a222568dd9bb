"""
Command line interface for sentrel-client.

Usage:
    sentrel-client dsn https://key@sentry.example.com/42
    sentrel-client message "Deployment finished" --level info
    sentrel-client crash-log /var/log/myapp/crash.log
"""

import argparse
import asyncio
import sys
from typing import List, Optional

import httpx

from .client import SentryClient
from .config import ClientSettings
from .exceptions import SentrelError
from .log_config import configure_logging
from .protocol.dsn import Dsn
from .protocol.models import Level, uuid_to_hex


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sentrel-client",
        description="Send events to a Sentry compatible collector",
    )
    parser.add_argument(
        "--dsn",
        default=None,
        help="Collector DSN (default: SENTREL_DSN)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: SENTREL_LOG_LEVEL or INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    dsn_parser = subparsers.add_parser("dsn", help="Show the endpoints derived from a DSN")
    dsn_parser.add_argument("value", help="DSN to parse")

    message_parser = subparsers.add_parser("message", help="Send a message event")
    message_parser.add_argument("text", help="Message text")
    message_parser.add_argument(
        "--level",
        default="info",
        choices=[level.value for level in Level],
        help="Event level (default: info)",
    )

    crash_parser = subparsers.add_parser("crash-log", help="Upload a crash log")
    crash_parser.add_argument("path", help="Crash log file, emptied after reading")

    return parser


def show_dsn(value: str) -> int:
    dsn = Dsn.parse(value)

    print("=" * 60)
    print(f"DSN: {dsn}")
    print("=" * 60)
    print(f"Scheme:     {dsn.scheme}")
    print(f"Host:       {dsn.host}")
    print(f"Port:       {dsn.port}")
    print(f"Path:       {dsn.path or '-'}")
    print(f"Project ID: {dsn.project_id}")
    print(f"Public Key: {dsn.public_key}")
    print(f"Secret Key: {'set' if dsn.secret_key else '-'}")
    print()
    print(f"Store endpoint:    {dsn.store_api_url}")
    print(f"Envelope endpoint: {dsn.envelope_api_url}")
    return 0


async def send_message(client: SentryClient, text: str, level: str) -> int:
    async with client:
        event_id = await client.capture_message(text, level=Level(level))
    print(f"[OK] Event sent: {uuid_to_hex(event_id)}")
    return 0


async def upload_crash_log(client: SentryClient, path: str) -> int:
    async with client:
        results = await client.upload_crash_log(path)

    exit_code = 0
    for result in results:
        if isinstance(result, BaseException):
            print(f"[ERROR] {result}")
            exit_code = 1
        else:
            print(f"[OK] Event sent: {uuid_to_hex(result)}")

    if not results:
        print("No crash reports found")
    return exit_code


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = ClientSettings()
    configure_logging(args.log_level or settings.log_level)

    try:
        if args.command == "dsn":
            return show_dsn(args.value)

        if args.dsn:
            settings = settings.model_copy(update={"dsn": args.dsn})
        client = SentryClient.from_settings(settings)

        if args.command == "message":
            return asyncio.run(send_message(client, args.text, args.level))
        return asyncio.run(upload_crash_log(client, args.path))

    except (SentrelError, ValueError, httpx.HTTPError) as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
