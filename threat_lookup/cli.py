#!/usr/bin/env python3
"""
Threat lookup - CLI entry point
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Optional

from .config import Settings, build_service, build_store, load_env_files
from .errors import GatewayError
from .logging_config import configure_logging
from .normalize import classify_indicator

logger = logging.getLogger(__name__)

_ZONE_ORDER = ["Green", "Grey", "Yellow", "Orange", "Red"]

ZONE_EMOJI = {
    "Green": "✅",
    "Grey": "⚪",
    "Yellow": "🟡",
    "Orange": "🟠",
    "Red": "🔴",
}


def zone_level(zone: str) -> int:
    try:
        return _ZONE_ORDER.index(zone)
    except ValueError:
        return _ZONE_ORDER.index("Grey")


def exit_code_from_zones(zones: list[str], *, fail_on: Optional[str]) -> int:
    if fail_on is None:
        return 0
    return 1 if any(zone_level(z) >= zone_level(fail_on) for z in zones) else 0


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="Look up IP/domain/URL reputation through the two-tier scan cache"
    )
    parser.add_argument("indicator", nargs="?", help="IP, domain or URL to look up")
    parser.add_argument(
        "--text", help="File with free text (e.g. OCR output) to extract URLs from; '-' for stdin"
    )
    parser.add_argument(
        "--classify-only", action="store_true", help="Only print the normalized (type, value)"
    )
    parser.add_argument("--init-db", action="store_true", help="Create the durable store schema and exit")
    parser.add_argument("--user-id", type=int, default=None, help="Record the lookup for this user id")
    parser.add_argument("--json", "-j", action="store_true", help="Output as JSON")
    parser.add_argument(
        "--fail-on",
        choices=_ZONE_ORDER,
        default=None,
        help="Exit 1 when a verdict zone is at or above this level (Green < Grey < Yellow < Orange < Red)",
    )
    parser.add_argument("--log-level", default=None, help="Override THREAT_LOOKUP_LOG_LEVEL")

    args = parser.parse_args(argv)

    if not (args.indicator or args.text or args.init_db):
        parser.error("Either INDICATOR, --text or --init-db is required")
    if args.classify_only and not args.indicator:
        parser.error("--classify-only requires INDICATOR")

    load_env_files()
    settings = Settings.from_env()
    configure_logging(args.log_level or settings.log_level, settings.log_format, settings.log_file)

    try:
        exit_code = _run(args, settings)
    except GatewayError as e:
        if args.json:
            print(json.dumps({"error": e.public_message, "kind": e.kind.value, "detail": str(e)}))
        else:
            print(f"❌ {e.public_message} ({e})", file=sys.stderr)
        exit_code = 2

    raise SystemExit(exit_code)


def _run(args: argparse.Namespace, settings: Settings) -> int:
    if args.init_db:
        store = build_store(settings)
        try:
            store.init_schema()
        finally:
            store.close()
        print("Schema ready.")
        return 0

    if args.classify_only:
        indicator = classify_indicator(args.indicator, timeout=settings.redirect_timeout)
        if args.json:
            print(json.dumps(indicator.to_dict(), ensure_ascii=False))
        else:
            print(f"{indicator.type}\t{indicator.value}")
        return 0

    service = build_service(settings)
    try:
        if args.text:
            text = _read_text(args.text)
            results = service.lookup_text(text, args.user_id)
            payload = {candidate: r.to_dict() for candidate, r in results.items()}
            if args.json:
                print(json.dumps(payload, indent=2, ensure_ascii=False))
            else:
                for r in payload.values():
                    print_human_readable(r)
            return exit_code_from_zones([r["zone"] for r in payload.values()], fail_on=args.fail_on)

        result = service.lookup(args.indicator, args.user_id).to_dict()
        if args.json:
            print(json.dumps(result, indent=2, ensure_ascii=False))
        else:
            print_human_readable(result)
        return exit_code_from_zones([result["zone"]], fail_on=args.fail_on)
    finally:
        service.store.close()


def _read_text(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    with open(path, encoding="utf-8") as f:
        return f.read()


def print_human_readable(result: dict[str, Any]) -> None:
    """Print human-readable output."""
    indicator = result["indicator"]
    zone = result["zone"]
    verdict = result.get("verdict") or {}

    print("\n🔍 Threat Lookup Report")
    print(f"{'=' * 50}")
    print(f"Input:     {indicator.get('input') or indicator['value']}")
    print(f"Indicator: {indicator['value']} ({indicator['type']})")
    print(f"{'=' * 50}")

    print(f"\n{ZONE_EMOJI.get(zone, '❓')} Zone: {zone}")
    print(f"📦 Answered from: {result['outcome']}")

    categories = verdict.get("Categories") or []
    if categories:
        print("\n📋 Categories:")
        print(f"{'-' * 50}")
        for category in categories:
            print(f"  {category}")

    print()


if __name__ == "__main__":
    main()
