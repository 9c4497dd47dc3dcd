# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""urlsense CLI: detect, rules commands.

Usage:
    urlsense detect URL [URL ...] [--format json|text] [--no-metadata] [--rules FILE] [--window N]
    urlsense rules [--rules FILE] [--format json|text]

Configuration comes from ``URLSENSE_*`` environment variables; flags win.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from . import DetectionResult
from .config import DetectorConfig
from .detector import PlatformDetector
from .errors import UrlSenseError
from .logging_config import configure as configure_logging
from .rule_loader import RuleSet, load_rules_file


def _load_ruleset(path: str | None) -> RuleSet | None:
    # strict: an explicitly named file must be valid
    return load_rules_file(path, strict=True) if path else None


def _format_text(result: DetectionResult, url: str) -> str:
    line = (
        f"{url}\t{result.platform}\t{result.content_type}\t"
        f"{result.processing_strategy}\t{result.confidence:.2f}"
    )
    if result.metadata and result.metadata.title:
        line += f"\t{result.metadata.title}"
    if result.error:
        line += f"\terror: {result.error}"
    return line


async def _detect(urls: list[str], config: DetectorConfig, ruleset: RuleSet | None, window: int | None):
    async with PlatformDetector(config) as detector:
        if ruleset is not None:
            await detector.load_rules(ruleset)
        return await detector.detect_batch(urls, window=window)


def cmd_detect(args: argparse.Namespace) -> None:
    """Detect platform, content type and strategy for each URL."""
    overrides = {}
    if args.no_metadata:
        overrides["enable_metadata_extraction"] = False
    if args.window:
        overrides["batch_window"] = args.window
    config = DetectorConfig.from_env(**overrides)
    ruleset = _load_ruleset(args.rules)

    results = asyncio.run(_detect(args.urls, config, ruleset, args.window))

    if args.format == "json":
        payload = [{"url": url, **result.to_dict()} for url, result in zip(args.urls, results, strict=True)]
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        for url, result in zip(args.urls, results, strict=True):
            print(_format_text(result, url))


def cmd_rules(args: argparse.Namespace) -> None:
    """Print the active platform rules in priority order."""
    ruleset = _load_ruleset(args.rules)
    config = DetectorConfig.from_env()

    async def _rules():
        async with PlatformDetector(config) as detector:
            if ruleset is not None:
                await detector.load_rules(ruleset)
            return detector.matcher.export_json(), detector.rules()

    exported, rules = asyncio.run(_rules())
    if args.format == "json":
        print(exported)
        return
    for rule in rules:
        state = "" if rule.enabled else " (disabled)"
        print(f"{rule.priority:>4}  {rule.platform:<14} {rule.content_type:<16} {len(rule.patterns)} pattern(s){state}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Detect the platform, content type and processing strategy of URLs",
        prog="urlsense",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines on stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_detect = subparsers.add_parser(
        "detect",
        help="Detect one or more URLs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
examples:
  %(prog)s https://www.youtube.com/watch?v=dQw4w9WgXcQ
  %(prog)s --format json https://github.com/psf/requests https://example.com/blog/post
  %(prog)s --no-metadata --rules my_rules.json https://wiki.example.org/page""",
    )
    p_detect.add_argument("urls", nargs="+", metavar="URL")
    p_detect.add_argument("--format", choices=["json", "text"], default="text", help="Output format (default: text)")
    p_detect.add_argument("--no-metadata", action="store_true", help="Skip network metadata extraction")
    p_detect.add_argument("--rules", type=str, metavar="FILE", help="Additional JSON rule document")
    p_detect.add_argument("--window", type=int, metavar="N", help="Concurrent detections per batch window")

    p_rules = subparsers.add_parser("rules", help="List active platform rules")
    p_rules.add_argument("--rules", type=str, metavar="FILE", help="Additional JSON rule document")
    p_rules.add_argument("--format", choices=["json", "text"], default="text")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(json_output=args.json_logs, level="DEBUG" if args.verbose else "WARNING")

    commands = {"detect": cmd_detect, "rules": cmd_rules}
    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except (UrlSenseError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
