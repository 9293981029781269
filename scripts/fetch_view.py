#!/usr/bin/env python3
"""
Fetch one Morph view and print it as JSON.

Handy for checking what the client (and its cache) returns for a template
without wiring it into an application. Settings come from ``MORPH_*``
environment variables; command line flags override them.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from morph_client import MorphError, create_client
from shared.config import get_settings
from shared.logging import configure_logging


def _pair(item: str) -> Tuple[str, str]:
    """Parse a ``key=value`` argument."""
    key, sep, value = item.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"Expected key=value, got {item!r}")
    return key, value


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch a rendered view from the Morph API.")
    parser.add_argument("template", help="View template name")
    parser.add_argument("id", help="Identifier substituted into the body")
    parser.add_argument("--param", action="append", type=_pair, metavar="KEY=VALUE", help="Path parameter (repeatable, ordered)")
    parser.add_argument("--query", action="append", type=_pair, metavar="KEY=VALUE", help="Query parameter (repeatable)")
    parser.add_argument("--endpoint", default=None, help="Morph endpoint (default: MORPH_ENDPOINT)")
    parser.add_argument("--max-retries", type=int, default=None, help="Polls allowed while the view is not ready")
    parser.add_argument("--flush", action="store_true", help="Ignore and replace any cached entry")
    parser.add_argument("--log-level", default=None, help="Log level (default: MORPH_LOG_LEVEL)")
    parser.add_argument("--output", type=Path, default=None, help="Optional path to write the JSON view")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    overrides = {}
    if args.endpoint:
        overrides["endpoint"] = args.endpoint
    if args.max_retries is not None:
        overrides["max_retries"] = args.max_retries
    if args.log_level:
        overrides["log_level"] = args.log_level
    settings = get_settings(**overrides)

    # stdout is reserved for the view JSON
    configure_logging("morph_client", settings.log_level, stream=sys.stderr)

    with create_client(settings) as client:
        client.set_flush_cache_items(args.flush)
        try:
            view = client.fetch_view(args.template, args.id, dict(args.param or []), dict(args.query or []))
        except MorphError as e:
            print(json.dumps(e.to_response().model_dump(), indent=2), file=sys.stderr)
            return 1

    if view is None:
        print("View not found", file=sys.stderr)
        return 2

    payload = json.dumps(view.model_dump(), indent=2)
    if args.output:
        args.output.write_text(payload)
    else:
        print(payload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
