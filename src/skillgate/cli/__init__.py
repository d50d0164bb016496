"""Command-line interface for skillgate."""

import argparse
import json
import logging
import sys
from pathlib import Path


def format_output(data, as_json: bool = False) -> str:
    """Format output as JSON or human-readable text.

    Args:
        data: Dict or string to format
        as_json: If True, output JSON; otherwise return as-is

    Returns:
        Formatted string
    """
    if as_json:
        return json.dumps(data, indent=2, default=str)
    if isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def rules_path(args) -> Path:
    """Rules file from --path, else from settings."""
    if getattr(args, "path", None):
        return Path(args.path)
    from ..config import load_settings
    return load_settings().rules_file()


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="skillgate - skill activation and guardrail rules",
        prog="skillgate",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log to stderr")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    from . import check, hook, rules

    rules.register(subparsers)
    check.register(subparsers)
    hook.register(subparsers)

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(levelname)s %(name)s: %(message)s",
        )

    if not getattr(args, "func", None):
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
