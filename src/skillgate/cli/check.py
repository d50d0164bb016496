"""Ad-hoc evaluation commands: prompt, file."""

import sys
from pathlib import Path

from . import format_output, rules_path


def _engine(args):
    from ..config import load_settings
    from ..engine import Engine
    from ..rules import load_rules

    return Engine(load_rules(rules_path(args)), load_settings())


def _report(engine, evaluation, as_json: bool) -> None:
    if as_json:
        print(format_output(evaluation.to_dict(), as_json=True))
        return

    response = engine.respond(evaluation)
    if response.halt:
        print(response.reason)
    elif response.context:
        print(response.context)
    else:
        print("NO ACTION")
    for module_id, reason in evaluation.bypassed:
        print(f"  bypassed {module_id}: {reason}")
    for diagnostic in evaluation.diagnostics:
        print(f"  [{diagnostic.code}] {diagnostic.message}")


def cmd_check_prompt(args):
    """Evaluate a prompt in a throwaway session."""
    engine = _engine(args)
    state = engine.start_session()
    _report(engine, engine.on_prompt_submitted(args.text, state.session_id), args.json)


def cmd_check_file(args):
    """Evaluate a proposed edit in a throwaway session. Exits 1 on block."""
    from ..hooks import read_file_content

    engine = _engine(args)
    state = engine.start_session()
    source = Path(args.content_from) if args.content_from else Path(args.file)
    content = read_file_content(source, engine.settings.content_scan_limit)
    evaluation = engine.on_tool_invocation_proposed(args.file, state.session_id, content=content)
    _report(engine, evaluation, args.json)
    if evaluation.decision.is_block:
        sys.exit(1)


def register(subparsers):
    """Register check commands."""
    check_parser = subparsers.add_parser("check", help="Evaluate an event against the rules")
    sub = check_parser.add_subparsers(dest="check_command")

    p = sub.add_parser("prompt", help="Evaluate a user prompt")
    p.add_argument("text", help="Prompt text")
    p.add_argument("--path", help="Rules file path")
    p.add_argument("--json", action="store_true", help="JSON output")
    p.set_defaults(func=cmd_check_prompt)

    p = sub.add_parser("file", help="Evaluate an edit to a file")
    p.add_argument("file", help="Target file path (as the rules see it)")
    p.add_argument("--content-from", help="Read content from this file instead of the target")
    p.add_argument("--path", help="Rules file path")
    p.add_argument("--json", action="store_true", help="JSON output")
    p.set_defaults(func=cmd_check_file)
