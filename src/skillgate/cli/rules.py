"""Rule file commands: init, validate, list."""

import sys

from . import format_output, rules_path


def cmd_rules_init(args):
    """Write the default rules file, and skillgate.toml if it is missing."""
    from ..config import ensure_config
    from ..rules import init_rules

    print(f"Settings: {ensure_config()}")

    path = rules_path(args)
    existed = path.exists()
    init_rules(path)
    if existed:
        print(f"Rules file already exists: {path}")
    else:
        print(f"Rules initialized at: {path}")


def cmd_rules_validate(args):
    """Load the rules file and report problems."""
    from ..errors import ConfigurationError
    from ..rules import load_rules

    path = rules_path(args)
    try:
        store = load_rules(path)
    except ConfigurationError as e:
        if args.json:
            print(format_output({
                "valid": False, "error": e.reason,
                "module_id": e.module_id, "field": e.field,
            }, as_json=True))
        else:
            print(f"INVALID: {e}")
        sys.exit(1)

    if args.json:
        print(format_output({"valid": True, "rules": len(store), "path": str(path)}, as_json=True))
    else:
        print(f"OK: {len(store)} rule(s) in {path}")


def cmd_rules_list(args):
    """List registered modules."""
    from ..rules import load_rules

    store = load_rules(rules_path(args))
    rows = [
        {
            "id": r.id,
            "kind": r.kind.value,
            "enforcement": r.enforcement.value,
            "priority": r.priority.value,
            "description": r.description,
        }
        for r in store
    ]
    if args.json:
        print(format_output(rows, as_json=True))
        return
    for row in rows:
        print(f"{row['id']:<32} {row['kind']:<10} {row['enforcement']:<8} {row['priority']}")


def register(subparsers):
    """Register rules commands."""
    rules_parser = subparsers.add_parser("rules", help="Rule file management")
    sub = rules_parser.add_subparsers(dest="rules_command")

    p = sub.add_parser("init", help="Write the default rules file")
    p.add_argument("--path", help="Rules file path")
    p.set_defaults(func=cmd_rules_init)

    p = sub.add_parser("validate", help="Validate the rules file")
    p.add_argument("--path", help="Rules file path")
    p.add_argument("--json", action="store_true", help="JSON output")
    p.set_defaults(func=cmd_rules_validate)

    p = sub.add_parser("list", help="List registered modules")
    p.add_argument("--path", help="Rules file path")
    p.add_argument("--json", action="store_true", help="JSON output")
    p.set_defaults(func=cmd_rules_list)
