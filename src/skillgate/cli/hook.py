"""Host integration commands: hook, serve."""

import sys


def cmd_hook(args):
    """Run a hook: payload JSON on stdin, response JSON on stdout."""
    from ..hooks import run_hook

    sys.exit(run_hook(args.event))


def cmd_serve(args):
    """Run the HTTP API."""
    from ..api_server import serve

    serve(host=args.host, port=args.port)


def register(subparsers):
    """Register host integration commands."""
    from ..hooks import HOOK_EVENTS

    p = subparsers.add_parser("hook", help="Run as a host hook")
    p.add_argument("event", choices=sorted(HOOK_EVENTS), help="Hook event")
    p.set_defaults(func=cmd_hook)

    p = subparsers.add_parser("serve", help="Run the HTTP API")
    p.add_argument("--host", help="Bind address")
    p.add_argument("--port", type=int, help="Port")
    p.set_defaults(func=cmd_serve)
