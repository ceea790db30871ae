#!/usr/bin/env python3
"""
chatwire CLI — one chat, many listeners.

    COMMAND         ALIAS       WHAT IT DOES
    -------         -----       ----------------------------------
    chat            talk        Chat with a provider in the terminal
    sessions        ls          List known sessions, most recent first
    tap             log         Live view of the wire log
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone

from chatwire import __version__

BANNER = r"""
    ╔══════════════════════════════════════════╗
    ║   chatwire                               ║
    ║   one chat, many listeners     v""" + __version__ + r"""    ║
    ╚══════════════════════════════════════════╝
"""


def _load_config(args) -> dict:
    from chatwire.config import load_config

    try:
        return load_config(getattr(args, "config", None), reload=True)
    except (FileNotFoundError, ValueError) as e:
        print(f"  ✗  {e}", file=sys.stderr)
        sys.exit(2)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_chat(args):
    """Start an interactive chat session."""
    from chatwire.main import setup_logging
    from chatwire.repl import run_chat

    cfg = _load_config(args)
    setup_logging(cfg, console=not cfg["logging"].get("file"))

    try:
        asyncio.run(run_chat(
            cfg,
            provider=args.provider,
            model=args.model,
            session_name=args.session,
            serve=args.serve,
            port=args.port,
        ))
    except ValueError as e:
        # Bad provider settings or session name
        print(f"  ✗  {e}", file=sys.stderr)
        sys.exit(2)
    except KeyboardInterrupt:
        print()


def _format_ms(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).astimezone().strftime("%Y-%m-%d %H:%M")


def cmd_sessions(args):
    """Print the session discovery listing."""
    from chatwire.errors import StorageError
    from chatwire.storage import open_storage

    cfg = _load_config(args)
    storage_cfg = cfg["storage"]
    if not storage_cfg.get("enabled"):
        print("  Storage is disabled; no sessions are kept between runs.")
        return

    storage, warning = open_storage(storage_cfg.get("sqlite_path"), ttl=storage_cfg.get("ttl"))
    if warning:
        print(f"  ✗  {warning}", file=sys.stderr)
        storage.close()
        sys.exit(1)

    try:
        sessions = asyncio.run(storage.registry.list())
    except StorageError as e:
        print(f"  ✗  {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        storage.close()

    if not sessions:
        print("  No sessions yet. Start one with: chatwire chat")
        return

    for s in sessions[: args.limit]:
        title = f"  {s.title}" if s.title else ""
        print(f"  {s.name:<24} {s.message_count:>5} msgs  {_format_ms(s.last_message)}{title}")


def cmd_tap(args):
    """Live view of conversations on the wire."""
    from chatwire.wiretap import live_tap

    if args.log is None:
        _load_config(args)
    live_tap(
        log_path=args.log,
        follow=not args.no_follow,
        last_n=args.last,
        role_filter=args.role,
        session_filter=args.session,
        raw=args.raw,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    p.add_argument("--config", "-c", default=None, help="Path to config.yaml")
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatwire",
        description="chatwire: stream a provider chat to the terminal and any number of observers.",
        epilog="Run 'chatwire <command> --help' for command-specific options.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"chatwire {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    # chat / talk
    def setup_chat(p):
        p.add_argument("--provider", "-p", choices=["ollama", "openrouter"], default=None,
                       help="Provider (default: from config)")
        p.add_argument("--model", "-m", default=None, help="Model override")
        p.add_argument("--session", "-s", default=None,
                       help="Session name to start or resume (default: generated)")
        p.add_argument("--serve", action=argparse.BooleanOptionalAction, default=None,
                       help="Run the observer HTTP server alongside the chat")
        p.add_argument("--port", type=int, default=None, help="Observer server port")

    _add_command(sub, ["chat", "talk"], "Chat with a provider in the terminal", cmd_chat, setup_chat)

    # sessions / ls
    def setup_sessions(p):
        p.add_argument("--limit", "-n", type=int, default=50, help="Show at most N sessions")

    _add_command(sub, ["sessions", "ls"], "List known sessions, most recent first",
                 cmd_sessions, setup_sessions)

    # tap / log
    def setup_tap(p):
        p.add_argument("--log", default=None, help="Path to wire.jsonl (default: from config)")
        p.add_argument("--last", "-n", type=int, default=20, help="Show last N entries before following")
        p.add_argument("--role", "-r", choices=["user", "assistant", "system"], default=None,
                       help="Filter by role")
        p.add_argument("--session", "-s", default=None, help="Filter by session name")
        p.add_argument("--no-follow", action="store_true", help="Don't follow, just show last entries")
        p.add_argument("--raw", action="store_true", help="Raw JSONL output, no formatting")

    _add_command(sub, ["tap", "log"], "Live view of conversations on the wire", cmd_tap, setup_tap)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        print(BANNER)
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
