"""
Wiretap — listen in on the wire.

Two parts:
  1. WireLog: appends one structured JSONL entry per finalized conversation
     event (user messages, completed replies, errors, clears)
  2. live_tap(): reads the JSONL and renders a color-coded live view

The wire log is separate from the debug log. It's a clean, structured record
of exactly what was said in each session, and when.
"""

import json
import time
import logging
from datetime import datetime, timezone
from pathlib import Path

from chatwire.models import ConversationEvent, EventKind

logger = logging.getLogger(__name__)

# ANSI colors
C_RESET = "\033[0m"
C_BOLD = "\033[1m"
C_DIM = "\033[2m"
C_USER = "\033[96m"      # cyan
C_ASSISTANT = "\033[93m"  # yellow
C_SYSTEM = "\033[90m"     # gray
C_SESSION = "\033[95m"    # magenta
C_TIME = "\033[90m"       # gray
C_BORDER = "\033[90m"     # gray
C_ERROR = "\033[91m"      # red


ROLE_COLORS = {
    "user": C_USER,
    "assistant": C_ASSISTANT,
    "system": C_SYSTEM,
    "error": C_ERROR,
}

ROLE_ICONS = {
    "user": "▶",
    "assistant": "◀",
    "system": "●",
    "error": "✗",
}

# Event kind → (direction, role) on the wire
WIRE_KINDS = {
    EventKind.USER_MESSAGE: ("inbound", "user"),
    EventKind.COMPLETE: ("outbound", "assistant"),
    EventKind.ERROR: ("internal", "error"),
    EventKind.SYSTEM: ("internal", "system"),
    EventKind.CLEAR: ("internal", "system"),
}


class WireLog:
    """
    Structured JSONL logger for the wire.
    Each line is one finalized event in one session.

    Format:
        {"ts": "...", "dir": "inbound|outbound|internal", "role": "...",
         "kind": "...", "session": "...", "len": 123, "content": "..."}
    """

    def __init__(self, log_path: str):
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = None

    def _ensure_open(self):
        if self._file is None:
            self._file = open(self.log_path, "a", buffering=1)  # line-buffered

    def log(self, session: str, event: ConversationEvent) -> bool:
        """Write a wire log entry. Returns False for events that are not archived."""
        if event.kind not in WIRE_KINDS:
            return False
        self._ensure_open()
        direction, role = WIRE_KINDS[event.kind]
        content = event.content
        if event.kind is EventKind.CLEAR:
            content = "[history cleared]"

        entry = {
            "ts": datetime.fromtimestamp(event.timestamp / 1000, timezone.utc).isoformat(),
            "dir": direction,
            "role": role,
            "kind": event.kind.value,
            "session": session,
            "len": len(content),
        }

        # Keep short content whole, trim long content to head and tail
        if len(content) <= 2000:
            entry["content"] = content
        else:
            entry["content"] = content[:1000] + f"\n\n[... {len(content) - 2000} chars truncated ...]\n\n" + content[-1000:]

        self._file.write(json.dumps(entry, ensure_ascii=False) + "\n")
        return True

    def close(self):
        if self._file:
            self._file.close()
            self._file = None


def _format_entry(entry: dict, raw: bool = False) -> str:
    """Format a single wire log entry for display."""
    if raw:
        return json.dumps(entry, ensure_ascii=False)

    ts = entry.get("ts", "")
    try:
        time_str = datetime.fromisoformat(ts).strftime("%H:%M:%S")
    except (ValueError, TypeError):
        time_str = ts[:8] if ts else "??:??:??"

    role = entry.get("role", "?")
    direction = entry.get("dir", "?")
    session = entry.get("session", "")
    content = entry.get("content", "")
    char_len = entry.get("len", 0)

    role_color = ROLE_COLORS.get(role, C_RESET)
    icon = ROLE_ICONS.get(role, "?")

    if direction == "inbound":
        arrow = f"{C_DIM}──▶{C_RESET}"
    elif direction == "outbound":
        arrow = f"{C_DIM}◀──{C_RESET}"
    else:
        arrow = f"{C_DIM}─●─{C_RESET}"

    lines = []
    header = f"  {C_TIME}{time_str}{C_RESET} {arrow} {role_color}{C_BOLD}{icon} {role.upper()}{C_RESET}"
    if session:
        header += f"  {C_SESSION}[{session}]{C_RESET}"
    header += f"  {C_DIM}({char_len} chars){C_RESET}"
    lines.append(header)

    # Indent and truncate for display
    if content:
        display_content = content
        if len(display_content) > 500:
            display_content = display_content[:500] + f"\n      {C_DIM}[... truncated]{C_RESET}"

        for cline in display_content.split("\n")[:15]:
            lines.append(f"      {cline}")

        if display_content.count("\n") > 15:
            lines.append(f"      {C_DIM}[... {display_content.count(chr(10)) - 15} more lines]{C_RESET}")

    lines.append(f"  {C_BORDER}{'─' * 60}{C_RESET}")

    return "\n".join(lines)


def _matches(entry: dict, role_filter: str | None, session_filter: str | None) -> bool:
    if role_filter and entry.get("role") != role_filter:
        return False
    if session_filter and entry.get("session") != session_filter:
        return False
    return True


def live_tap(
    log_path: str | None = None,
    follow: bool = True,
    last_n: int = 20,
    role_filter: str | None = None,
    session_filter: str | None = None,
    raw: bool = False,
):
    """
    Live tail of the wire log.

    Args:
        log_path: Path to wire.jsonl. If None, reads from config.
        follow: If True, keep watching for new entries (tail -f behavior).
        last_n: Show this many recent entries before following.
        role_filter: Only show entries matching this role.
        session_filter: Only show entries from this session.
        raw: Output raw JSONL instead of formatted.
    """
    if log_path is None:
        from chatwire.config import get_config
        cfg = get_config()
        log_path = cfg.get("wiretap", {}).get("path", "./data/wire.jsonl")

    wire_path = Path(log_path)

    if not wire_path.exists():
        print(f"  ✗  No wire log found at {wire_path}")
        print(f"     Enable wiretap in config.yaml and start a chat: chatwire chat")
        return

    if not raw:
        print(f"  ☎  Tapping into {wire_path}")
        print(f"  {C_BORDER}{'═' * 60}{C_RESET}")

    with open(wire_path) as f:
        all_lines = f.readlines()

    start = max(0, len(all_lines) - last_n)
    for line in all_lines[start:]:
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if _matches(entry, role_filter, session_filter):
            print(_format_entry(entry, raw=raw))

    if not follow:
        return

    if not raw:
        print(f"\n  {C_DIM}[listening for new traffic... Ctrl+C to hang up]{C_RESET}\n")

    try:
        with open(wire_path) as f:
            f.seek(0, 2)
            while True:
                line = f.readline()
                if not line:
                    time.sleep(0.1)
                    continue
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if _matches(entry, role_filter, session_filter):
                    print(_format_entry(entry, raw=raw))
    except KeyboardInterrupt:
        if not raw:
            print(f"\n  {C_DIM}[line disconnected]{C_RESET}")
