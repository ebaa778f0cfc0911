from __future__ import annotations

import argparse
import subprocess
import sys
from pathlib import Path
from typing import Callable, List, Optional

from . import __version__
from .channels import SUPPORTED_CHANNELS
from .client import run_connect
from .config import (
    DEFAULT_SOCKET_PATH,
    Config,
    ConfigError,
    create_default,
    create_with_telegram,
    load_config,
    save_config,
)
from .daemon_main import daemon_status, run_daemon, stop_daemon

InputFn = Callable[[str], str]

FULL_DISK_ACCESS_URL = "x-apple.systempreferences:com.apple.preference.security?Privacy_AllFiles"


class SetupAborted(Exception):
    """Setup input was missing or invalid."""


def normalize_phone(country_code: str, phone: str) -> str:
    """Country code + local number -> +<code><digits> (spaces, dashes and parens dropped)."""
    code = country_code.strip().replace("+", "")
    digits = phone.strip()
    for ch in (" ", "-", "(", ")"):
        digits = digits.replace(ch, "")
    return f"+{code}{digits}"


def _ask(prompt: str, input_fn: InputFn, what: str) -> str:
    try:
        value = input_fn(prompt).strip()
    except EOFError:
        value = ""
    if not value:
        raise SetupAborted(f"{what} required")
    return value


def prompt_apple_id(input_fn: InputFn) -> str:
    print()
    print("How is your Apple ID registered?")
    print("  1. Email address")
    print("  2. Phone number")
    print()
    kind = _ask("Enter choice (1 or 2): ", input_fn, "Choice")
    if kind == "1":
        return _ask("Enter your email address: ", input_fn, "Email")
    if kind == "2":
        code = _ask("Country code (e.g., 1 for US, 44 for UK): ", input_fn, "Country code")
        phone = _ask("Phone number: ", input_fn, "Phone number")
        return normalize_phone(code, phone)
    raise SetupAborted("Invalid choice")


def build_setup_config(input_fn: Optional[InputFn] = None) -> Config:
    """Interactive questions -> starter config for one channel."""
    if input_fn is None:
        input_fn = input
    print("Which channel do you want to configure?")
    print("  1. iMessage (recommended for local use)")
    print("  2. Telegram (for remote access)")
    print()
    choice = _ask("Enter choice (1 or 2): ", input_fn, "Choice")
    if choice == "1":
        apple_id = prompt_apple_id(input_fn)
        print(f"Apple ID: {apple_id}")
        return create_default(apple_id)
    if choice == "2":
        print()
        token = _ask("Enter your Telegram bot token (from @BotFather): ", input_fn, "Bot token")
        chat_id = _ask("Enter your Telegram chat ID: ", input_fn, "Chat ID")
        return create_with_telegram(token, chat_id)
    raise SetupAborted("Invalid choice")


def _messages_db_readable() -> bool:
    db = Path.home() / "Library" / "Messages" / "chat.db"
    try:
        with db.open("rb"):
            return True
    except OSError:
        return False


def _full_disk_access_hint() -> None:
    print()
    print("lymebridge needs Full Disk Access to read messages.")
    if _messages_db_readable():
        print("Full Disk Access: already granted")
        return
    print("Opening System Settings (Privacy & Security > Full Disk Access)...")
    try:
        subprocess.run(["open", FULL_DISK_ACCESS_URL], check=False, timeout=10)
    except (OSError, subprocess.TimeoutExpired):
        print(f"Open it manually: {FULL_DISK_ACCESS_URL}")
    print("Add your terminal (or the lymebridge binary) and turn the toggle on.")


def cmd_setup(_: argparse.Namespace) -> int:
    print()
    print("lymebridge setup")
    print()
    try:
        config = build_setup_config()
    except SetupAborted as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        path = save_config(config)
    except OSError as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return 1
    print()
    print(f"Config saved: {path}")

    if config.is_imessage_enabled:
        _full_disk_access_hint()

    print()
    print("To start the daemon:")
    print("  lymebridge")
    print()
    print("To connect a session:")
    print("  lymebridge connect imessage work1")
    return 0


def cmd_daemon(_: argparse.Namespace) -> int:
    print(f"lymebridge v{__version__}")
    return run_daemon()


def _socket_path() -> str:
    try:
        return load_config().socket_path
    except ConfigError:
        return DEFAULT_SOCKET_PATH


def cmd_connect(args: argparse.Namespace) -> int:
    channel = str(args.channel or "").strip()
    name = str(args.name or "").strip()
    if channel not in SUPPORTED_CHANNELS:
        print(f"Error: Unknown channel '{channel}'", file=sys.stderr)
        print(f"Available channels: {', '.join(SUPPORTED_CHANNELS)}", file=sys.stderr)
        return 1
    if not name or any(ch.isspace() for ch in name):
        print("Error: session name must be non-empty and contain no spaces", file=sys.stderr)
        return 1
    return run_connect(_socket_path(), channel, name)


def cmd_status(_: argparse.Namespace) -> int:
    return daemon_status()


def cmd_stop(_: argparse.Namespace) -> int:
    return stop_daemon()


def cmd_version(_: argparse.Namespace) -> int:
    print(f"lymebridge v{__version__}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="lymebridge",
        description="Bridge iMessage/Telegram chats to local CLI sessions",
        epilog=(
            "examples:\n"
            "  lymebridge connect imessage work1   connect session \"work1\" via iMessage\n"
            "  lymebridge connect telegram api     connect session \"api\" via Telegram"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = p.add_subparsers(dest="cmd")

    p_daemon = sub.add_parser("daemon", help="Run the daemon in the foreground (default)")
    p_daemon.set_defaults(func=cmd_daemon)

    p_setup = sub.add_parser("setup", help="Interactive setup")
    p_setup.set_defaults(func=cmd_setup)

    p_connect = sub.add_parser("connect", help="Connect this terminal as a named session")
    p_connect.add_argument("channel", help=f"Channel the session replies through ({', '.join(SUPPORTED_CHANNELS)})")
    p_connect.add_argument("name", help="Session name (target with @name)")
    p_connect.set_defaults(func=cmd_connect)

    p_status = sub.add_parser("status", help="Daemon status")
    p_status.set_defaults(func=cmd_status)

    p_stop = sub.add_parser("stop", help="Stop the daemon (SIGTERM)")
    p_stop.set_defaults(func=cmd_stop)

    p_ver = sub.add_parser("version", help="Show version")
    p_ver.set_defaults(func=cmd_version)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    func = getattr(args, "func", None)
    if func is None:
        func = cmd_daemon
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
