from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from .channels import ChannelAdapter, ChannelStartError
from .config import Config, ConfigError, load_config
from .daemon import Daemon, SocketStartError
from .paths import ensure_home, pid_path
from .util.fs import atomic_write_text, pid_alive, read_pid
from .util.obslog import setup_root_json_logging

log = logging.getLogger("lymebridge.daemon")


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handler(signum, frame) -> None:  # type: ignore[no-untyped-def]
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _write_pid(path: Path) -> None:
    atomic_write_text(path, f"{os.getpid()}\n")


def _remove_pid(path: Path) -> None:
    try:
        if read_pid(path) == os.getpid():
            path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        log.warning("Failed to remove pid file %s: %s", path, e)


def running_pid() -> int:
    """PID of a live daemon according to the pid file, or 0."""
    pid = read_pid(pid_path())
    return pid if pid_alive(pid) else 0


def run_daemon(
    config: Optional[Config] = None,
    stop_event: Optional[threading.Event] = None,
    adapters: Optional[List[ChannelAdapter]] = None,
) -> int:
    """Run the bridge in the foreground until SIGINT/SIGTERM (or `stop_event`)."""
    if config is None:
        try:
            config = load_config()
        except ConfigError as e:
            print(f"lymebridge: {e}", file=sys.stderr)
            print("Run 'lymebridge setup' first.", file=sys.stderr)
            return 1

    setup_root_json_logging(component="lymebridge", level=config.log_level)

    if not config.enabled_channel_ids():
        log.error("No channels enabled in config")
        print("lymebridge: no channels enabled. Run 'lymebridge setup'.", file=sys.stderr)
        return 1

    other = running_pid()
    if other and other != os.getpid():
        print(f"lymebridge: daemon already running pid={other}", file=sys.stderr)
        return 1

    if stop_event is None:
        stop_event = threading.Event()
        _install_signal_handlers(stop_event)

    daemon = Daemon(config, stop_event=stop_event, adapters=adapters)
    try:
        daemon.start()
    except (ChannelStartError, SocketStartError) as e:
        log.error("Startup failed: %s", e)
        print(f"lymebridge: {e}", file=sys.stderr)
        return 1

    pid_file = pid_path()
    try:
        ensure_home()
        _write_pid(pid_file)
    except OSError as e:
        log.error("Cannot write pid file %s: %s", pid_file, e)
        print(f"lymebridge: cannot write pid file {pid_file}: {e}", file=sys.stderr)
        daemon.shutdown()
        return 1
    log.info("Daemon started pid=%d", os.getpid())
    try:
        daemon.run()
    finally:
        _remove_pid(pid_file)
    log.info("Daemon stopped")
    return 0


def stop_daemon() -> int:
    pid = running_pid()
    if pid <= 0:
        print("lymebridge: not running")
        return 0
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        print("lymebridge: not running")
        return 0
    except PermissionError as e:
        print(f"lymebridge: cannot signal pid={pid}: {e}", file=sys.stderr)
        return 1
    print(f"lymebridge: SIGTERM sent to pid={pid}")
    return 0


def daemon_status() -> int:
    pid = running_pid()
    if pid > 0:
        print(f"lymebridge: running pid={pid}")
        return 0
    print("lymebridge: not running")
    return 1
