from __future__ import annotations

import os
from pathlib import Path


def lymebridge_home() -> Path:
    env = os.environ.get("LYMEBRIDGE_HOME", "").strip()
    if env:
        return Path(env).expanduser().resolve()
    return (Path.home() / ".config" / "lymebridge").resolve()


def ensure_home() -> Path:
    home = lymebridge_home()
    home.mkdir(parents=True, exist_ok=True)
    return home


def config_path() -> Path:
    return lymebridge_home() / "config.yaml"


def pid_path() -> Path:
    return lymebridge_home() / "daemon.pid"
