from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version


def _detect_version() -> str:
    try:
        return version("lymebridge")
    except PackageNotFoundError:
        return "0.1.0"


__version__ = _detect_version()
