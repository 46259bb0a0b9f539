"""
Console logger for quoting and execution events.
"""
from __future__ import annotations

from datetime import datetime, timezone


def _ts() -> str:
    return datetime.now(timezone.utc).strftime("%H:%M:%S")


def log_info(tag: str, msg: str) -> None:
    print(f"[{_ts()}][INFO][{tag}] {msg}")


def log_warn(tag: str, msg: str) -> None:
    print(f"[{_ts()}][WARN][{tag}] {msg}")


def log_error(tag: str, msg: str) -> None:
    print(f"[{_ts()}][ERROR][{tag}] {msg}")
