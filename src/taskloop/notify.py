"""Desktop notifications when a run finishes, best-effort."""

from __future__ import annotations

import subprocess
import sys


def _run_quiet(*cmd: str) -> None:
    """Fire-and-forget subprocess, ignore failures."""
    try:
        subprocess.Popen(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError:
        pass


def notify_done(message: str = "taskloop: all tasks complete") -> None:
    if sys.platform == "darwin":
        _run_quiet("osascript", "-e", f'display notification "{message}" with title "taskloop"')
    elif sys.platform.startswith("linux"):
        _run_quiet("notify-send", "taskloop", message)


def notify_error(message: str = "taskloop stopped on an error") -> None:
    if sys.platform == "darwin":
        _run_quiet(
            "osascript", "-e",
            f'display notification "{message}" with title "taskloop - Error"',
        )
    elif sys.platform.startswith("linux"):
        _run_quiet("notify-send", "-u", "critical", "taskloop - Error", message)
