"""Interactive terminal helpers: masked passwords, choices and progress bars.

Blocking terminal reads run in a worker thread so callers can simply
``await`` them from the event loop.
"""

from __future__ import annotations

import asyncio
import getpass
import sys
from typing import TextIO


class PromptCancelled(RuntimeError):
    """Raised when the user aborts a prompt (Ctrl-C / Ctrl-D)."""

    def __init__(self, message: str = "cancelled") -> None:
        super().__init__(message)


class OperationCancelled(RuntimeError):
    """Raised when the user declines or aborts a signing/loading operation."""

    def __init__(self, message: str = "Cancelled.") -> None:
        super().__init__(message)


def _read_password(prompt: str) -> str:
    try:
        return getpass.getpass(prompt)
    except (EOFError, KeyboardInterrupt) as exc:
        raise PromptCancelled() from exc


async def get_password(prompt: str) -> str:
    """Read a line from the terminal without echoing it."""

    return await asyncio.to_thread(_read_password, prompt)


def _read_choice(message: str, choices: str, default: str, stream: TextIO) -> str:
    if not stream.isatty():
        return default

    options = "/".join(choices)
    while True:
        try:
            answer = input(f"{message} ({options}) [{default}]: ").strip().lower()
        except (EOFError, KeyboardInterrupt) as exc:
            raise PromptCancelled() from exc
        if not answer:
            return default
        if len(answer) == 1 and answer in choices:
            return answer
        print(f"Please answer one of: {options}")


async def get_choice(message: str, choices: str, default: str) -> str:
    """Ask for a single-character answer out of ``choices``.

    Non-interactive input always yields ``default``.
    """

    return await asyncio.to_thread(_read_choice, message, choices, default, sys.stdin)


class ProgressBar:
    """Render ``(current, total)`` updates as a single rewriting line."""

    def __init__(self, label: str, width: int = 40, stream: TextIO | None = None) -> None:
        self.label = label
        self.width = width
        self.stream = stream or sys.stderr
        self._finished = False

    def __call__(self, current: int, total: int) -> None:
        if self._finished:
            return
        fraction = min(max(current / total if total else 1.0, 0.0), 1.0)
        filled = int(round(self.width * fraction))
        bar = "#" * filled + " " * (self.width - filled)
        self.stream.write(f"\r{self.label} [{bar}] {int(fraction * 100):3d}%")
        if fraction >= 1.0:
            self.stream.write("\n")
            self._finished = True
        self.stream.flush()
