"""Token-level argument parser used by every ethcli command.

Unlike :mod:`argparse`, options may appear anywhere on the command line (before
or after the command name) and are pulled out of the token stream on demand.
Whatever is left once every plugin has consumed its options becomes the list
of positional arguments.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence

ESCAPE_TOKEN = "--"


class UsageError(RuntimeError):
    """Raised when command-line input is malformed or ambiguous."""


@dataclass(frozen=True)
class Option:
    name: str
    value: str


class ArgParser:
    """Track which raw tokens have been consumed as flags or options."""

    def __init__(self, args: Sequence[str]) -> None:
        self._args: list[str] = list(args)
        self._consumed: list[bool] = [False] * len(self._args)

    def _scan(self) -> Iterator[tuple[int, str]]:
        """Yield ``(index, token)`` for unconsumed tokens before the escape."""

        for index, arg in enumerate(self._args):
            if self._consumed[index]:
                continue
            if arg == ESCAPE_TOKEN:
                break
            yield index, arg

    def consume_flag(self, name: str) -> bool:
        hits = [index for index, arg in self._scan() if arg == f"--{name}"]
        for index in hits:
            self._consumed[index] = True
        if len(hits) > 1:
            raise UsageError(f"expected at most one --{name}")
        return len(hits) == 1

    def consume_multi_options(self, names: Sequence[str] | str) -> list[Option]:
        """Consume every ``--name value`` pair for the given names.

        Matches are returned in command-line order, interleaved across names.
        """

        if isinstance(names, str):
            names = [names]

        result: list[Option] = []
        for index, arg in self._scan():
            if not arg.startswith("--"):
                continue
            name = arg[2:]
            if name not in names:
                continue
            if index + 1 >= len(self._args):
                raise UsageError(f"missing argument for --{name}")
            self._consumed[index] = True
            self._consumed[index + 1] = True
            result.append(Option(name=name, value=self._args[index + 1]))
        return result

    def consume_options(self, name: str) -> list[str]:
        return [option.value for option in self.consume_multi_options([name])]

    def consume_option(self, name: str) -> str | None:
        values = self.consume_options(name)
        if len(values) > 1:
            raise UsageError(f"expected at most one --{name}")
        return values[0] if values else None

    def finalize_args(self) -> list[str]:
        """Return the remaining positional arguments.

        Everything after an unconsumed ``--`` is passed through verbatim, even
        tokens that look like options.
        """

        args: list[str] = []
        for index, arg in enumerate(self._args):
            if self._consumed[index]:
                continue
            if arg == ESCAPE_TOKEN:
                args.extend(self._args[index + 1 :])
                break
            if arg.startswith("--"):
                raise UsageError(f"unexpected option {arg}")
            args.append(arg)
        return args

    def check_command_index(self) -> int:
        for index, consumed in enumerate(self._consumed):
            if not consumed:
                return index
        return -1
