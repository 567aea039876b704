"""Command line runner for ethcli.

Options may appear anywhere on the command line, so the runner first strips
the global options to find the command word, then hands a fresh
:class:`~ethcli.args.ArgParser` to the selected plugin.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import traceback
from typing import Mapping, Sequence

from .args import ArgParser, UsageError
from .commands import build_command_table
from .config import ProviderConfig
from .plugin import Plugin
from .provider import RPCError, format_rpc_hint

logger = logging.getLogger(__name__)

PROGRAM = "ethcli"
GLOBAL_FLAGS = ["debug", "help", "yes", "alchemy", "etherscan", "infura", "nodesmith"]
GLOBAL_OPTIONS = [
    "network",
    "rpc",
    "account",
    "account-rpc",
    "account-void",
    "gas-price",
    "gas-limit",
    "nonce",
    "value",
    "data",
]

OPTIONS_USAGE = """\
ACCOUNT OPTIONS
  --account FILENAME          Load a JSON Wallet (crowdsale or keystore)
  --account RAW_KEY           Use a private key (insecure *)
  --account 'MNEMONIC'        Use a mnemonic (insecure *)
  --account -                 Use secure entry for a raw key or mnemonic
  --account-void ADDRESS      Add an address as a void signer
  --account-void ENS_NAME     Add the resolved address as a void signer
  --account-rpc ADDRESS       Add the address from a JSON-RPC provider
  --account-rpc INDEX         Add the index from a JSON-RPC provider

PROVIDER OPTIONS (default: configured or public endpoint)
  --alchemy                   Include Alchemy
  --etherscan                 Include Etherscan
  --infura                    Include INFURA
  --nodesmith                 Include nodesmith
  --rpc URL                   Include a custom JSON-RPC
  --network NETWORK           Network to connect to (default: homestead)

TRANSACTION OPTIONS (default: query the network)
  --gas-price GWEI            Default gas price for transactions (in gwei)
  --gas-limit GAS             Default gas limit for transactions
  --nonce NONCE               Initial nonce for the first transaction
  --value VALUE               Default value (in ether) for transactions
  --data DATA                 Default data (hex, or text as UTF-8)
  --yes                       Always accept Signing and Sending

OTHER OPTIONS
  --debug                     Show stack traces and debug logging
  --help                      Show this usage and quit

(*) By including mnemonics or private keys on the command line they are
    possibly readable by other users on your system and may get stored in
    your bash history file.
"""


class CLI:
    """Dispatch the command line to one of the registered plugins."""

    def __init__(
        self,
        plugins: Mapping[str, type[Plugin]],
        default_command: str | None = None,
        config: ProviderConfig | None = None,
    ) -> None:
        self.plugins = dict(plugins)
        self.default_command = default_command
        self.config = config

    def show_usage(self, message: str | None = None, status: int = 0) -> int:
        print("Usage:")

        lines: list[str] = []
        for plugin in self.plugins.values():
            help_ = plugin.get_help()
            if help_ is None:
                continue
            line = f"   {help_.name}"
            if len(line) > 28:
                lines.append(line)
                lines.append(" " * 30 + help_.help)
            else:
                lines.append(line.ljust(30) + help_.help)
            for option in plugin.get_option_help():
                lines.append("      " + option.name.ljust(27) + option.help)

        if lines:
            if self.default_command:
                print(f"   {PROGRAM} [ COMMAND ] [ ARGS ] [ OPTIONS ]")
                print("")
                print(f"COMMANDS (default: {self.default_command})")
            else:
                print(f"   {PROGRAM} COMMAND [ ARGS ] [ OPTIONS ]")
                print("")
                print("COMMANDS")
            for line in lines:
                print(line)
            print("")

        print(OPTIONS_USAGE)

        if message:
            print(message)
            print("")
        return status

    def _find_command(self, args: list[str]) -> str | None:
        """Remove and return the command word, or fall back to the default."""

        scanner = ArgParser(args)
        for flag in GLOBAL_FLAGS:
            scanner.consume_flag(flag)
        for option in GLOBAL_OPTIONS:
            scanner.consume_options(option)

        index = scanner.check_command_index()
        if index == -1 or args[index] == "--":
            return self.default_command
        return args.pop(index)

    async def run(self, args: Sequence[str]) -> int:
        args = list(args)

        try:
            command = self._find_command(args)
        except UsageError as exc:
            return self.show_usage(str(exc), 1)

        arg_parser = ArgParser(args)
        try:
            if arg_parser.consume_flag("help"):
                return self.show_usage()
            debug = arg_parser.consume_flag("debug")
        except UsageError as exc:
            return self.show_usage(str(exc), 1)

        if debug:
            logging.getLogger("ethcli").setLevel(logging.DEBUG)

        if command is None:
            return self.show_usage("no command provided", 1)
        plugin_cls = self.plugins.get(command)
        if plugin_cls is None:
            return self.show_usage(f"unknown command - {command}", 1)

        plugin = plugin_cls(config=self.config)
        try:
            await plugin.prepare_options(arg_parser)
            await plugin.prepare_args(arg_parser.finalize_args())
            await plugin.run()
        except Exception as exc:
            if debug:
                print("----- <DEBUG> ------")
                traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stdout)
                print("----- </DEBUG> -----")
            if isinstance(exc, UsageError):
                return self.show_usage(str(exc), 1)
            print(f"Error: {exc}")
            if isinstance(exc, RPCError):
                hint = format_rpc_hint(exc)
                if hint:
                    print(hint)
            return 2
        return 0


def main(argv: Sequence[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO)
    cli = CLI(build_command_table())
    try:
        status = asyncio.run(cli.run(sys.argv[1:] if argv is None else argv))
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
        status = 2
    sys.exit(status)


if __name__ == "__main__":
    main(sys.argv[1:])
