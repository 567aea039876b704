"""Built-in ethcli commands."""

from __future__ import annotations

import logging
from typing import Sequence

from eth_utils import to_bytes

from .args import ArgParser
from .authorized import AuthorizedSigner, dump
from .plugin import Help, Plugin
from .units import format_ether, hexlify_data, parse_ether

logger = logging.getLogger(__name__)


class _SingleAccountPlugin(Plugin):
    """Plugin that operates on exactly one ``--account*``."""

    account: AuthorizedSigner

    async def prepare_options(self, arg_parser: ArgParser) -> None:
        await super().prepare_options(arg_parser)
        if len(self.accounts) != 1:
            self.throw_usage_error("requires exactly one account")
        self.account = self.accounts[0]


class InfoPlugin(Plugin):
    """Print address, balance and nonce for accounts and positional targets."""

    @staticmethod
    def get_help() -> Help:
        return Help("info [ TARGET ... ]", "Dump info for accounts, addresses and ENS names")

    async def prepare_args(self, args: Sequence[str]) -> None:
        self.targets: list[tuple[str, str]] = []
        for arg in args:
            address = await self.get_address(arg, allow_zero=True)
            self.targets.append((f"Address: {arg}", address))
        for account in self.accounts:
            self.targets.append(("Account", await account.get_address()))
        if not self.targets:
            self.throw_usage_error("info requires at least one account or address")

    async def run(self) -> None:
        print(f"Network: {self.network.name} (chainId: {self.network.chain_id})")
        for header, address in self.targets:
            balance = await self.provider.get_balance(address)
            nonce = await self.provider.get_transaction_count(address, "latest")
            dump(
                f"{header}:",
                {"Address": address, "Balance": f"{format_ether(balance)} ether", "Nonce": nonce},
            )


class SignMessagePlugin(_SingleAccountPlugin):
    @staticmethod
    def get_help() -> Help:
        return Help("sign-message MESSAGE", "Sign a message")

    @staticmethod
    def get_option_help() -> list[Help]:
        return [Help("--hex", "The message content is hex encoded")]

    async def prepare_options(self, arg_parser: ArgParser) -> None:
        self.hex = arg_parser.consume_flag("hex")
        await super().prepare_options(arg_parser)

    async def prepare_args(self, args: Sequence[str]) -> None:
        if len(args) != 1:
            self.throw_usage_error("sign-message requires exactly one MESSAGE")
        if not self.hex:
            self.message: str | bytes = args[0]
            return
        if not args[0].lower().startswith("0x"):
            self.throw_usage_error(f"invalid hex message - {args[0]}")
        try:
            self.message = to_bytes(hexstr=hexlify_data(args[0]))
        except ValueError:
            self.throw_usage_error(f"invalid hex message - {args[0]}")

    async def run(self) -> None:
        await self.account.sign_message(self.message)


class SendPlugin(_SingleAccountPlugin):
    @staticmethod
    def get_help() -> Help:
        return Help("send TARGET ETHER", "Send ether to TARGET (address or ENS name)")

    @staticmethod
    def get_option_help() -> list[Help]:
        return [Help("--allow-zero", "Allow sending to the zero address")]

    async def prepare_options(self, arg_parser: ArgParser) -> None:
        self.allow_zero = arg_parser.consume_flag("allow-zero")
        await super().prepare_options(arg_parser)

    async def prepare_args(self, args: Sequence[str]) -> None:
        if len(args) != 2:
            self.throw_usage_error("send requires exactly TARGET and ETHER")
        self.to_address = await self.get_address(
            args[0], "cannot send to the zero address (use --allow-zero)", self.allow_zero
        )
        try:
            self.amount = parse_ether(args[1])
        except ValueError:
            self.throw_usage_error(f"invalid ETHER amount - {args[1]}")

    async def run(self) -> None:
        tx = self.transaction_defaults()
        tx.update({"to": self.to_address, "value": self.amount})
        await self.account.send_transaction(tx)


class UnlockPlugin(Plugin):
    @staticmethod
    def get_help() -> Help:
        return Help("unlock", "Unlock every account (checks JSON wallet passwords)")

    async def prepare_args(self, args: Sequence[str]) -> None:
        if args:
            self.throw_usage_error("unlock does not take arguments")
        if not self.accounts:
            self.throw_usage_error("unlock requires at least one account")

    async def run(self) -> None:
        for account in self.accounts:
            await account.unlock()
            print(f"Unlocked: {await account.get_address()}")


def build_command_table() -> dict[str, type[Plugin]]:
    return {
        "info": InfoPlugin,
        "send": SendPlugin,
        "sign-message": SignMessagePlugin,
        "unlock": UnlockPlugin,
    }
